from .routes import register_auth_routes
from .models import init_auth_schema
