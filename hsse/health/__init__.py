from .routes import register_health_routes
from .models import init_health_schema, expire_vaccinations
