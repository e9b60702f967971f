from .routes import register_waste_routes
from .models import init_waste_schema, expire_provider_licenses
