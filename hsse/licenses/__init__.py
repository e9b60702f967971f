from .routes import register_license_routes
from .models import init_license_schema, expire_licenses
