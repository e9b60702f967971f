from .routes import register_module_routes
from .models import init_module_schema, seed_modules, is_module_enabled
