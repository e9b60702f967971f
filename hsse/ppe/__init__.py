from .routes import register_ppe_routes
from .models import init_ppe_schema, expire_overdue_items
