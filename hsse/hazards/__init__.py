from .routes import register_hazard_routes
from .models import init_hazard_schema, mark_overdue_actions
