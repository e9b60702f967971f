from .routes import register_inspection_routes
from .models import init_inspection_schema, mark_overdue_inspections
