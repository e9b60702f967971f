from .routes import register_work_permit_routes
from .models import init_work_permit_schema
