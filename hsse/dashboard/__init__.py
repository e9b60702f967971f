from .routes import register_dashboard_routes
from .models import get_hsse_summary
