from .routes import register_incident_routes
from .models import init_incident_schema
