from .routes import register_security_incident_routes
from .models import init_security_incident_schema
