from .routes import register_audit_routes
from .models import init_audit_schema, mark_overdue_audits
