from .emitter import log_activity
from .models import init_activity_schema, get_entity_trail, get_recent_activity
