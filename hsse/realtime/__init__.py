from .hub import get_hub, announce
from .routes import register_realtime_routes
