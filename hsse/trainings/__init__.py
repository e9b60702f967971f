from .routes import register_training_routes
from .models import init_training_schema
