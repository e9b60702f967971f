from .routes import register_user_routes
