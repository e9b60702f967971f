from .routes import register_settings_routes
