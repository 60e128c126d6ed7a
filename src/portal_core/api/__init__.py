"""Portal API layer for cron triggers and admin actions."""
from .auth import require_api_key, require_cron_secret
from .routes import router

__all__ = ["require_api_key", "require_cron_secret", "router"]
