"""
Middleware
"""
from .auth import require_user, require_cron_secret, get_current_user_id
from .rate_limit import rate_limited

__all__ = ['require_user', 'require_cron_secret', 'get_current_user_id', 'rate_limited']
