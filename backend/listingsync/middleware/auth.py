"""
Authentication middleware

User identity is established upstream by the identity provider gateway and
arrives as a request header; cron endpoints use a shared Bearer secret.
"""
import hmac
from functools import wraps

from flask import current_app, g, request

from ..utils.logger import get_logger
from ..utils.responses import ApiResponse

logger = get_logger('auth')


def get_current_user_id() -> str:
    """User id from the identity header, or an empty string"""
    header = current_app.config.get('IDENTITY_HEADER', 'X-User-Id')
    return (request.headers.get(header) or '').strip()


def require_user(f):
    """
    Require an authenticated user

    Sets g.user_id for the view.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        user_id = get_current_user_id()
        if not user_id:
            return ApiResponse.unauthorized('Authentication required')
        g.user_id = user_id
        return f(*args, **kwargs)
    return decorated


def require_cron_secret(f):
    """
    Require Authorization: Bearer <CRON_SECRET>

    With no CRON_SECRET configured the endpoint is disabled entirely.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        secret = current_app.config.get('CRON_SECRET')
        if not secret:
            return ApiResponse.forbidden('Cron endpoints are disabled, configure CRON_SECRET')

        auth_header = request.headers.get('Authorization', '')
        expected = f'Bearer {secret}'
        if not hmac.compare_digest(auth_header.encode('utf-8'), expected.encode('utf-8')):
            logger.warning(f"[Auth] Rejected cron call to {request.path} from {request.remote_addr}")
            return ApiResponse.unauthorized('Unauthorized')

        return f(*args, **kwargs)
    return decorated
