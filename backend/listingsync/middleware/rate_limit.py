"""
Rate limit middleware
"""
from functools import wraps

from flask import g, make_response

from ..services.rate_limiter import get_rate_limiter
from ..utils.responses import ApiResponse


def rate_limited(f):
    """
    Admit at most RATE_LIMIT_REQUESTS per window per user

    Must sit below require_user so g.user_id is set. Every response, admitted
    or not, carries the X-RateLimit-* headers.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        result = get_rate_limiter().check(g.user_id)
        if not result.allowed:
            response, status = ApiResponse.rate_limited(result)
        else:
            response = make_response(f(*args, **kwargs))
            status = response.status_code
        response.headers.update(result.headers())
        return response, status
    return decorated
