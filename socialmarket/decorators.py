"""
Custom route decorators.

- rate_limit: applies a named rate-limit tier through Flask-Limiter.
- login_required: asserts the auth middleware resolved an identity.
"""

from functools import wraps

from flask import g

from socialmarket.errors import Unauthorized
from socialmarket.extensions import limiter, rate_limiter


def rate_limit(tier_name):
    """Charge ``tier_name`` per user id, or per client IP for anonymous calls.

    Routes decorated with the same tier share one budget per caller. The
    limit string is read from the tier table on each request.
    """
    return limiter.shared_limit(
        lambda: rate_limiter.limit_value(tier_name), scope=tier_name
    )


def login_required(f):
    """Require an identity resolved by the auth middleware."""

    @wraps(f)
    def decorated(*args, **kwargs):
        if not g.get("user_id"):
            raise Unauthorized()
        return f(*args, **kwargs)

    return decorated
