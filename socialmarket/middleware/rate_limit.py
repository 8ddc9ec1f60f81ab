"""Rate-limit middleware for the generic "api" tier.

The "api" tier is charged per client IP on every /api/ request before
authentication runs. Per-route tiers (auth, ai_chat, ai_image) are applied
by Flask-Limiter through the @rate_limit decorator (socialmarket.decorators),
whose hook is registered after the auth gate so it can key on the user id.
"""

import logging

from flask import current_app, g, request

from socialmarket.errors import RateLimitExceeded
from socialmarket.extensions import rate_limiter

logger = logging.getLogger(__name__)


def client_ip():
    return request.remote_addr or "unknown"


def enforce_rate_limit(tier_name, identifier):
    """Charge one request to ``tier_name`` for ``identifier``.

    Raises RateLimitExceeded (429) when the window is exhausted.
    """
    if not current_app.config.get("RATELIMIT_ENABLED", True):
        return None

    result = rate_limiter.hit(tier_name, identifier)
    g.rate_limit = result

    if not result.allowed:
        logger.warning(f"Rate limit exceeded: tier={tier_name} id={identifier} path={request.path}")
        raise RateLimitExceeded(headers={
            "Retry-After": result.reset_seconds,
            "X-RateLimit-Limit": result.limit,
            "X-RateLimit-Remaining": 0,
            "X-RateLimit-Reset": result.reset_seconds,
        })
    return result


def limit_api_requests():
    """Before-request hook: generic "api" tier per client IP."""
    g.rate_limit = None
    path = request.path
    if not path.startswith("/api/"):
        return
    if path.startswith(tuple(current_app.config.get("RATELIMIT_EXEMPT_PREFIXES", []))):
        return
    enforce_rate_limit("api", client_ip())


def add_rate_limit_headers(response):
    # Flask-Limiter has already stamped route-tier headers; those win.
    result = g.get("rate_limit")
    if result is not None and result.allowed and "X-RateLimit-Limit" not in response.headers:
        response.headers["X-RateLimit-Limit"] = str(result.limit)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        response.headers["X-RateLimit-Reset"] = str(result.reset_seconds)
    return response


def init_rate_limit_middleware(app):
    """Register the "api" tier hook. Must run before the auth middleware."""
    app.before_request(limit_api_requests)
    app.after_request(add_rate_limit_headers)
