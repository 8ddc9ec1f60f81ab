"""Auth middleware — resolves the bearer token to a verified identity.

Runs before every request. Each path is classified by the longest matching
prefix from PROTECTED_PREFIXES / PUBLIC_PREFIXES:

    PUBLIC        bypass, no token needed
    PROTECTED     must resolve to an identity
    UNCLASSIFIED  passed through untouched (e.g. the Stripe webhook, which
                  authenticates by signature)

On PROTECTED paths:
    no bearer token                     -> Unauthorized (no provider call)
    provider rejects the token          -> InvalidToken (client re-authenticates)
    provider unreachable / failing      -> InternalError (client may retry)
    success                             -> g.user_id, g.user_email set

Identity only. Ownership checks live in the handlers (errors.ensure_owner).
"""

import enum
import logging

from flask import current_app, g, request

from socialmarket.errors import InternalError, InvalidToken, Unauthorized
from socialmarket.extensions import identity
from socialmarket.services.identity_service import IdentityProviderError

logger = logging.getLogger(__name__)


class RouteClass(enum.Enum):
    PUBLIC = "public"
    PROTECTED = "protected"
    UNCLASSIFIED = "unclassified"


def _matches(path, prefix):
    prefix = prefix.rstrip("/")
    return path == prefix or path.startswith(prefix + "/")


def classify_path(path, protected_prefixes, public_prefixes):
    """Classify ``path`` by the longest segment-aware prefix match."""
    best_len = -1
    best = RouteClass.UNCLASSIFIED
    for route_class, prefixes in (
        (RouteClass.PUBLIC, public_prefixes),
        (RouteClass.PROTECTED, protected_prefixes),
    ):
        for prefix in prefixes:
            if _matches(path, prefix) and len(prefix) > best_len:
                best_len = len(prefix)
                best = route_class
    return best


def extract_bearer_token(auth_header):
    """Return the token from "Bearer <token>", or None."""
    if not auth_header:
        return None
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def authenticate_request():
    """Before-request hook: gate PROTECTED paths on a verified identity."""
    g.user_id = None
    g.user_email = None
    g.identity_headers = {}

    path = request.path
    route_class = classify_path(
        path,
        current_app.config.get("PROTECTED_PREFIXES", []),
        current_app.config.get("PUBLIC_PREFIXES", []),
    )
    g.route_class = route_class

    if route_class is not RouteClass.PROTECTED:
        return

    token = extract_bearer_token(request.headers.get("Authorization"))
    if not token:
        logger.warning(f"Unauthorized request - missing token: {path}")
        raise Unauthorized()

    try:
        user = identity.verify_token(token)
    except IdentityProviderError as e:
        logger.error(f"Auth middleware error on {path}: {e}", exc_info=True)
        raise InternalError("Authentication failed") from e
    except Exception as e:
        logger.error(f"Unexpected auth middleware error on {path}: {e}", exc_info=True)
        raise InternalError("Authentication failed") from e

    if user is None:
        logger.warning(f"Invalid token: {path}")
        raise InvalidToken()

    g.user_id = user.id
    g.user_email = user.email
    g.identity_headers = {"x-user-id": user.id, "x-user-email": user.email or ""}
    logger.debug(f"Authenticated request {path} as {user.id}")


def init_auth_middleware(app):
    """Register the auth gate as a before_request hook."""
    app.before_request(authenticate_request)
