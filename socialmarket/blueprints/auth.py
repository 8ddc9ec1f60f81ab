"""Auth blueprint — /api/v1/auth/*

Thin wrappers over the identity provider. signup and refresh are public
and share the strict "auth" rate-limit tier; session is protected.
"""

import logging

from flask import Blueprint, g, jsonify, request

from socialmarket.decorators import login_required, rate_limit
from socialmarket.errors import ExternalApiError, InvalidInput, InvalidToken
from socialmarket.extensions import db, identity
from socialmarket.models.user import User
from socialmarket.schemas import RefreshSchema, SignupSchema
from socialmarket.services.identity_service import IdentityProviderError, IdentityRejected
from socialmarket.validation import validate_body

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")


# ──────────────────────────────────────────────
# POST /api/v1/auth/signup
# ──────────────────────────────────────────────

@auth_bp.route("/signup", methods=["POST"])
@rate_limit("auth")
def signup():
    """Create the account with the provider, then the local profile row."""
    data = validate_body(SignupSchema, request.get_json(silent=True))
    username = data.username or data.email.split("@")[0]

    try:
        result = identity.sign_up(data.email, data.password, {"username": username})
    except IdentityRejected as e:
        logger.info(f"Signup rejected by identity provider: {e}")
        raise InvalidInput("Could not create an account with these details") from e
    except IdentityProviderError as e:
        logger.error(f"Signup failed at identity provider: {e}")
        raise ExternalApiError("Sign-up is temporarily unavailable") from e

    provider_user = result.get("user") or {}
    if provider_user.get("id") and db.session.get(User, provider_user["id"]) is None:
        user = User(
            id=provider_user["id"],
            email=provider_user.get("email") or data.email,
            username=data.username,
            display_name=username,
        )
        db.session.add(user)
        db.session.commit()
        logger.info(f"Created profile for {user.id}")

    return jsonify({"user": provider_user, "session": result.get("session")}), 201


# ──────────────────────────────────────────────
# POST /api/v1/auth/refresh
# ──────────────────────────────────────────────

@auth_bp.route("/refresh", methods=["POST"])
@rate_limit("auth")
def refresh():
    data = validate_body(RefreshSchema, request.get_json(silent=True))

    try:
        result = identity.refresh_session(data.refresh_token)
    except IdentityRejected as e:
        raise InvalidToken("Invalid or expired refresh token") from e
    except IdentityProviderError as e:
        logger.error(f"Token refresh failed at identity provider: {e}")
        raise ExternalApiError("Token refresh is temporarily unavailable") from e

    return jsonify(result)


# ──────────────────────────────────────────────
# GET /api/v1/auth/session
# ──────────────────────────────────────────────

@auth_bp.route("/session", methods=["GET"])
@login_required
def session():
    """The identity resolved by the auth middleware, plus premium state."""
    user = db.session.get(User, g.user_id)
    return jsonify({
        "user": {"id": g.user_id, "email": g.user_email},
        "profile": user.to_dict() if user else None,
    })
