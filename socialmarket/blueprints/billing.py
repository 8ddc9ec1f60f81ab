"""Billing blueprint — /api/v1/billing/*

Routes:
- POST /api/v1/billing/checkout      — create a Checkout Session for supporter / vip
- GET  /api/v1/billing/subscription  — the caller's subscription (or null)
"""

import logging

import stripe
from flask import Blueprint, g, jsonify, request

from socialmarket.decorators import login_required
from socialmarket.errors import ExternalApiError, NotFound
from socialmarket.extensions import db
from socialmarket.models.user import User
from socialmarket.schemas import CheckoutSchema
from socialmarket.services.billing_service import get_subscription_for_user
from socialmarket.services.stripe_service import create_checkout_session
from socialmarket.validation import validate_body

logger = logging.getLogger(__name__)

billing_bp = Blueprint("billing", __name__, url_prefix="/api/v1/billing")


@billing_bp.route("/checkout", methods=["POST"])
@login_required
def checkout():
    """Create a Stripe Checkout Session for the authenticated user.

    The user comes from the verified token, never from the body.
    """
    data = validate_body(CheckoutSchema, request.get_json(silent=True))

    user = db.session.get(User, g.user_id)
    if user is None:
        raise NotFound.resource("User")

    try:
        session = create_checkout_session(user, data.tier)
    except stripe.StripeError as e:
        logger.error(f"Checkout error for user {user.id}: {e}", exc_info=True)
        raise ExternalApiError("Could not start checkout. Please try again.") from e

    return jsonify({"session_id": session.id, "url": session.url})


@billing_bp.route("/subscription", methods=["GET"])
@login_required
def subscription():
    sub = get_subscription_for_user(g.user_id)
    return jsonify({"subscription": sub.to_dict() if sub else None})
