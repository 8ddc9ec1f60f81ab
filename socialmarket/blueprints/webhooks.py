"""Webhooks blueprint — /api/v1/stripe/webhooks

Receives Stripe webhook events. No bearer token: the Stripe-Signature
header over the raw body is the only authentication.
"""

import logging

from flask import Blueprint, jsonify, request

from socialmarket.services.stripe_service import handle_webhook_event

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/v1/stripe")


@webhooks_bp.route("/webhooks", methods=["POST"])
def stripe_webhook():
    """Receive and process Stripe webhook events.

    1. Get raw body (required for signature verification)
    2. Verify signature with STRIPE_WEBHOOK_SECRET (400 on failure)
    3. Dispatch by event type (idempotent keyed writes)
    4. Return 200 to acknowledge receipt, even if the handler failed
    """
    payload = request.get_data(as_text=True)
    sig_header = request.headers.get("Stripe-Signature")

    status = handle_webhook_event(payload, sig_header)

    if status == "failed":
        logger.error("Webhook acknowledged after a handler failure; see previous error")
    return jsonify({"received": True, "status": status}), 200
