"""Marketplace blueprint — /api/v1/marketplace/*

Routes:
- POST /api/v1/marketplace/payment-intents — start paying for a listed item
- GET  /api/v1/marketplace/orders/<id>     — an order visible to its buyer or seller
"""

import logging

import stripe
from flask import Blueprint, g, jsonify, request

from socialmarket.decorators import login_required
from socialmarket.errors import ExternalApiError, Forbidden, InvalidInput, NotFound
from socialmarket.extensions import db
from socialmarket.models.marketplace import MarketplaceItem, Order
from socialmarket.schemas import PaymentIntentSchema
from socialmarket.services.stripe_service import create_payment_intent
from socialmarket.validation import validate_body

logger = logging.getLogger(__name__)

marketplace_bp = Blueprint("marketplace", __name__, url_prefix="/api/v1/marketplace")


@marketplace_bp.route("/payment-intents", methods=["POST"])
@login_required
def payment_intent():
    """Create a PaymentIntent and a pending order for the caller."""
    data = validate_body(PaymentIntentSchema, request.get_json(silent=True))

    item = db.session.get(MarketplaceItem, data.item_id)
    if item is None:
        raise NotFound.resource("Item")
    if not item.is_available:
        raise InvalidInput("Item is no longer available", field="item_id")
    if item.seller_id == g.user_id:
        raise InvalidInput("You cannot buy your own item", field="item_id")

    try:
        intent, order = create_payment_intent(g.user_id, item, data.quantity)
    except stripe.StripeError as e:
        logger.error(f"Payment intent error for item {item.id}: {e}", exc_info=True)
        raise ExternalApiError("Could not start payment. Please try again.") from e

    return jsonify({
        "client_secret": intent.client_secret,
        "payment_intent_id": intent.id,
        "order": order.to_dict(),
    }), 201


@marketplace_bp.route("/orders/<order_id>", methods=["GET"])
@login_required
def get_order(order_id):
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFound.resource("Order")
    if g.user_id not in (order.buyer_id, order.seller_id):
        raise Forbidden()
    return jsonify({"order": order.to_dict()})
