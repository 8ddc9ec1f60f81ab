"""Stripe service — all Stripe API calls and webhook handling.

Responsible for:
- Creating Stripe Checkout Sessions (supporter / vip subscriptions)
- Creating PaymentIntents + pending Orders for marketplace purchases
- Verifying webhook signatures against the raw request body
- Dispatching verified events to event-specific handlers
- Recording processed event IDs in the stripe_events table

Stripe delivers at least once and in no particular order, so every handler
is a keyed write of fields taken from the event payload (last write wins).
A subscription and its user's premium flag are written in one transaction.
"""

import json
import logging
from decimal import Decimal

import stripe
from flask import current_app

from socialmarket.errors import InvalidInput, InvalidSignature
from socialmarket.extensions import db
from socialmarket.models.billing import Subscription
from socialmarket.models.marketplace import Order
from socialmarket.models.stripe_event import StripeEvent
from socialmarket.models.user import User
from socialmarket.services.billing_service import (
    checkout_period,
    get_price_id_for_tier,
    get_stripe_customer_id,
    get_subscription_by_stripe_id,
    map_stripe_status,
    sync_premium_flag,
    upsert_subscription_for_user,
)
from socialmarket.timeutils import from_epoch, utc_now

logger = logging.getLogger(__name__)


def _extract_period(sub_data):
    """Extract (current_period_start, current_period_end) from a subscription.

    In newer Stripe API versions the period bounds moved from the
    subscription top level to items.data[0]. This helper checks both.

    Returns timezone-aware datetimes (either may be None).
    """
    start = sub_data.get("current_period_start")
    end = sub_data.get("current_period_end")

    if not start or not end:
        items = sub_data.get("items")
        if items and items.get("data"):
            first = items["data"][0]
            start = start or first.get("current_period_start")
            end = end or first.get("current_period_end")

    return from_epoch(start), from_epoch(end)


def _invoice_subscription_id(invoice):
    """Subscription id on an invoice, old (top-level) or new (parent) shape."""
    sub_id = invoice.get("subscription")
    if sub_id:
        return sub_id if isinstance(sub_id, str) else sub_id.get("id")

    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") or {}
    return details.get("subscription")


# ──────────────────────────────────────────────
# Checkout & Payment Intents
# ──────────────────────────────────────────────

def create_checkout_session(user, tier):
    """Create a Stripe Checkout Session for a supporter / vip subscription.

    Reuses the Stripe customer already on the user's subscription row, or
    creates one. The session carries userId + tier metadata, which the
    checkout.session.completed handler needs.

    Returns the Stripe session.
    Raises InvalidInput if the tier has no configured price.
    Raises stripe.StripeError on API failures.
    """
    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]
    app_base_url = current_app.config["APP_BASE_URL"]

    price_id = get_price_id_for_tier(tier, current_app.config)
    if not price_id:
        raise InvalidInput(f"Tier '{tier}' is not available", field="tier")

    customer_id = get_stripe_customer_id(user.id)
    if not customer_id:
        customer = stripe.Customer.create(
            email=user.email,
            metadata={"userId": user.id},
        )
        customer_id = customer.id

    metadata = {"userId": user.id, "tier": tier}
    return stripe.checkout.Session.create(
        mode="subscription",
        customer=customer_id,
        line_items=[{"price": price_id, "quantity": 1}],
        success_url=(
            f"{app_base_url}/dashboard?session_id={{CHECKOUT_SESSION_ID}}"
        ),
        cancel_url=f"{app_base_url}/pricing",
        billing_address_collection="auto",
        metadata=metadata,
        subscription_data={"metadata": metadata},
    )


def create_payment_intent(buyer_id, item, quantity=1):
    """Create a PaymentIntent for ``quantity`` of ``item`` and a pending Order.

    The amount comes from the item's listed price, never from the client.
    Returns (payment_intent, order). The order is committed.
    Raises stripe.StripeError on API failures (nothing is written then).
    """
    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]

    total = (Decimal(item.price) * quantity).quantize(Decimal("0.01"))
    amount_cents = int(total * 100)

    intent = stripe.PaymentIntent.create(
        amount=amount_cents,
        currency=item.currency,
        metadata={
            "itemId": item.id,
            "buyerId": buyer_id,
            "sellerId": item.seller_id,
            "quantity": str(quantity),
        },
        automatic_payment_methods={"enabled": True},
    )

    order = Order(
        buyer_id=buyer_id,
        seller_id=item.seller_id,
        item_id=item.id,
        quantity=quantity,
        total_price=total,
        currency=item.currency,
        payment_intent_id=intent.id,
        status="pending",
    )
    db.session.add(order)
    db.session.commit()
    logger.info(f"Order {order.id} created for intent {intent.id} ({total} {item.currency})")
    return intent, order


# ──────────────────────────────────────────────
# Webhook Handling
# ──────────────────────────────────────────────

def verify_webhook_signature(payload, sig_header):
    """Verify the Stripe-Signature header against the raw body, then decode.

    ``payload`` must be the exact request body; decoding and re-encoding it
    first would break the signature.

    Returns the event as a plain dict.
    Raises InvalidSignature on a missing or mismatched signature.
    """
    if not sig_header:
        raise InvalidSignature("Missing signature")

    if isinstance(payload, bytes):
        payload = payload.decode("utf-8")

    try:
        stripe.WebhookSignature.verify_header(
            payload,
            sig_header,
            current_app.config["STRIPE_WEBHOOK_SECRET"],
            current_app.config.get("STRIPE_WEBHOOK_TOLERANCE", 300),
        )
    except stripe.SignatureVerificationError as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        raise InvalidSignature() from e

    try:
        event = json.loads(payload)
    except ValueError as e:
        raise InvalidInput("Webhook body is not valid JSON") from e
    if not isinstance(event, dict):
        raise InvalidInput("Webhook body is not a JSON object")
    return event


def handle_webhook_event(payload, sig_header):
    """Verify and process one webhook delivery.

    Returns one of:
        "processed"          handler ran and its writes were committed
        "ignored"            event type we don't handle (acknowledged)
        "already_processed"  event id seen before; nothing dispatched
        "failed"             handler raised; rolled back and logged

    Only signature problems raise (InvalidSignature). Handler failures are
    acknowledged so Stripe doesn't retry-storm an event we can't process.
    """
    event = verify_webhook_signature(payload, sig_header)
    event_id = event.get("id")
    event_type = event.get("type")

    # --- Redelivery shortcut ---
    if event_id and StripeEvent.seen(event_id):
        logger.info(f"Duplicate webhook event {event_id}, skipping")
        return "already_processed"

    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.info(f"Unhandled event type: {event_type}")
        _record_event(event, "ignored")
        db.session.commit()
        return "ignored"

    try:
        handler(event)
        _record_event(event, "processed")
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(
            f"Error handling {event_type} ({event_id}); subscription and user "
            f"state left unchanged: {e}",
            exc_info=True,
        )
        return "failed"

    return "processed"


def _record_event(event, outcome):
    event_id = event.get("id")
    if not event_id:
        return
    obj = (event.get("data") or {}).get("object") or {}
    db.session.add(StripeEvent(
        stripe_event_id=event_id,
        event_type=event.get("type") or "",
        object_id=obj.get("id"),
        outcome=outcome,
        livemode=bool(event.get("livemode", False)),
    ))


# ──────────────────────────────────────────────
# Subscription Event Handlers
# ──────────────────────────────────────────────

def _handle_checkout_completed(event):
    """Handle checkout.session.completed.

    The only transition that starts from a user-facing checkout. Upserts the
    user's Subscription as active and sets the premium flag.
    """
    session = event["data"]["object"]
    metadata = session.get("metadata") or event.get("metadata") or {}

    user_id = metadata.get("userId")
    tier = metadata.get("tier")

    if not user_id or not tier:
        logger.warning(
            f"checkout.session.completed {session.get('id')} missing userId or tier metadata"
        )
        return

    if tier not in Subscription.PAID_TIERS:
        logger.warning(f"checkout.session.completed with unknown tier {tier!r}")
        return

    if db.session.get(User, user_id) is None:
        logger.warning(f"checkout.session.completed for unknown user {user_id}")
        return

    # The event timestamp anchors the period, so a replay writes the same row.
    started_at = from_epoch(event.get("created")) or utc_now()
    period_start, period_end = checkout_period(started_at, current_app.config)

    sub = upsert_subscription_for_user(
        user_id=user_id,
        stripe_customer_id=session.get("customer"),
        stripe_subscription_id=session.get("subscription"),
        tier=tier,
        period_start=period_start,
        period_end=period_end,
    )
    sync_premium_flag(sub)
    logger.info(f"Subscription {sub.stripe_subscription_id} active for user {user_id} ({tier})")


def _handle_payment_succeeded(event):
    """Handle invoice.payment_succeeded.

    Marks the subscription active and takes the period from the invoice.
    """
    invoice = event["data"]["object"]
    stripe_subscription_id = _invoice_subscription_id(invoice)

    if not stripe_subscription_id:
        logger.info(f"invoice.payment_succeeded {invoice.get('id')} has no subscription")
        return

    sub = get_subscription_by_stripe_id(stripe_subscription_id)
    if not sub:
        logger.warning(
            f"invoice.payment_succeeded: no local record for sub={stripe_subscription_id}"
        )
        return

    if sub.is_terminal:
        logger.info(f"invoice.payment_succeeded: sub={stripe_subscription_id} already deleted")
        return

    sub.status = "active"
    period_start = from_epoch(invoice.get("period_start"))
    period_end = from_epoch(invoice.get("period_end"))
    if period_start:
        sub.current_period_start = period_start
    if period_end:
        sub.current_period_end = period_end
    db.session.flush()

    sync_premium_flag(sub)


def _handle_subscription_updated(event):
    """Handle customer.subscription.updated.

    Maps the Stripe status onto active / canceled and refreshes the period.
    Re-applying the same event yields the same row.
    """
    sub_data = event["data"]["object"]
    stripe_subscription_id = sub_data.get("id")

    sub = get_subscription_by_stripe_id(stripe_subscription_id)
    if not sub:
        logger.warning(
            f"subscription.updated: no local record for sub={stripe_subscription_id}"
        )
        return

    if sub.is_terminal:
        logger.info(f"subscription.updated: sub={stripe_subscription_id} already deleted")
        return

    sub.status = map_stripe_status(sub_data.get("status"))
    period_start, period_end = _extract_period(sub_data)
    if period_start:
        sub.current_period_start = period_start
    if period_end:
        sub.current_period_end = period_end
    db.session.flush()

    sync_premium_flag(sub)


def _handle_subscription_deleted(event):
    """Handle customer.subscription.deleted.

    Retires the subscription (status=canceled, canceled_at stamped once)
    and clears the user's premium flag.
    """
    sub_data = event["data"]["object"]
    stripe_subscription_id = sub_data.get("id")

    sub = get_subscription_by_stripe_id(stripe_subscription_id)
    if not sub:
        logger.warning(
            f"subscription.deleted: no local record for sub={stripe_subscription_id}"
        )
        return

    sub.status = "canceled"
    if sub.canceled_at is None:
        sub.canceled_at = (
            from_epoch(sub_data.get("canceled_at"))
            or from_epoch(event.get("created"))
            or utc_now()
        )
    db.session.flush()

    sync_premium_flag(sub)


# ──────────────────────────────────────────────
# Marketplace Event Handlers
# ──────────────────────────────────────────────

def _get_order(payment_intent_id, event_type):
    order = None
    if payment_intent_id:
        order = Order.query.filter_by(payment_intent_id=payment_intent_id).first()
    if not order:
        logger.warning(f"{event_type}: no order for payment_intent={payment_intent_id}")
    return order


def _handle_payment_intent_succeeded(event):
    """Handle payment_intent.succeeded: order -> paid, counted as sold once."""
    intent = event["data"]["object"]
    order = _get_order(intent.get("id"), "payment_intent.succeeded")
    if not order:
        return

    if order.status in ("paid", "refunded"):
        return

    order.status = "paid"
    if order.item is not None:
        order.item.sold_count = (order.item.sold_count or 0) + order.quantity
    db.session.flush()


def _handle_payment_intent_failed(event):
    """Handle payment_intent.payment_failed: only a pending order can fail."""
    intent = event["data"]["object"]
    order = _get_order(intent.get("id"), "payment_intent.payment_failed")
    if order and order.status == "pending":
        order.status = "failed"
        db.session.flush()


def _handle_charge_refunded(event):
    """Handle charge.refunded: a paid order becomes refunded."""
    charge = event["data"]["object"]
    order = _get_order(charge.get("payment_intent"), "charge.refunded")
    if order and order.status == "paid":
        order.status = "refunded"
        db.session.flush()


EVENT_HANDLERS = {
    "checkout.session.completed": _handle_checkout_completed,
    "invoice.payment_succeeded": _handle_payment_succeeded,
    "customer.subscription.updated": _handle_subscription_updated,
    "customer.subscription.deleted": _handle_subscription_deleted,
    "payment_intent.succeeded": _handle_payment_intent_succeeded,
    "payment_intent.payment_failed": _handle_payment_intent_failed,
    "charge.refunded": _handle_charge_refunded,
}
