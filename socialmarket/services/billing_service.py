"""Billing service — DB sync helpers and entitlement logic.

Responsible for:
- Mapping Stripe statuses onto the local two-state status
- Upserting the per-user Subscription row from checkout data
- Re-deriving the denormalized User premium flag from a Subscription
- Looking up Stripe customers / price ids for checkout

None of these commit: the webhook dispatcher commits the subscription write
and the premium-flag write together.
"""

import logging
from datetime import timedelta

from socialmarket.extensions import db
from socialmarket.models.billing import Subscription
from socialmarket.models.user import User

logger = logging.getLogger(__name__)


def map_stripe_status(stripe_status):
    """Two-state mapping: Stripe "active" stays active, anything else is canceled."""
    return "active" if stripe_status == "active" else "canceled"


def get_price_id_for_tier(tier, app_config):
    """Map a paid tier (supporter / vip) to its configured Stripe price ID."""
    if tier == "supporter":
        return app_config.get("STRIPE_PRICE_SUPPORTER") or None
    elif tier == "vip":
        return app_config.get("STRIPE_PRICE_VIP") or None
    return None


def get_subscription_for_user(user_id):
    return Subscription.query.filter_by(user_id=user_id).first()


def get_subscription_by_stripe_id(stripe_subscription_id):
    if not stripe_subscription_id:
        return None
    return Subscription.query.filter_by(
        stripe_subscription_id=stripe_subscription_id
    ).first()


def get_stripe_customer_id(user_id):
    """Return the Stripe customer already on file for this user, or None."""
    sub = get_subscription_for_user(user_id)
    if sub and sub.stripe_customer_id:
        return sub.stripe_customer_id
    return None


def checkout_period(started_at, app_config):
    """Billing period stamped by a completed checkout: [start, start + N days)."""
    days = app_config.get("SUBSCRIPTION_PERIOD_DAYS", 30)
    return started_at, started_at + timedelta(days=days)


def upsert_subscription_for_user(user_id, stripe_customer_id,
                                 stripe_subscription_id, tier,
                                 period_start, period_end):
    """Create or overwrite the user's Subscription row as active.

    Keyed by user_id: a second checkout for the same user (or a replay of
    the same one) rewrites the single row rather than adding another.
    Clears canceled_at, since a new checkout starts a new subscription.
    """
    sub = get_subscription_for_user(user_id)

    if sub:
        sub.stripe_customer_id = stripe_customer_id
        sub.stripe_subscription_id = stripe_subscription_id
        sub.tier = tier
        sub.status = "active"
        sub.current_period_start = period_start
        sub.current_period_end = period_end
        sub.canceled_at = None
    else:
        sub = Subscription(
            user_id=user_id,
            stripe_customer_id=stripe_customer_id,
            stripe_subscription_id=stripe_subscription_id,
            tier=tier,
            status="active",
            current_period_start=period_start,
            current_period_end=period_end,
        )
        db.session.add(sub)

    db.session.flush()
    return sub


def sync_premium_flag(subscription):
    """Re-derive User.is_premium / premium_tier from ``subscription``.

    Premium iff the subscription is active on a paid tier. Both fields are
    always written together. Returns the User, or None if the profile row
    doesn't exist.
    """
    user = db.session.get(User, subscription.user_id)
    if user is None:
        logger.warning(
            f"No user profile {subscription.user_id} for subscription "
            f"{subscription.stripe_subscription_id}; premium flag not written"
        )
        return None

    if subscription.status == "active" and subscription.tier in Subscription.PAID_TIERS:
        user.is_premium = True
        user.premium_tier = subscription.tier
    else:
        user.is_premium = False
        user.premium_tier = None

    db.session.flush()
    return user


def resync_all_premium_flags():
    """Compensating pass: rewrite every user's flag from their subscription.

    Users flagged premium with no subscription row at all are cleared too.
    Returns the number of users whose flag changed.
    """
    changed = 0
    for sub in Subscription.query.order_by(Subscription.created_at).all():
        user = db.session.get(User, sub.user_id)
        if user is None:
            continue
        before = (bool(user.is_premium), user.premium_tier)
        sync_premium_flag(sub)
        if (bool(user.is_premium), user.premium_tier) != before:
            logger.info(f"Premium flag for user {user.id} re-derived: {before} -> "
                        f"{(user.is_premium, user.premium_tier)}")
            changed += 1

    orphaned = (
        User.query
        .outerjoin(Subscription, Subscription.user_id == User.id)
        .filter(Subscription.id.is_(None))
        .filter((User.is_premium.is_(True)) | (User.premium_tier.isnot(None)))
        .all()
    )
    for user in orphaned:
        logger.info(f"Premium flag for user {user.id} cleared: no subscription row "
                    f"(was {(user.is_premium, user.premium_tier)})")
        user.is_premium = False
        user.premium_tier = None
        changed += 1
    db.session.flush()
    return changed
