"""Subscription model.

One row per user (user_id is unique): the checkout upsert is keyed by user,
every later billing event by stripe_subscription_id. Rows are retired with
status=canceled, never deleted. A row with canceled_at set was deleted on
the Stripe side and accepts no further transitions.
"""

import uuid

from socialmarket.extensions import db
from socialmarket.timeutils import isoformat


class Subscription(db.Model):
    __tablename__ = "subscriptions"

    TIERS = ["none", "supporter", "vip"]
    PAID_TIERS = ["supporter", "vip"]
    STATUSES = ["active", "canceled"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), unique=True, nullable=False
    )
    stripe_customer_id = db.Column(db.String(255), nullable=True)
    stripe_subscription_id = db.Column(
        db.String(255), unique=True, nullable=True
    )
    tier = db.Column(db.String(20), nullable=False, default="none")
    status = db.Column(db.String(20), nullable=False, index=True)  # active | canceled
    current_period_start = db.Column(db.DateTime(timezone=True), nullable=True)
    current_period_end = db.Column(db.DateTime(timezone=True), nullable=True)
    canceled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    user = db.relationship("User", back_populates="subscription")

    @property
    def is_terminal(self):
        return self.canceled_at is not None

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "stripe_customer_id": self.stripe_customer_id,
            "stripe_subscription_id": self.stripe_subscription_id,
            "tier": self.tier,
            "status": self.status,
            "current_period_start": isoformat(self.current_period_start),
            "current_period_end": isoformat(self.current_period_end),
            "canceled_at": isoformat(self.canceled_at),
        }

    def __repr__(self):
        return f"<Subscription {self.tier} ({self.status})>"
