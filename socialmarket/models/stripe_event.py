"""Processed Stripe webhook events.

One row per dispatched event id. A redelivered id is acknowledged without
dispatching again; the handlers are keyed upserts as well, so the ledger
only saves the work. ``object_id`` is the Checkout Session, Subscription
or PaymentIntent the event was about, so support can list every event that
touched a given subscription. ``outcome`` tells a handled event apart from
one acknowledged as an unhandled type.
"""

import uuid

from socialmarket.extensions import db


class StripeEvent(db.Model):
    __tablename__ = "stripe_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stripe_event_id = db.Column(db.String(255), unique=True, nullable=False)
    event_type = db.Column(db.String(255), nullable=False)
    object_id = db.Column(db.String(255), nullable=True, index=True)  # cs_ / sub_ / pi_
    outcome = db.Column(db.String(20), nullable=False, default="processed")
    livemode = db.Column(db.Boolean, nullable=False, default=False)
    processed_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    @classmethod
    def seen(cls, stripe_event_id):
        """True if this event id was already recorded."""
        return db.session.query(
            cls.query.filter_by(stripe_event_id=stripe_event_id).exists()
        ).scalar()

    def __repr__(self):
        return f"<StripeEvent {self.stripe_event_id} {self.event_type} -> {self.outcome}>"
