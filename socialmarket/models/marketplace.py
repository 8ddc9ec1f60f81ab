"""Marketplace models.

- MarketplaceItem: something a seller lists for sale.
- Order: one purchase, tied to exactly one Stripe PaymentIntent. Status moves
  pending -> paid | failed, and paid -> refunded, driven by webhooks.
"""

import uuid

from socialmarket.extensions import db
from socialmarket.timeutils import isoformat


class MarketplaceItem(db.Model):
    __tablename__ = "marketplace_items"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    seller_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="cad")
    is_available = db.Column(db.Boolean, nullable=False, default=True)
    sold_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<MarketplaceItem {self.title}>"


class Order(db.Model):
    __tablename__ = "orders"

    STATUSES = ["pending", "paid", "failed", "refunded"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    buyer_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    seller_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    item_id = db.Column(
        db.String(36), db.ForeignKey("marketplace_items.id"), nullable=False
    )
    quantity = db.Column(db.Integer, nullable=False, default=1)
    total_price = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False)
    payment_intent_id = db.Column(db.String(255), unique=True, nullable=False)
    status = db.Column(db.String(20), nullable=False, default="pending")
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    item = db.relationship("MarketplaceItem")

    def to_dict(self):
        return {
            "id": self.id,
            "buyer_id": self.buyer_id,
            "seller_id": self.seller_id,
            "item_id": self.item_id,
            "quantity": self.quantity,
            "total_price": str(self.total_price),
            "currency": self.currency,
            "payment_intent_id": self.payment_intent_id,
            "status": self.status,
            "created_at": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<Order {self.payment_intent_id} ({self.status})>"
