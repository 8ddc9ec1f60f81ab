"""User model.

Profile row keyed by the identity provider's user id. ``is_premium`` and
``premium_tier`` mirror the user's subscription and are only written by
billing_service.sync_premium_flag().
"""

from socialmarket.extensions import db
from socialmarket.timeutils import isoformat


class User(db.Model):
    __tablename__ = "users"

    # Same id the identity provider issues, so no local default.
    id = db.Column(db.String(36), primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    username = db.Column(db.String(30), unique=True, nullable=True)
    display_name = db.Column(db.String(50), nullable=True)
    is_premium = db.Column(db.Boolean, nullable=False, default=False)
    premium_tier = db.Column(db.String(20), nullable=True)  # supporter | vip
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    subscription = db.relationship(
        "Subscription", back_populates="user", uselist=False
    )

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "username": self.username,
            "display_name": self.display_name,
            "is_premium": bool(self.is_premium),
            "premium_tier": self.premium_tier,
            "created_at": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<User {self.email}>"
