"""Moderation log model.

Flagged moderation results, kept for review. Only the first 500 characters
of the text are stored.
"""

import uuid

from socialmarket.extensions import db


class ModerationLog(db.Model):
    __tablename__ = "moderation_logs"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
    content_type = db.Column(db.String(20), nullable=False, default="post")
    content_text = db.Column(db.String(500), nullable=False)
    flagged = db.Column(db.Boolean, nullable=False, default=True)
    categories = db.Column(db.JSON, default=list)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<ModerationLog {self.content_type} flagged={self.flagged}>"
