"""Post and comment models.

Comments are listed with keyset pagination on (created_at, id), so
created_at is stamped in Python with microsecond precision rather than by
the database.
"""

import uuid

from socialmarket.extensions import db
from socialmarket.timeutils import isoformat, utc_now


class Post(db.Model):
    __tablename__ = "posts"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    content = db.Column(db.Text, nullable=False)
    visibility = db.Column(db.String(20), nullable=False, default="public")
    comment_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=utc_now)

    def __repr__(self):
        return f"<Post {self.id}>"


class Comment(db.Model):
    __tablename__ = "comments"
    __table_args__ = (
        db.Index("ix_comments_post_created", "post_id", "created_at", "id"),
    )

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    post_id = db.Column(db.String(36), db.ForeignKey("posts.id"), nullable=False)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    parent_comment_id = db.Column(
        db.String(36), db.ForeignKey("comments.id"), nullable=True
    )
    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    def to_dict(self):
        return {
            "id": self.id,
            "post_id": self.post_id,
            "user_id": self.user_id,
            "parent_comment_id": self.parent_comment_id,
            "content": self.content,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }

    def __repr__(self):
        return f"<Comment {self.id}>"
