"""Comment service — listing, creation and owner-only edits.

Listing uses keyset (cursor) pagination ordered by (created_at, id). The
cursor is the last returned item's ordering key, "<iso created_at>|<id>";
the id tie-breaker keeps rows with identical timestamps from being skipped
or repeated across pages.
"""

import logging

from sqlalchemy import and_, or_

from socialmarket.errors import InvalidInput, NotFound, ensure_owner
from socialmarket.extensions import db
from socialmarket.models.post import Comment, Post
from socialmarket.timeutils import isoformat, parse_iso
from socialmarket.validation import sanitize_input

logger = logging.getLogger(__name__)


def encode_cursor(comment):
    return f"{isoformat(comment.created_at)}|{comment.id}"


def decode_cursor(cursor):
    """Return (created_at, id). Raises InvalidInput on a malformed cursor."""
    created_raw, sep, last_id = cursor.partition("|")
    try:
        created_at = parse_iso(created_raw)
    except ValueError as e:
        raise InvalidInput("Invalid cursor", field="cursor") from e
    if not sep or not last_id:
        raise InvalidInput("Invalid cursor", field="cursor")
    return created_at, last_id


def get_post_or_404(post_id):
    post = db.session.get(Post, post_id)
    if post is None:
        raise NotFound.resource("Post")
    return post


def list_comments(post_id, cursor=None, limit=20):
    """Top-level comments of a post, oldest first.

    Returns (items, next_cursor); next_cursor is None unless a full page
    came back.
    """
    get_post_or_404(post_id)

    query = Comment.query.filter(
        Comment.post_id == post_id,
        Comment.parent_comment_id.is_(None),
    )
    if cursor:
        created_at, last_id = decode_cursor(cursor)
        query = query.filter(or_(
            Comment.created_at > created_at,
            and_(Comment.created_at == created_at, Comment.id > last_id),
        ))

    items = (
        query
        .order_by(Comment.created_at.asc(), Comment.id.asc())
        .limit(limit)
        .all()
    )
    next_cursor = encode_cursor(items[-1]) if len(items) == limit else None
    return items, next_cursor


def create_comment(post_id, user_id, content, parent_comment_id=None):
    post = get_post_or_404(post_id)

    if parent_comment_id:
        parent = db.session.get(Comment, parent_comment_id)
        if parent is None or parent.post_id != post_id:
            raise InvalidInput("Parent comment not found on this post",
                               field="parent_comment_id")

    comment = Comment(
        post_id=post_id,
        user_id=user_id,
        content=sanitize_input(content),
        parent_comment_id=parent_comment_id,
    )
    db.session.add(comment)
    post.comment_count = (post.comment_count or 0) + 1
    db.session.commit()
    return comment


def _get_owned_comment(comment_id, user_id):
    comment = db.session.get(Comment, comment_id)
    if comment is None:
        raise NotFound.resource("Comment")
    ensure_owner(comment.user_id, user_id, "Only the author can change this comment")
    return comment


def update_comment(comment_id, user_id, content):
    comment = _get_owned_comment(comment_id, user_id)
    comment.content = sanitize_input(content)
    db.session.commit()
    return comment


def delete_comment(comment_id, user_id):
    comment = _get_owned_comment(comment_id, user_id)
    post = db.session.get(Post, comment.post_id)

    # Replies (and replies to them) go with their parent. Deepest level first
    # so no row ever points at a deleted parent.
    levels = [[comment.id]]
    while levels[-1]:
        children = db.session.scalars(
            db.select(Comment.id).where(Comment.parent_comment_id.in_(levels[-1]))
        ).all()
        levels.append(children)

    removed = 0
    for ids in reversed(levels):
        if ids:
            removed += Comment.query.filter(Comment.id.in_(ids)).delete()
    if post is not None:
        post.comment_count = max(0, (post.comment_count or 0) - removed)
    db.session.commit()
    logger.info(f"Comment {comment_id} deleted by {user_id}")
