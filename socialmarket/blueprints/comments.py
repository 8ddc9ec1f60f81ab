"""Comments blueprint.

Routes:
- GET    /api/v1/posts/<post_id>/comments  — cursor-paginated {items, nextCursor}
- POST   /api/v1/posts/<post_id>/comments  — add a comment as the caller
- PATCH  /api/v1/comments/<comment_id>     — author only
- DELETE /api/v1/comments/<comment_id>     — author only
"""

from flask import Blueprint, g, jsonify, request

from socialmarket.decorators import login_required
from socialmarket.schemas import CreateCommentSchema, PaginationSchema, UpdateCommentSchema
from socialmarket.services import comment_service
from socialmarket.validation import validate_body, validate_query

comments_bp = Blueprint("comments", __name__, url_prefix="/api/v1")


@comments_bp.route("/posts/<post_id>/comments", methods=["GET"])
@login_required
def list_comments(post_id):
    params = validate_query(PaginationSchema, request.args)
    items, next_cursor = comment_service.list_comments(
        post_id, cursor=params.cursor, limit=params.limit
    )
    return jsonify({
        "items": [c.to_dict() for c in items],
        "nextCursor": next_cursor,
    })


@comments_bp.route("/posts/<post_id>/comments", methods=["POST"])
@login_required
def create_comment(post_id):
    data = validate_body(CreateCommentSchema, request.get_json(silent=True))
    comment = comment_service.create_comment(
        post_id, g.user_id, data.content, data.parent_comment_id
    )
    return jsonify({"comment": comment.to_dict()}), 201


@comments_bp.route("/comments/<comment_id>", methods=["PATCH"])
@login_required
def update_comment(comment_id):
    data = validate_body(UpdateCommentSchema, request.get_json(silent=True))
    comment = comment_service.update_comment(comment_id, g.user_id, data.content)
    return jsonify({"comment": comment.to_dict()})


@comments_bp.route("/comments/<comment_id>", methods=["DELETE"])
@login_required
def delete_comment(comment_id):
    comment_service.delete_comment(comment_id, g.user_id)
    return jsonify({"success": True})
