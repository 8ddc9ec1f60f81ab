"""API error taxonomy and the JSON error envelope.

Every handler failure is rendered as:

    {"error": {"code": "NOT_FOUND", "message": "Post not found", "field": "..."}}

with the HTTP status derived from the error class. Messages never carry
stack traces or internal identifiers.
"""

import logging

from flask import jsonify, request
from flask_limiter import RateLimitExceeded as LimitBreached
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.exceptions import HTTPException

from socialmarket.extensions import db

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Base class for errors that map onto the standard envelope."""

    status_code = 500
    code = "INTERNAL_ERROR"
    default_message = "Internal server error"

    def __init__(self, message=None, field=None, headers=None):
        self.message = message or self.default_message
        self.field = field
        self.headers = headers or {}
        super().__init__(self.message)

    def to_dict(self):
        body = {"code": self.code, "message": self.message}
        if self.field:
            body["field"] = self.field
        return {"error": body}


# --- Authentication & authorization ---

class Unauthorized(ApiError):
    status_code = 401
    code = "UNAUTHORIZED"
    default_message = "Authentication required"


class InvalidToken(ApiError):
    status_code = 401
    code = "INVALID_TOKEN"
    default_message = "Invalid or expired token"


class InvalidSignature(ApiError):
    status_code = 400
    code = "INVALID_SIGNATURE"
    default_message = "Invalid signature"


class Forbidden(ApiError):
    status_code = 403
    code = "FORBIDDEN"
    default_message = "You do not have permission to perform this action"


# --- Input validation ---

class InvalidInput(ApiError):
    status_code = 400
    code = "INVALID_INPUT"
    default_message = "Invalid input"


class MissingField(ApiError):
    status_code = 400
    code = "MISSING_FIELD"
    default_message = "A required field is missing"


# --- Resources ---

class NotFound(ApiError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Resource not found"

    @classmethod
    def resource(cls, name):
        return cls(f"{name} not found")


class AlreadyExists(ApiError):
    status_code = 409
    code = "ALREADY_EXISTS"
    default_message = "Resource already exists"


# --- Rate limiting ---

class RateLimitExceeded(ApiError):
    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"
    default_message = "Too many requests. Please try again later."


# --- Server ---

class InternalError(ApiError):
    pass


class DatabaseError(ApiError):
    code = "DATABASE_ERROR"
    default_message = "A database error occurred"


class ExternalApiError(ApiError):
    code = "EXTERNAL_API_ERROR"
    default_message = "An upstream service failed"


def ensure_owner(owner_id, user_id, message=None):
    """Raise Forbidden unless the resolved identity owns the resource."""
    if owner_id is None or owner_id != user_id:
        raise Forbidden(message)


def error_response(error):
    """Render an ApiError as (response, status)."""
    response = jsonify(error.to_dict())
    response.status_code = error.status_code
    for name, value in error.headers.items():
        response.headers[name] = str(value)
    return response


def is_unique_violation(error):
    """True when an IntegrityError came from a unique constraint or key."""
    orig = getattr(error, "orig", None)
    if getattr(orig, "pgcode", None) == "23505":
        return True
    text = str(orig).lower()
    return "unique constraint" in text or "duplicate key" in text


def integrity_error_response(error):
    db.session.rollback()
    if is_unique_violation(error):
        logger.warning(f"Unique constraint violated: {error.orig}")
        return error_response(AlreadyExists())
    logger.error(f"Integrity error: {error.orig}")
    return error_response(DatabaseError())


def register_error_handlers(app):
    """Render every failure as the standard JSON envelope."""

    @app.errorhandler(ApiError)
    def handle_api_error(e):
        return error_response(e)

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(e):
        return integrity_error_response(e)

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(e):
        db.session.rollback()
        logger.error(f"Database error: {e}", exc_info=True)
        return error_response(DatabaseError())

    @app.errorhandler(LimitBreached)
    def handle_limit_breached(e):
        # Flask-Limiter adds the Retry-After and X-RateLimit-* headers.
        logger.warning(f"Rate limit exceeded: {e.description} path={request.path}")
        return error_response(RateLimitExceeded())

    @app.errorhandler(404)
    def not_found(e):
        return error_response(NotFound())

    @app.errorhandler(405)
    def method_not_allowed(e):
        err = InvalidInput("Method not allowed")
        err.status_code = 405
        return error_response(err)

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        if e.code and e.code < 500:
            err = InvalidInput(e.description)
            err.status_code = e.code
            return error_response(err)
        logger.error(f"HTTP {e.code}: {e.description}")
        return error_response(InternalError())

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        logger.error(f"Unhandled error: {e}", exc_info=True)
        return error_response(InternalError("An unexpected error occurred"))
