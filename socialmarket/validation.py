"""Validation helpers.

Request bodies and query strings are validated against pydantic models in
socialmarket.schemas. The first validation error becomes an InvalidInput /
MissingField carrying the dotted path of the offending field.
"""

import re

import bleach
from pydantic import ValidationError

from socialmarket.errors import InvalidInput, MissingField

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _first_error(exc):
    err = exc.errors()[0]
    field = ".".join(str(part) for part in err.get("loc", ()))
    if err.get("type") == "missing":
        return MissingField(f"{field} is required", field=field or None)
    return InvalidInput(err.get("msg", "Invalid input"), field=field or None)


def validate_body(schema, data):
    """Validate a decoded JSON body. Raises InvalidInput / MissingField."""
    if not isinstance(data, dict):
        raise InvalidInput("Request body must be a JSON object")
    try:
        return schema.model_validate(data)
    except ValidationError as e:
        raise _first_error(e) from e


def validate_query(schema, args):
    """Validate query-string args (a MultiDict or plain mapping)."""
    data = args.to_dict() if hasattr(args, "to_dict") else dict(args)
    try:
        return schema.model_validate(data)
    except ValidationError as e:
        raise _first_error(e) from e


def is_valid_uuid(value):
    return bool(value) and bool(_UUID_RE.match(value))


def is_valid_email(value):
    return bool(value) and bool(_EMAIL_RE.match(value))


def sanitize_input(value):
    """Strip HTML tags from user-supplied text (basic XSS prevention)."""
    return bleach.clean(value, tags=[], strip=True).strip()
