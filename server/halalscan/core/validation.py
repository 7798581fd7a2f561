from typing import Any, Dict, Sequence

from halalscan.core.errors import ValidationError

VALUE_ERROR_PREFIX = "Value error, "


def first_error(errors: Sequence[Dict[str, Any]]) -> ValidationError:
    """
    Reduce pydantic (or FastAPI request) errors to the first offending field.

    FastAPI prefixes body locations with ``"body"``; an error located at the
    body itself means the payload was not a JSON object.
    """
    error = errors[0]
    loc = [part for part in error.get("loc", ()) if part != "body"]
    if not loc:
        if error.get("type") == "missing":
            return ValidationError("payload", "Request body is required")
        return ValidationError("payload", "Invalid input data")

    reason = str(error.get("msg", "Invalid value"))
    if reason.startswith(VALUE_ERROR_PREFIX):
        reason = reason[len(VALUE_ERROR_PREFIX):]
    return ValidationError(str(loc[0]), reason)

