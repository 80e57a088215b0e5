"""
Response envelope helpers.

Services return plain dicts with snake_case keys. The helpers here wrap them
in the {success, message, data} envelope and convert keys to camelCase.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic.alias_generators import to_camel


def camelize(value: Any) -> Any:
    """Recursively convert dict keys to camelCase and render datetimes as ISO 8601."""
    if isinstance(value, dict):
        return {
            (to_camel(k) if isinstance(k, str) else k): camelize(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [camelize(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def success_response(data: Any = None, message: str = "OK") -> dict[str, Any]:
    """Build a success envelope."""
    return {"success": True, "message": message, "data": camelize(data)}


def error_body(
    message: str,
    status_code: int,
    errors: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Build an error envelope. `errors` is omitted when empty."""
    body: dict[str, Any] = {
        "success": False,
        "message": message,
        "statusCode": status_code,
    }
    if errors:
        body["errors"] = errors
    return body
