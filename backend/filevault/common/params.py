from __future__ import annotations

from .errors import APIError


def parse_int(value: str | None, field_name: str) -> int:
    try:
        return int(value or "")
    except ValueError as error:
        raise APIError(400, "INVALID_PARAMETER", f"{field_name} must be an integer.") from error


def parse_nullable_int(value: str | int | None, field_name: str) -> int | None:
    if value in (None, "", "null"):
        return None
    if isinstance(value, bool):
        raise APIError(400, "INVALID_PARAMETER", f"{field_name} must be an integer or null.")
    try:
        return int(value)
    except (TypeError, ValueError) as error:
        raise APIError(400, "INVALID_PARAMETER", f"{field_name} must be an integer or null.") from error


def parse_limit(value: str | None, default: int, maximum: int = 100) -> int:
    if value in (None, ""):
        return default
    limit = parse_int(value, "limit")
    if limit <= 0:
        raise APIError(400, "INVALID_PARAMETER", "limit must be positive.")
    return min(limit, maximum)
