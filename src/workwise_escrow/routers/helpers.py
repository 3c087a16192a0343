"""Shared router helper functions."""

from __future__ import annotations

import json
from typing import Any

from workwise_escrow.core.exceptions import ServiceError


def parse_json_body(body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising ServiceError on failure."""
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ServiceError(
            "INVALID_JSON",
            "Request body is not valid JSON",
            400,
            {},
        ) from exc

    if not isinstance(data, dict):
        raise ServiceError(
            "INVALID_JSON",
            "Request body must be a JSON object",
            400,
            {},
        )

    return data


def require_string(data: dict[str, Any], field_name: str) -> str:
    """Extract a required non-empty string field."""
    value = data.get(field_name)
    if value is None:
        raise ServiceError(
            "INVALID_PAYLOAD",
            f"Missing required field: {field_name}",
            400,
            {"field": field_name},
        )
    if not isinstance(value, str) or not value.strip():
        raise ServiceError(
            "INVALID_PAYLOAD",
            f"Field '{field_name}' must be a non-empty string",
            400,
            {"field": field_name},
        )
    return value


def optional_string(data: dict[str, Any], field_name: str) -> str | None:
    """Extract an optional string field; null and absent both mean None."""
    value = data.get(field_name)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ServiceError(
            "INVALID_PAYLOAD",
            f"Field '{field_name}' must be a string",
            400,
            {"field": field_name},
        )
    return value

