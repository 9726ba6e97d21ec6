# app/utils/json_parser.py
"""
Helpers for reading sensor webhook JSON payloads.
Sensors are untrusted: every accessor here tolerates missing keys and wrong types.
"""

import json
from datetime import datetime, timezone
from typing import Optional, Any, Union


def safe_parse_json(raw_body: Union[bytes, str]) -> Optional[Any]:
    """Parse JSON bytes safely. Returns None on error."""
    try:
        if isinstance(raw_body, bytes):
            raw_body = raw_body.decode("utf-8", errors="replace")
        return json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError):
        return None


def get_nested(data: dict, *keys: str, default: Any = None) -> Any:
    """Safely navigate nested dict keys. Returns default if any key is missing."""
    current = data
    for key in keys:
        if not isinstance(current, dict):
            return default
        current = current.get(key, default)
        if current is default:
            return default
    return current


def to_float(value: Any) -> Optional[float]:
    """Coerce a JSON number or numeric string to float. Booleans and garbage give None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO-8601 → naive UTC datetime. Returns None when absent or unparseable."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if parsed.tzinfo is not None:
            # Offsets near datetime.min/max overflow on conversion
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    except (ValueError, OverflowError):
        return None
    return parsed


def dump_payload(payload: Any) -> str:
    """Serialise a payload for the audit log. Non-JSON values are stored as their str()."""
    if isinstance(payload, bytes):
        return payload.decode("utf-8", errors="replace")
    if isinstance(payload, str):
        return payload
    try:
        return json.dumps(payload, default=str)
    except (TypeError, ValueError):
        return str(payload)
