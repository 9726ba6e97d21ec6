# app/utils/plate.py
"""
Vehicle registration number normalisation.
Every plate string that crosses a boundary goes through format_vehicle_number()
so "MH12AB1234" and "mh 12 ab 1234" always resolve to the same key.
"""

import re
from typing import Optional

_WHITESPACE = re.compile(r"\s+")
_INDIAN_PLATE = re.compile(r"^([A-Z]{2})(\d{2})([A-Z]{1,2})(\d{1,4})$")


def format_vehicle_number(raw: Optional[str]) -> str:
    """Canonical key: uppercase, all whitespace removed. Never raises."""
    if raw is None:
        return ""
    return _WHITESPACE.sub("", str(raw)).upper()


def display_vehicle_number(key: str) -> str:
    """MH12AB1234 -> MH 12 AB 1234. Non-matching keys are returned unchanged."""
    cleaned = format_vehicle_number(key)
    match = _INDIAN_PLATE.match(cleaned)
    if match:
        return " ".join(match.groups())
    return cleaned
