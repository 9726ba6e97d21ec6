# app/utils/identifiers.py
"""Human-readable identifiers: challan numbers, transaction ids, receipt numbers."""

import secrets
import string
import time
from datetime import datetime
from typing import Optional

_ALPHABET = string.ascii_uppercase + string.digits


def _random_code(length: int) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def _base36(n: int) -> str:
    digits = string.digits + string.ascii_uppercase
    out = ""
    while n:
        n, rem = divmod(n, 36)
        out = digits[rem] + out
    return out or "0"


def generate_challan_number(now: Optional[datetime] = None) -> str:
    """HB + YYMM + 6 random chars, e.g. HB2610X7K2QP."""
    now = now or datetime.utcnow()
    return f"HB{now:%y%m}{_random_code(6)}"


def generate_transaction_id() -> str:
    """TXN + base36 millisecond timestamp + 8 random chars."""
    return f"TXN{_base36(int(time.time() * 1000))}{_random_code(8)}"


def receipt_number_for(transaction_id: str) -> str:
    return f"RCP-{transaction_id}"
