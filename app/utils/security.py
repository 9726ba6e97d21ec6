# app/utils/security.py
"""
Secret hashing and constant-time comparisons.
Owner dates of birth are stored only as bcrypt hashes.
"""

import hmac
from datetime import date, datetime
from typing import Optional, Union

import bcrypt

# Stored on placeholder vehicles. Not a valid bcrypt hash, so no DOB can ever match it.
PLACEHOLDER_DOB_HASH = "!placeholder"


def normalize_dob(dob: Union[str, date, datetime]) -> str:
    """
    Reduce a date of birth to YYYY-MM-DD before hashing or checking,
    so "1990-05-17" and "1990-05-17T00:00:00Z" compare equal.
    """
    if isinstance(dob, datetime):
        return dob.date().isoformat()
    if isinstance(dob, date):
        return dob.isoformat()
    value = str(dob).strip()
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        return value


def hash_secret(secret: str) -> str:
    """Hash a secret (DOB) with bcrypt."""
    return bcrypt.hashpw(secret.encode("utf-8"), bcrypt.gensalt(rounds=10)).decode("utf-8")


def verify_secret(secret: str, hashed: Optional[str]) -> bool:
    """Check a secret against its bcrypt hash. Placeholder / malformed hashes never match."""
    if not hashed or hashed == PLACEHOLDER_DOB_HASH:
        return False
    try:
        return bcrypt.checkpw(secret.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def keys_match(provided: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time API key comparison. A missing key never matches."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
