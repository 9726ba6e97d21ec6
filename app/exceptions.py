# app/exceptions.py
"""
Domain error hierarchy for the detection-to-settlement pipeline.

Every error carries a machine-readable code and an HTTP status so routers
can render "already processed" differently from "server error".
Categories:
  input        — malformed / missing fields, unauthorized caller
  policy       — expected routine outcomes (low intensity, already decided, ...)
  consistency  — illegal state transition, signature mismatch
  upstream     — persistence or payment provider unavailable
"""

from typing import Any, Optional


class HighBeamError(Exception):
    """Base exception for all pipeline errors."""

    status_code: int = 400
    category: str = "input"
    default_code: str = "ERROR"

    def __init__(self, message: str, code: Optional[str] = None,
                 details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


# ── Input errors ─────────────────────────────────────────────────────────────

class Unauthorized(HighBeamError):
    status_code = 401
    default_code = "UNAUTHORIZED"


class Forbidden(HighBeamError):
    status_code = 403
    default_code = "FORBIDDEN"


class AuthError(HighBeamError):
    status_code = 401
    default_code = "AUTH_FAILED"


class ValidationError(HighBeamError):
    default_code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", None) or {}
        if field:
            details["field"] = field
        super().__init__(message, details=details, **kwargs)
        self.field = field


class NotFound(HighBeamError):
    status_code = 404
    default_code = "NOT_FOUND"


# ── Policy rejections ────────────────────────────────────────────────────────

class PolicyRejection(HighBeamError):
    category = "policy"
    status_code = 409


class RejectedDetection(PolicyRejection):
    status_code = 400
    default_code = "DETECTION_REJECTED"


class AlreadyDecided(PolicyRejection):
    default_code = "ALREADY_DECIDED"


class AlreadyPaid(PolicyRejection):
    default_code = "ALREADY_PAID"


class NotApproved(PolicyRejection):
    default_code = "NOT_APPROVED"


class AlreadyRegistered(PolicyRejection):
    default_code = "ALREADY_REGISTERED"


# ── Consistency violations ───────────────────────────────────────────────────

class InvalidTransition(HighBeamError):
    category = "consistency"
    status_code = 409
    default_code = "INVALID_TRANSITION"

    def __init__(self, violation_id: int, current: str, target: str):
        super().__init__(
            f"Violation {violation_id} cannot move from {current} to {target}",
            details={"violation_id": violation_id, "current": current, "target": target},
        )
        self.current = current
        self.target = target


class SignatureInvalid(HighBeamError):
    category = "consistency"
    status_code = 400
    default_code = "SIGNATURE_INVALID"


# ── Upstream / dependency failures ───────────────────────────────────────────

class ProviderError(HighBeamError):
    category = "upstream"
    status_code = 502
    default_code = "PROVIDER_ERROR"


class PersistenceError(HighBeamError):
    category = "upstream"
    status_code = 500
    default_code = "PERSISTENCE_ERROR"


IngestError = (Unauthorized, ValidationError, RejectedDetection, PersistenceError)
