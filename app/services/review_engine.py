# app/services/review_engine.py
"""
Review Engine — reviewer decisions on pending violations.

A violation is decided exactly once. The store's compare-and-swap makes a
second (or concurrent) decision fail with AlreadyDecided instead of
overwriting the first reviewer's outcome.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from app.exceptions import AlreadyDecided, InvalidTransition, NotFound, ValidationError
from app.models.enums import ReviewAction, ViolationStatus
from app.services import violation_store
from app.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class ReviewResult:
    violation_id: int
    status: str
    reviewed_by: str
    reviewed_at: Optional[datetime]


@dataclass
class BulkReviewResult:
    succeeded: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)


def _parse_action(action) -> ReviewAction:
    try:
        return ReviewAction(action)
    except ValueError:
        raise ValidationError("Invalid action. Use 'approve' or 'reject'", field="action")


async def decide(db: Session, violation_id: int, action, reviewer: str,
                 notes: Optional[str] = None) -> ReviewResult:
    action = _parse_action(action)
    violation = violation_store.get_violation(db, violation_id)
    if violation.status != ViolationStatus.PENDING.value:
        raise AlreadyDecided("Violation already processed",
                             details={"violation_id": violation_id, "status": violation.status})
    try:
        violation = violation_store.transition(db, violation_id, action.target_status,
                                               actor=reviewer, notes=notes)
    except InvalidTransition as e:
        # Lost the race to another reviewer.
        raise AlreadyDecided("Violation already processed",
                             details={"violation_id": violation_id, "status": e.current}) from e

    logger.info(f"[REVIEW] Violation {violation_id} {violation.status} by {reviewer}")
    return ReviewResult(
        violation_id=violation.id,
        status=violation.status,
        reviewed_by=violation.reviewed_by,
        reviewed_at=violation.reviewed_at,
    )


async def bulk_decide(db: Session, violation_ids: Iterable[int], action, reviewer: str,
                      notes: Optional[str] = None) -> BulkReviewResult:
    """Apply one decision to many violations; undecidable ones are skipped, not fatal."""
    action = _parse_action(action)
    result = BulkReviewResult()
    for violation_id in dict.fromkeys(violation_ids):
        try:
            await decide(db, violation_id, action, reviewer, notes)
        except (AlreadyDecided, NotFound) as e:
            logger.info(f"[REVIEW] Bulk {action.value}: skipping violation {violation_id} ({e.code})")
            result.skipped.append(violation_id)
        else:
            result.succeeded.append(violation_id)

    logger.info(f"[REVIEW] Bulk {action.value} by {reviewer}: "
                f"{len(result.succeeded)} succeeded, {len(result.skipped)} skipped")
    return result
