# app/services/violation_store.py
"""
Violation Store — the authoritative state machine for violation records
and the owner of detection log outcomes.

State machine:
    pending  -> approved | rejected     (Review Engine)
    approved -> paid                    (Payment Reconciler)
Anything else raises InvalidTransition. Status changes are compare-and-swap
UPDATEs on the current status, so two concurrent decisions on the same
pending violation can never both succeed.
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from app.exceptions import InvalidTransition, NotFound, PersistenceError
from app.models.detection_log import DetectionLog
from app.models.enums import ViolationStatus
from app.models.violation import Violation
from app.utils.identifiers import generate_challan_number
from app.utils.logger import get_logger

logger = get_logger(__name__)

ALLOWED_TRANSITIONS = {
    ViolationStatus.PENDING: {ViolationStatus.APPROVED, ViolationStatus.REJECTED},
    ViolationStatus.APPROVED: {ViolationStatus.PAID},
}
OPEN_STATUSES = (ViolationStatus.PENDING.value, ViolationStatus.APPROVED.value)

_CHALLAN_ATTEMPTS = 5

# Audit columns are bounded; oversized sensor values are cut to fit
_LOG_PLATE_LENGTH = DetectionLog.__table__.c.extracted_plate.type.length
_LOG_CAMERA_LENGTH = DetectionLog.__table__.c.camera_id.type.length
_LOG_SOURCE_IP_LENGTH = DetectionLog.__table__.c.source_ip.type.length


# ── Violations ───────────────────────────────────────────────────────────────

def _unique_challan_number(db: Session) -> str:
    for _ in range(_CHALLAN_ATTEMPTS):
        candidate = generate_challan_number()
        taken = db.query(Violation.id).filter(Violation.challan_number == candidate).first()
        if not taken:
            return candidate
        logger.warning(f"[STORE] Challan number collision on {candidate}, regenerating")
    raise PersistenceError("Could not allocate a unique challan number")


def create_violation(db: Session, *, vehicle_number: str, fine_amount: int,
                     beam_intensity: float, ai_confidence: float, camera_id: str,
                     detection_timestamp: Optional[datetime] = None,
                     vehicle_id: Optional[int] = None,
                     latitude: Optional[float] = None, longitude: Optional[float] = None,
                     location_address: Optional[str] = None,
                     evidence_image_url: Optional[str] = None,
                     evidence_video_url: Optional[str] = None,
                     device_id: Optional[str] = None,
                     commit: bool = True) -> Violation:
    """
    Insert a new violation. Status is always pending and the challan number is
    generated here, whatever the caller wanted. With commit=False the row is
    only flushed so the caller can fold it into a larger unit of work.
    """
    now = datetime.utcnow()
    violation = Violation(
        vehicle_id=vehicle_id,
        vehicle_number=vehicle_number,
        detection_timestamp=detection_timestamp or now,
        latitude=latitude,
        longitude=longitude,
        location_address=location_address or "Detection Zone",
        beam_intensity=beam_intensity,
        ai_confidence=ai_confidence,
        evidence_image_url=evidence_image_url,
        evidence_video_url=evidence_video_url,
        camera_id=camera_id,
        device_id=device_id,
        fine_amount=fine_amount,
        challan_number=_unique_challan_number(db),
        status=ViolationStatus.PENDING.value,
        created_at=now,
        updated_at=now,
    )
    db.add(violation)
    if commit:
        db.commit()
        db.refresh(violation)
    else:
        db.flush()
    logger.info(f"[STORE] Violation {violation.id} created: challan={violation.challan_number} "
                f"plate={vehicle_number} fine={fine_amount}")
    return violation


def get_violation(db: Session, violation_id: int) -> Violation:
    violation = db.query(Violation).filter(Violation.id == violation_id).first()
    if not violation:
        raise NotFound(f"Violation {violation_id} not found", details={"violation_id": violation_id})
    return violation


def list_by_owner(db: Session, vehicle_number: str,
                  status: Optional[ViolationStatus] = None) -> list[Violation]:
    """All violations for a canonical plate, newest detection first."""
    q = db.query(Violation).filter(Violation.vehicle_number == vehicle_number)
    if status:
        q = q.filter(Violation.status == ViolationStatus(status).value)
    return q.order_by(Violation.detection_timestamp.desc()).all()


def list_violations(db: Session, status: Optional[ViolationStatus] = None,
                    limit: int = 100) -> list[Violation]:
    q = db.query(Violation)
    if status:
        q = q.filter(Violation.status == ViolationStatus(status).value)
    return q.order_by(Violation.detection_timestamp.desc()).limit(limit).all()


def violation_stats(db: Session) -> dict:
    """Counts per status plus collected revenue, for the reviewer dashboard."""
    counts = dict(
        db.query(Violation.status, func.count(Violation.id)).group_by(Violation.status).all()
    )
    revenue = db.query(func.coalesce(func.sum(Violation.fine_amount), 0)).filter(
        Violation.status == ViolationStatus.PAID.value
    ).scalar()
    return {
        "total_violations": sum(counts.values()),
        "pending_approval": counts.get(ViolationStatus.PENDING.value, 0),
        "approved": counts.get(ViolationStatus.APPROVED.value, 0),
        "rejected": counts.get(ViolationStatus.REJECTED.value, 0),
        "paid": counts.get(ViolationStatus.PAID.value, 0),
        "total_revenue": int(revenue or 0),
    }


def detection_stats(db: Session) -> dict:
    """Sensor-side summary: totals, today's detections (UTC), pending queue, mean confidence."""
    today = datetime.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    total, pending, average = db.query(
        func.count(Violation.id),
        func.coalesce(func.sum(case((Violation.status == ViolationStatus.PENDING.value, 1), else_=0)), 0),
        func.avg(Violation.ai_confidence),
    ).one()
    todays = db.query(func.count(Violation.id)).filter(Violation.created_at >= today).scalar()
    return {
        "total_violations": int(total or 0),
        "today_violations": int(todays or 0),
        "pending_approval": int(pending or 0),
        "average_confidence": float(average) if average is not None else 0.0,
    }


def has_open_violations(db: Session, vehicle_number: str) -> bool:
    return db.query(Violation.id).filter(
        Violation.vehicle_number == vehicle_number,
        Violation.status.in_(OPEN_STATUSES),
    ).first() is not None


def find_recent_duplicate(db: Session, camera_id: str, vehicle_number: str,
                          detection_timestamp: datetime,
                          window_seconds: int) -> Optional[Violation]:
    """A violation from the same camera for the same plate within the window, if any."""
    if window_seconds <= 0:
        return None
    window = timedelta(seconds=window_seconds)
    try:
        earliest = detection_timestamp - window
    except OverflowError:
        earliest = datetime.min
    try:
        latest = detection_timestamp + window
    except OverflowError:
        latest = datetime.max
    return (
        db.query(Violation)
        .filter(
            Violation.camera_id == camera_id,
            Violation.vehicle_number == vehicle_number,
            Violation.detection_timestamp >= earliest,
            Violation.detection_timestamp <= latest,
        )
        .order_by(Violation.id.asc())
        .first()
    )


def transition(db: Session, violation_id: int, target: ViolationStatus, actor: str,
               notes: Optional[str] = None, payment_id: Optional[int] = None,
               commit: bool = True) -> Violation:
    """
    Move a violation to `target`, enforcing the state machine.
    Reviewer fields are stamped only on the pending -> approved/rejected edge.
    With commit=False the change joins the caller's transaction and is not
    rolled back here on failure.
    """
    target = ViolationStatus(target)
    violation = get_violation(db, violation_id)
    current = ViolationStatus(violation.status)
    if target not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidTransition(violation_id, current.value, target.value)

    now = datetime.utcnow()
    values = {"status": target.value, "updated_at": now}
    if current is ViolationStatus.PENDING:
        values.update(reviewed_by=actor, reviewed_at=now, review_notes=notes)
    if target is ViolationStatus.PAID and payment_id is not None:
        values["payment_id"] = payment_id

    swapped = (
        db.query(Violation)
        .filter(Violation.id == violation_id, Violation.status == current.value)
        .update(values, synchronize_session=False)
    )
    if swapped != 1:
        # Someone else moved it between our read and our write.
        if commit:
            db.rollback()
        latest = db.query(Violation.status).filter(Violation.id == violation_id).scalar()
        raise InvalidTransition(violation_id, latest or current.value, target.value)

    if commit:
        db.commit()
    db.expire(violation)
    logger.info(f"[STORE] Violation {violation_id}: {current.value} -> {target.value} by {actor}")
    return violation


def link_orphans(db: Session, vehicle_number: str, vehicle_id: int, commit: bool = True) -> int:
    """Attach every ownerless violation for this plate to the vehicle. Returns the count."""
    linked = (
        db.query(Violation)
        .filter(Violation.vehicle_number == vehicle_number, Violation.vehicle_id.is_(None))
        .update({"vehicle_id": vehicle_id, "updated_at": datetime.utcnow()},
                synchronize_session=False)
    )
    if commit:
        db.commit()
    if linked:
        logger.info(f"[STORE] Linked {linked} orphan violation(s) for {vehicle_number} to vehicle {vehicle_id}")
    return linked


# ── Detection logs ───────────────────────────────────────────────────────────

def _clip(value: Optional[str], limit: int) -> Optional[str]:
    return value[:limit] if value is not None else None


def open_detection_log(db: Session, raw_payload: str, extracted_plate: Optional[str] = None,
                       extraction_confidence: Optional[float] = None,
                       source_ip: Optional[str] = None,
                       camera_id: Optional[str] = None) -> DetectionLog:
    """Write the audit row for an inbound call. Always commits immediately."""
    log = DetectionLog(
        raw_payload=raw_payload,
        extracted_plate=_clip(extracted_plate, _LOG_PLATE_LENGTH),
        extraction_confidence=extraction_confidence,
        source_ip=_clip(source_ip, _LOG_SOURCE_IP_LENGTH),
        camera_id=_clip(camera_id, _LOG_CAMERA_LENGTH),
        processed=False,
        is_duplicate=False,
        created_at=datetime.utcnow(),
    )
    db.add(log)
    db.commit()
    db.refresh(log)
    return log


def close_detection_log(db: Session, log_id: int, violation_id: Optional[int] = None,
                        error_message: Optional[str] = None, duplicate: bool = False,
                        commit: bool = True) -> bool:
    """
    Record the outcome of an inbound call. A log is closed exactly once;
    later attempts are ignored and return False.
    """
    closed = (
        db.query(DetectionLog)
        .filter(DetectionLog.id == log_id, DetectionLog.processed.is_(False))
        .update({"processed": True, "violation_id": violation_id,
                 "error_message": error_message, "is_duplicate": duplicate},
                synchronize_session=False)
    )
    if commit:
        db.commit()
    if not closed:
        logger.warning(f"[STORE] Detection log {log_id} already closed — outcome ignored")
    return bool(closed)


def list_detection_logs(db: Session, limit: int = 50, processed: Optional[bool] = None,
                        camera_id: Optional[str] = None) -> list[DetectionLog]:
    q = db.query(DetectionLog)
    if processed is not None:
        q = q.filter(DetectionLog.processed.is_(processed))
    if camera_id:
        q = q.filter(DetectionLog.camera_id == camera_id)
    return q.order_by(DetectionLog.created_at.desc(), DetectionLog.id.desc()).limit(limit).all()
