# app/services/owner_resolver.py
"""
Owner Resolver — vehicle/owner records and ownership backfill.

Violations can be created for plates nobody has registered yet (vehicle_id is
null, or points at a placeholder vehicle). When the real owner registers —
explicitly, or implicitly on first login — those violations are linked to
the new vehicle so they show up on the owner's dashboard.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.exceptions import AlreadyRegistered, AuthError, NotFound, ValidationError
from app.models.enums import ViolationStatus
from app.models.vehicle import Vehicle
from app.models.violation import Violation
from app.services import violation_store
from app.utils.logger import get_logger
from app.utils.plate import format_vehicle_number
from app.utils.security import PLACEHOLDER_DOB_HASH, hash_secret, normalize_dob, verify_secret

logger = get_logger(__name__)

PLACEHOLDER_OWNER_NAME = "Unknown Owner"
LOGIN_OWNER_NAME = "Vehicle Owner"


@dataclass
class OwnerDetails:
    owner_name: str
    dob: str
    phone_number: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None


@dataclass
class RegistrationResult:
    vehicle: Vehicle
    linked_violation_count: int


@dataclass
class LoginResult:
    owner: Vehicle
    has_open_violations: bool
    created: bool = False


def lookup_vehicle(db: Session, plate: str) -> Optional[Vehicle]:
    """Find a vehicle by any spelling of its plate. Returns None if not found."""
    key = format_vehicle_number(plate)
    return db.query(Vehicle).filter(Vehicle.vehicle_number == key).first()


def get_vehicle(db: Session, plate: str) -> Vehicle:
    vehicle = lookup_vehicle(db, plate)
    if not vehicle:
        raise NotFound(f"Vehicle {format_vehicle_number(plate)} not found")
    return vehicle


def ensure_placeholder(db: Session, vehicle_number: str) -> Vehicle:
    """
    Return the vehicle for a canonical plate, creating an "Unknown Owner"
    placeholder if none exists. Flushes only; the caller commits.
    """
    vehicle = db.query(Vehicle).filter(Vehicle.vehicle_number == vehicle_number).first()
    if vehicle:
        return vehicle
    now = datetime.utcnow()
    vehicle = Vehicle(
        vehicle_number=vehicle_number,
        owner_name=PLACEHOLDER_OWNER_NAME,
        owner_dob_hash=PLACEHOLDER_DOB_HASH,
        is_placeholder=True,
        created_at=now,
        updated_at=now,
    )
    db.add(vehicle)
    db.flush()
    logger.info(f"[OWNER] Placeholder vehicle created for {vehicle_number}")
    return vehicle


def _claim(db: Session, key: str, details: OwnerDetails) -> RegistrationResult:
    now = datetime.utcnow()
    vehicle = db.query(Vehicle).filter(Vehicle.vehicle_number == key).first()
    previously_linked = 0
    if vehicle is None:
        vehicle = Vehicle(vehicle_number=key, created_at=now)
        db.add(vehicle)
    elif vehicle.is_placeholder:
        previously_linked = db.query(Violation).filter(Violation.vehicle_id == vehicle.id).count()
    else:
        raise AlreadyRegistered(f"Vehicle {key} is already registered", details={"vehicle_number": key})

    vehicle.owner_name = details.owner_name
    vehicle.owner_dob_hash = hash_secret(normalize_dob(details.dob))
    vehicle.phone_number = details.phone_number
    vehicle.email = details.email.strip().lower() if details.email else None
    vehicle.address = details.address
    vehicle.is_placeholder = False
    vehicle.updated_at = now

    try:
        db.flush()
        linked = violation_store.link_orphans(db, key, vehicle.id, commit=False)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise AlreadyRegistered(f"Vehicle {key} is already registered", details={"vehicle_number": key})
    db.refresh(vehicle)
    return RegistrationResult(vehicle=vehicle, linked_violation_count=linked + previously_linked)


async def register_owner(db: Session, plate: str, details: OwnerDetails) -> RegistrationResult:
    """Register (or claim a placeholder for) a plate and link its earlier violations."""
    key = format_vehicle_number(plate)
    if not key:
        raise ValidationError("Vehicle number is required", field="vehicleNumber")
    if not details.owner_name or not details.owner_name.strip():
        raise ValidationError("Owner name is required", field="ownerName")
    if not details.dob:
        raise ValidationError("Date of birth is required", field="ownerDob")
    details.owner_name = details.owner_name.strip()

    result = _claim(db, key, details)
    logger.info(f"[OWNER] Registered {key} ({result.vehicle.owner_name}), "
                f"linked {result.linked_violation_count} violation(s)")
    return result


async def login(db: Session, plate: str, dob: str, auto_register: bool = True) -> LoginResult:
    """
    Confirm an owner's identity by plate + date of birth.
    An unknown (or placeholder) plate is registered on the spot when
    auto_register is on; otherwise the login fails.
    """
    key = format_vehicle_number(plate)
    if not key or not dob:
        raise ValidationError("Vehicle number and date of birth are required")

    vehicle = db.query(Vehicle).filter(Vehicle.vehicle_number == key).first()
    if vehicle is None or vehicle.is_placeholder:
        if not auto_register:
            raise AuthError("Vehicle not found in our records. Please register first.")
        try:
            result = _claim(db, key, OwnerDetails(owner_name=LOGIN_OWNER_NAME, dob=dob))
        except AlreadyRegistered:
            # Lost a race with a concurrent registration; fall through to verification.
            vehicle = db.query(Vehicle).filter(Vehicle.vehicle_number == key).first()
        else:
            logger.info(f"[OWNER] First login registered {key}")
            return LoginResult(
                owner=result.vehicle,
                has_open_violations=violation_store.has_open_violations(db, key),
                created=True,
            )

    if vehicle is None or not verify_secret(normalize_dob(dob), vehicle.owner_dob_hash):
        logger.warning(f"[OWNER] DOB mismatch on login for {key}")
        raise AuthError("Date of birth does not match our records")

    return LoginResult(owner=vehicle, has_open_violations=violation_store.has_open_violations(db, key))


def owner_dashboard(db: Session, plate: str) -> dict:
    """Vehicle details, all its violations and fine totals."""
    key = format_vehicle_number(plate)
    vehicle = lookup_vehicle(db, key)
    violations = violation_store.list_by_owner(db, key)

    def total(*statuses):
        return sum(v.fine_amount for v in violations if not statuses or v.status in statuses)

    return {
        "vehicle": vehicle,
        "vehicle_number": key,
        "violations": violations,
        "total_fines": total(),
        "pending_fines": total(ViolationStatus.APPROVED.value),
        "paid_fines": total(ViolationStatus.PAID.value),
        "violation_count": len(violations),
    }
