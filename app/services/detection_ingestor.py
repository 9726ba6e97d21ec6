# app/services/detection_ingestor.py
"""
Detection Ingestor — the trust boundary between the roadside sensor pipeline
(ESP32 camera → plate extraction) and the violation records.

Order of work for every webhook call:
  1. authenticate the caller key            (nothing persisted on failure)
  2. write the raw payload to detection_logs (always, before validation)
  3. validate required fields
  4. apply the intensity / confidence admission policy
  5. normalise the plate, drop repeat deliveries
  6. resolve owner, store evidence, compute fine
  7. create the violation and close the log in one transaction
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Tuple

from sqlalchemy.orm import Session

from app.config import settings
from app.exceptions import (PersistenceError, RejectedDetection,
                            Unauthorized, ValidationError)
from app.models.vehicle import Vehicle
from app.models.violation import Violation
from app.services import owner_resolver, violation_store
from app.services.evidence_service import resolve_evidence
from app.utils.fines import compute_fine
from app.utils.json_parser import dump_payload, get_nested, parse_timestamp, safe_parse_json, to_float
from app.utils.logger import get_logger
from app.utils.plate import format_vehicle_number
from app.utils.security import keys_match

logger = get_logger(__name__)

UNKNOWN_CAMERA = "UNKNOWN"

# Sensor strings are bounded by the columns they land in
MAX_PLATE_LENGTH = Violation.__table__.c.vehicle_number.type.length
MAX_CAMERA_ID_LENGTH = Violation.__table__.c.camera_id.type.length
MAX_DEVICE_ID_LENGTH = Violation.__table__.c.device_id.type.length
MAX_ADDRESS_LENGTH = Violation.__table__.c.location_address.type.length


@dataclass(frozen=True)
class IngestionPolicy:
    """Everything the ingestor needs to know about the deployment."""
    webhook_api_key: Optional[str] = None
    low_intensity_floor: float = 50.0
    min_extraction_confidence: float = 0.0
    default_extraction_confidence: float = 0.9
    base_fine: int = 1000
    fine_tiers: Tuple[Tuple[float, int], ...] = ((60, 1500), (80, 2000))
    dedup_window_seconds: int = 120
    create_placeholder_vehicles: bool = False
    evidence_dir: str = "evidence_images"

    @classmethod
    def from_settings(cls, s=settings) -> "IngestionPolicy":
        return cls(
            webhook_api_key=s.WEBHOOK_API_KEY or None,
            low_intensity_floor=s.LOW_INTENSITY_FLOOR,
            min_extraction_confidence=s.MIN_EXTRACTION_CONFIDENCE,
            default_extraction_confidence=s.DEFAULT_EXTRACTION_CONFIDENCE,
            base_fine=s.BASE_FINE,
            fine_tiers=tuple((float(t), int(a)) for t, a in s.FINE_TIERS),
            dedup_window_seconds=s.DEDUP_WINDOW_SECONDS,
            create_placeholder_vehicles=s.CREATE_PLACEHOLDER_VEHICLES,
            evidence_dir=s.EVIDENCE_DIR,
        )

    def fine_for(self, beam_intensity: float) -> int:
        return compute_fine(beam_intensity, self.base_fine, self.fine_tiers)


@dataclass
class Detection:
    """A validated sensor payload."""
    vehicle_number: str
    beam_intensity: float
    extraction_confidence: float
    detection_timestamp: datetime
    camera_id: str
    device_id: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    image_url: Optional[str] = None
    image_base64: Optional[str] = None
    video_url: Optional[str] = None


@dataclass
class IngestResult:
    violation_id: int
    challan_number: str
    fine_amount: int
    status: str
    vehicle_number: str
    owner_found: bool
    owner_name: str
    duplicate: bool = False


def _optional_str(data: dict, key: str) -> Optional[str]:
    value = data.get(key)
    if value is None or value == "":
        return None
    return str(value)


def _bounded(value: Optional[str], field: str, limit: int) -> Optional[str]:
    if value is not None and len(value) > limit:
        raise ValidationError(f"{field} must be at most {limit} characters", field=field)
    return value


class DetectionIngestor:

    def __init__(self, policy: IngestionPolicy):
        self.policy = policy

    def authenticate(self, caller_api_key: Optional[str]) -> None:
        if self.policy.webhook_api_key and not keys_match(caller_api_key, self.policy.webhook_api_key):
            raise Unauthorized("Unauthorized - Invalid API key")

    def parse(self, data: Any) -> Detection:
        """Validate a decoded payload. Raises ValidationError or RejectedDetection."""
        if not isinstance(data, dict):
            raise ValidationError("Payload must be a JSON object")

        plate_raw = data.get("vehicle_number")
        plate = format_vehicle_number(plate_raw) if isinstance(plate_raw, str) else ""
        if not plate:
            raise ValidationError("Missing vehicle_number", field="vehicle_number")
        _bounded(plate, "vehicle_number", MAX_PLATE_LENGTH)

        intensity = to_float(data.get("beam_intensity"))
        if intensity is None:
            raise ValidationError("Missing beam_intensity", field="beam_intensity")
        if not 0 <= intensity <= 100:
            raise ValidationError("beam_intensity must be between 0 and 100", field="beam_intensity")

        if data.get("extraction_confidence") is None:
            confidence = self.policy.default_extraction_confidence
        else:
            confidence = to_float(data.get("extraction_confidence"))
            if confidence is None or not 0 <= confidence <= 1:
                raise ValidationError("extraction_confidence must be between 0 and 1",
                                      field="extraction_confidence")

        if intensity < self.policy.low_intensity_floor:
            raise RejectedDetection("Beam intensity too low",
                                    details={"beam_intensity": intensity,
                                             "floor": self.policy.low_intensity_floor})
        if confidence < self.policy.min_extraction_confidence:
            raise RejectedDetection("Extraction confidence too low",
                                    details={"extraction_confidence": confidence,
                                             "floor": self.policy.min_extraction_confidence})

        timestamp = parse_timestamp(data.get("timestamp"))
        if timestamp is None:
            if data.get("timestamp"):
                logger.debug(f"[INGEST] Unparseable timestamp {data.get('timestamp')!r}, using now")
            timestamp = datetime.utcnow()

        location = data.get("location") if isinstance(data.get("location"), dict) else {}
        return Detection(
            vehicle_number=plate,
            beam_intensity=intensity,
            extraction_confidence=confidence,
            detection_timestamp=timestamp,
            camera_id=_bounded(_optional_str(data, "camera_id"), "camera_id", MAX_CAMERA_ID_LENGTH) or UNKNOWN_CAMERA,
            device_id=_bounded(_optional_str(data, "device_id"), "device_id", MAX_DEVICE_ID_LENGTH),
            latitude=to_float(get_nested(data, "location", "latitude")),
            longitude=to_float(get_nested(data, "location", "longitude")),
            address=_bounded(_optional_str(location, "address"), "location.address", MAX_ADDRESS_LENGTH),
            image_url=_optional_str(data, "image_url"),
            image_base64=_optional_str(data, "image_base64"),
            video_url=_optional_str(data, "video_url"),
        )

    async def ingest(self, db: Session, payload: Any, caller_api_key: Optional[str],
                     source_ip: Optional[str] = None) -> IngestResult:
        """
        Turn one webhook call into a pending violation.
        `payload` is the raw request body (bytes/str) or an already-decoded dict.
        Every call that passes authentication leaves exactly one closed
        detection log, whatever the outcome. Failures raise one of IngestError.
        """
        self.authenticate(caller_api_key)

        data = payload if isinstance(payload, dict) else safe_parse_json(payload)
        fields = data if isinstance(data, dict) else {}
        log = violation_store.open_detection_log(
            db,
            raw_payload=dump_payload(payload),
            extracted_plate=_optional_str(fields, "vehicle_number"),
            extraction_confidence=to_float(fields.get("extraction_confidence")),
            source_ip=source_ip,
            camera_id=_optional_str(fields, "camera_id"),
        )

        try:
            detection = self.parse(data)
        except RejectedDetection as e:
            logger.info(f"[INGEST] Log {log.id}: detection rejected — {e.message}")
            violation_store.close_detection_log(db, log.id, error_message=e.message)
            raise
        except ValidationError as e:
            logger.warning(f"[INGEST] Log {log.id}: invalid payload — {e.message}")
            violation_store.close_detection_log(db, log.id, error_message=e.message)
            raise
        except Exception as e:
            logger.error(f"[INGEST] Log {log.id}: unexpected failure while validating: {e}", exc_info=True)
            violation_store.close_detection_log(db, log.id, error_message=f"Processing failure: {e.__class__.__name__}")
            raise PersistenceError("Failed to process detection") from e

        try:
            return self._record(db, log.id, detection)
        except PersistenceError as e:
            self._fail(db, log.id, e)
            raise
        except Exception as e:
            # Database errors and anything unexpected are reported as persistence failures
            self._fail(db, log.id, e)
            raise PersistenceError("Failed to create violation record") from e

    def _fail(self, db: Session, log_id: int, error: Exception) -> None:
        db.rollback()
        logger.error(f"[INGEST] Log {log_id}: failed to create violation: {error}", exc_info=True)
        violation_store.close_detection_log(db, log_id, error_message=f"Persistence failure: {error.__class__.__name__}")

    def _record(self, db: Session, log_id: int, detection: Detection) -> IngestResult:
        duplicate = violation_store.find_recent_duplicate(
            db, detection.camera_id, detection.vehicle_number,
            detection.detection_timestamp, self.policy.dedup_window_seconds,
        )
        if duplicate:
            violation_store.close_detection_log(db, log_id, violation_id=duplicate.id, duplicate=True)
            logger.info(f"[INGEST] Log {log_id}: repeat delivery of violation {duplicate.id} "
                        f"({detection.vehicle_number} @ {detection.camera_id}) — ignored")
            return self._result(duplicate, owner_resolver.lookup_vehicle(db, duplicate.vehicle_number),
                                duplicate=True)

        vehicle: Optional[Vehicle] = owner_resolver.lookup_vehicle(db, detection.vehicle_number)
        if vehicle is None and self.policy.create_placeholder_vehicles:
            vehicle = owner_resolver.ensure_placeholder(db, detection.vehicle_number)

        evidence = resolve_evidence(detection.image_url, detection.image_base64,
                                    detection.vehicle_number, self.policy.evidence_dir)

        violation = violation_store.create_violation(
            db,
            vehicle_number=detection.vehicle_number,
            vehicle_id=vehicle.id if vehicle else None,
            fine_amount=self.policy.fine_for(detection.beam_intensity),
            beam_intensity=detection.beam_intensity,
            ai_confidence=detection.extraction_confidence,
            camera_id=detection.camera_id,
            device_id=detection.device_id,
            detection_timestamp=detection.detection_timestamp,
            latitude=detection.latitude,
            longitude=detection.longitude,
            location_address=detection.address,
            evidence_image_url=evidence,
            evidence_video_url=detection.video_url,
            commit=False,
        )
        violation_store.close_detection_log(db, log_id, violation_id=violation.id, commit=False)
        db.commit()
        db.refresh(violation)

        logger.info(f"[INGEST] Log {log_id}: violation {violation.id} challan={violation.challan_number} "
                    f"plate={violation.vehicle_number} intensity={detection.beam_intensity} "
                    f"fine={violation.fine_amount}")
        return self._result(violation, vehicle)

    @staticmethod
    def _result(violation, vehicle: Optional[Vehicle], duplicate: bool = False) -> IngestResult:
        owner_found = vehicle is not None and not vehicle.is_placeholder
        return IngestResult(
            violation_id=violation.id,
            challan_number=violation.challan_number,
            fine_amount=violation.fine_amount,
            status=violation.status,
            vehicle_number=violation.vehicle_number,
            owner_found=owner_found,
            owner_name=vehicle.owner_name if owner_found else "Unknown",
            duplicate=duplicate,
        )
