"""Tests for webhook ingestion: validation, admission policy, dedup and the audit trail."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import base64
import json
import pytest
from unittest.mock import patch
from sqlalchemy.exc import OperationalError
from app.exceptions import IngestError, PersistenceError, RejectedDetection, Unauthorized, ValidationError
from app.models.detection_log import DetectionLog
from app.models.vehicle import Vehicle
from app.models.violation import Violation
from app.services.detection_ingestor import DetectionIngestor, IngestionPolicy

API_KEY = "sensor-key"


@pytest.fixture
def ingestor(tmp_path):
    return DetectionIngestor(IngestionPolicy(webhook_api_key=API_KEY, evidence_dir=str(tmp_path)))


def payload(**overrides):
    body = {
        "vehicle_number": "MH 12 AB 1234",
        "beam_intensity": 85,
        "extraction_confidence": 0.92,
        "timestamp": "2026-10-01T22:15:00Z",
        "camera_id": "CAM-07",
        "location": {"latitude": 18.52, "longitude": 73.85, "address": "FC Road"},
    }
    body.update(overrides)
    return json.dumps(body).encode()


def logs(db):
    return db.query(DetectionLog).order_by(DetectionLog.id).all()


class TestIngest:
    @pytest.mark.asyncio
    async def test_valid_detection_creates_pending_violation(self, db, ingestor):
        result = await ingestor.ingest(db, payload(), API_KEY, source_ip="10.0.0.5")

        assert result.status == "pending"
        assert result.fine_amount == 2000
        assert result.vehicle_number == "MH12AB1234"
        assert result.owner_found is False
        assert result.duplicate is False

        violation = db.query(Violation).one()
        assert violation.id == result.violation_id
        assert violation.challan_number == result.challan_number
        assert violation.vehicle_id is None
        assert violation.location_address == "FC Road"
        assert violation.ai_confidence == pytest.approx(0.92)

        [log] = logs(db)
        assert log.processed is True
        assert log.violation_id == violation.id
        assert log.error_message is None
        assert log.source_ip == "10.0.0.5"
        assert "MH 12 AB 1234" in log.raw_payload

    @pytest.mark.asyncio
    async def test_registered_owner_is_linked(self, db, ingestor, make_vehicle):
        vehicle = make_vehicle()
        result = await ingestor.ingest(db, payload(), API_KEY)
        assert result.owner_found is True
        assert result.owner_name == "Asha Patil"
        assert db.query(Violation).one().vehicle_id == vehicle.id

    @pytest.mark.asyncio
    async def test_low_intensity_is_rejected_and_logged(self, db, ingestor):
        with pytest.raises(RejectedDetection):
            await ingestor.ingest(db, payload(beam_intensity=42), API_KEY)

        assert db.query(Violation).count() == 0
        [log] = logs(db)
        assert log.processed is True
        assert log.violation_id is None
        assert log.error_message == "Beam intensity too low"

    @pytest.mark.asyncio
    async def test_missing_plate_is_a_validation_error(self, db, ingestor):
        with pytest.raises(ValidationError) as exc:
            await ingestor.ingest(db, payload(vehicle_number="  "), API_KEY)
        assert exc.value.field == "vehicle_number"
        [log] = logs(db)
        assert log.error_message == "Missing vehicle_number"

    @pytest.mark.asyncio
    async def test_missing_intensity(self, db, ingestor):
        body = json.dumps({"vehicle_number": "MH12AB1234"}).encode()
        with pytest.raises(ValidationError):
            await ingestor.ingest(db, body, API_KEY)
        assert logs(db)[0].error_message == "Missing beam_intensity"

    @pytest.mark.asyncio
    async def test_garbage_body_is_still_audited(self, db, ingestor):
        with pytest.raises(ValidationError):
            await ingestor.ingest(db, b"not json at all", API_KEY)
        [log] = logs(db)
        assert log.raw_payload == "not json at all"
        assert log.processed is True

    @pytest.mark.asyncio
    async def test_wrong_key_persists_nothing(self, db, ingestor):
        with pytest.raises(Unauthorized):
            await ingestor.ingest(db, payload(), "nope")
        with pytest.raises(Unauthorized):
            await ingestor.ingest(db, payload(), None)
        assert logs(db) == []
        assert db.query(Violation).count() == 0

    @pytest.mark.asyncio
    async def test_no_key_configured_accepts_anyone(self, db, tmp_path):
        open_ingestor = DetectionIngestor(IngestionPolicy(evidence_dir=str(tmp_path)))
        result = await open_ingestor.ingest(db, payload(), None)
        assert result.violation_id

    @pytest.mark.asyncio
    async def test_missing_confidence_uses_default(self, db, ingestor):
        body = json.loads(payload())
        del body["extraction_confidence"]
        await ingestor.ingest(db, body, API_KEY)
        assert db.query(Violation).one().ai_confidence == pytest.approx(0.9)

    @pytest.mark.asyncio
    async def test_confidence_gate(self, db, tmp_path):
        strict = DetectionIngestor(IngestionPolicy(min_extraction_confidence=0.8, evidence_dir=str(tmp_path)))
        with pytest.raises(RejectedDetection):
            await strict.ingest(db, payload(extraction_confidence=0.5), None)
        assert logs(db)[0].error_message == "Extraction confidence too low"

    @pytest.mark.asyncio
    async def test_missing_camera_defaults_to_unknown(self, db, ingestor):
        body = json.loads(payload())
        del body["camera_id"]
        await ingestor.ingest(db, body, API_KEY)
        assert db.query(Violation).one().camera_id == "UNKNOWN"


class TestDedup:
    @pytest.mark.asyncio
    async def test_repeat_delivery_returns_original(self, db, ingestor):
        first = await ingestor.ingest(db, payload(), API_KEY)
        second = await ingestor.ingest(db, payload(vehicle_number="mh12ab1234"), API_KEY)

        assert second.duplicate is True
        assert second.violation_id == first.violation_id
        assert db.query(Violation).count() == 1

        first_log, second_log = logs(db)
        assert second_log.processed is True
        assert second_log.is_duplicate is True
        assert second_log.violation_id == first.violation_id
        assert first_log.is_duplicate is False

    @pytest.mark.asyncio
    async def test_other_camera_is_a_new_violation(self, db, ingestor):
        await ingestor.ingest(db, payload(), API_KEY)
        await ingestor.ingest(db, payload(camera_id="CAM-08"), API_KEY)
        assert db.query(Violation).count() == 2


class TestOwnersAndEvidence:
    @pytest.mark.asyncio
    async def test_placeholder_vehicle_when_enabled(self, db, tmp_path):
        ingestor = DetectionIngestor(IngestionPolicy(create_placeholder_vehicles=True, evidence_dir=str(tmp_path)))
        result = await ingestor.ingest(db, payload(), None)
        vehicle = db.query(Vehicle).one()
        assert vehicle.is_placeholder is True
        assert db.query(Violation).one().vehicle_id == vehicle.id
        assert result.owner_found is False
        assert result.owner_name == "Unknown"

    @pytest.mark.asyncio
    async def test_inline_image_is_stored(self, db, ingestor, tmp_path):
        image = "data:image/png;base64," + base64.b64encode(b"\x89PNG fake").decode()
        await ingestor.ingest(db, payload(image_base64=image), API_KEY)
        path = db.query(Violation).one().evidence_image_url
        assert path.startswith(str(tmp_path))
        assert path.endswith(".png")
        with open(path, "rb") as f:
            assert f.read() == b"\x89PNG fake"

    @pytest.mark.asyncio
    async def test_image_url_wins(self, db, ingestor):
        await ingestor.ingest(db, payload(image_url="https://cdn.example/e.jpg", image_base64="!!"), API_KEY)
        assert db.query(Violation).one().evidence_image_url == "https://cdn.example/e.jpg"

    @pytest.mark.asyncio
    async def test_bad_image_does_not_block_violation(self, db, ingestor):
        await ingestor.ingest(db, payload(image_base64="%%%not-base64%%%"), API_KEY)
        assert db.query(Violation).one().evidence_image_url is None


class TestPersistenceFailure:
    @pytest.mark.asyncio
    async def test_store_failure_rolls_back_and_closes_log(self, db, ingestor):
        boom = OperationalError("INSERT", {}, Exception("disk full"))
        with patch("app.services.detection_ingestor.violation_store.create_violation", side_effect=boom):
            with pytest.raises(PersistenceError):
                await ingestor.ingest(db, payload(), API_KEY)

        assert db.query(Violation).count() == 0
        [log] = logs(db)
        assert log.processed is True
        assert log.error_message.startswith("Persistence failure")


class TestErrorFamily:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("body,key", [
        (payload(), "wrong-key"),
        (payload(vehicle_number=""), API_KEY),
        (payload(beam_intensity=5), API_KEY),
        (payload(beam_intensity=140), API_KEY),
    ])
    async def test_failures_are_ingest_errors(self, db, ingestor, body, key):
        with pytest.raises(IngestError):
            await ingestor.ingest(db, body, key)


class TestEdgeTimestamps:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("timestamp", [
        "0001-01-01T00:00:00+05:30",
        "9999-12-31T23:59:59-05:00",
    ])
    async def test_out_of_range_offset_falls_back_to_now(self, db, ingestor, timestamp):
        result = await ingestor.ingest(db, payload(timestamp=timestamp), API_KEY)

        violation = db.query(Violation).one()
        assert violation.id == result.violation_id
        assert 2000 < violation.detection_timestamp.year < 9999
        [log] = logs(db)
        assert log.processed is True
        assert log.violation_id == violation.id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("timestamp", ["0001-01-01T00:00:30", "9999-12-31T23:59:30"])
    async def test_calendar_edge_timestamps_still_dedup(self, db, ingestor, timestamp):
        first = await ingestor.ingest(db, payload(timestamp=timestamp), API_KEY)
        second = await ingestor.ingest(db, payload(timestamp=timestamp), API_KEY)
        assert second.duplicate is True
        assert second.violation_id == first.violation_id
        assert all(log.processed for log in logs(db))


class TestUnexpectedFailure:
    @pytest.mark.asyncio
    async def test_unexpected_error_while_recording_closes_log(self, db, ingestor):
        with patch("app.services.detection_ingestor.violation_store.create_violation",
                   side_effect=RuntimeError("driver exploded")):
            with pytest.raises(PersistenceError):
                await ingestor.ingest(db, payload(), API_KEY)

        assert db.query(Violation).count() == 0
        [log] = logs(db)
        assert log.processed is True
        assert log.error_message == "Persistence failure: RuntimeError"

    @pytest.mark.asyncio
    async def test_unexpected_error_while_validating_closes_log(self, db, ingestor):
        with patch("app.services.detection_ingestor.parse_timestamp", side_effect=RuntimeError("bad")):
            with pytest.raises(PersistenceError):
                await ingestor.ingest(db, payload(), API_KEY)

        [log] = logs(db)
        assert log.processed is True
        assert log.error_message == "Processing failure: RuntimeError"


class TestFieldLengths:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("field,value", [
        ("vehicle_number", "MH12AB" + "9" * 30),
        ("camera_id", "C" * 60),
        ("device_id", "D" * 60),
    ])
    async def test_oversized_identifiers_are_rejected(self, db, ingestor, field, value):
        with pytest.raises(ValidationError) as exc:
            await ingestor.ingest(db, payload(**{field: value}), API_KEY)

        assert exc.value.field == field
        assert db.query(Violation).count() == 0
        [log] = logs(db)
        assert log.processed is True
        assert field in log.error_message

    @pytest.mark.asyncio
    async def test_oversized_address_is_rejected(self, db, ingestor):
        location = {"latitude": 18.5, "longitude": 73.8, "address": "x" * 600}
        with pytest.raises(ValidationError) as exc:
            await ingestor.ingest(db, payload(location=location), API_KEY)
        assert exc.value.field == "location.address"

    @pytest.mark.asyncio
    async def test_audit_row_clips_oversized_values(self, db, ingestor):
        with pytest.raises(ValidationError):
            await ingestor.ingest(db, payload(vehicle_number="P" * 80, camera_id="C" * 80),
                                  API_KEY, source_ip="1" * 100)

        [log] = logs(db)
        assert log.extracted_plate == "P" * 50
        assert log.camera_id == "C" * 50
        assert log.source_ip == "1" * 64
        assert "P" * 80 in log.raw_payload

    @pytest.mark.asyncio
    async def test_identifiers_at_column_width_are_accepted(self, db, ingestor):
        await ingestor.ingest(db, payload(camera_id="C" * 50, device_id="D" * 50), API_KEY)
        violation = db.query(Violation).one()
        assert violation.camera_id == "C" * 50
        assert violation.device_id == "D" * 50
