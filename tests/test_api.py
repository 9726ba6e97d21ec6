"""End-to-end HTTP tests: detection → review → payment, plus error rendering."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from unittest.mock import AsyncMock, patch
from fastapi.testclient import TestClient

from app.config import settings
from app.database import get_db
from app.dependencies import get_ingestor, get_reconciler
from app.main import app
from app.services.detection_ingestor import DetectionIngestor, IngestionPolicy
from app.services.payment_provider import compute_signature
from app.services.payment_reconciler import PaymentReconciler, ReconcilerConfig

WEBHOOK_KEY = "sensor-key"
SECRET = "api-test-secret"
OWNER = {"X-Vehicle-Number": "mh 12 ab 1234"}


@pytest.fixture
def provider():
    mock = AsyncMock()
    mock.create_order.return_value = "order_API1"
    return mock


@pytest.fixture
def client(session_factory, provider, tmp_path):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_ingestor] = lambda: DetectionIngestor(
        IngestionPolicy(webhook_api_key=WEBHOOK_KEY, evidence_dir=str(tmp_path)))
    app.dependency_overrides[get_reconciler] = lambda: PaymentReconciler(
        ReconcilerConfig(secret=SECRET, key_id="rzp_test"), provider)
    with patch.object(settings, "ADMIN_API_KEY", None):
        yield TestClient(app)
    app.dependency_overrides.clear()


def detect(client, **overrides):
    body = {"vehicle_number": "MH12AB1234", "beam_intensity": 72, "camera_id": "CAM-01",
            "timestamp": "2026-10-02T21:00:00Z"}
    body.update(overrides)
    return client.post("/api/v1/webhook/detection", json=body, headers={"x-api-key": WEBHOOK_KEY})


class TestWebhook:
    def test_detection_created(self, client):
        resp = detect(client)
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["status"] == "pending"
        assert data["fine_amount"] == 1500
        assert data["duplicate"] is False

    def test_bearer_token_accepted(self, client):
        resp = client.post("/api/v1/webhook/detection",
                           json={"vehicle_number": "MH12AB1234", "beam_intensity": 90},
                           headers={"Authorization": f"Bearer {WEBHOOK_KEY}"})
        assert resp.status_code == 200

    def test_bad_key(self, client):
        resp = client.post("/api/v1/webhook/detection", json={"vehicle_number": "X", "beam_intensity": 90},
                           headers={"x-api-key": "wrong"})
        assert resp.status_code == 401
        assert resp.json()["error"] == "UNAUTHORIZED"
        assert client.get("/api/v1/detection-logs").json() == []

    def test_rejection_shape(self, client):
        resp = detect(client, beam_intensity=30)
        assert resp.status_code == 400
        body = resp.json()
        assert body == {"success": False, "error": "DETECTION_REJECTED",
                        "message": "Beam intensity too low",
                        "details": {"beam_intensity": 30.0, "floor": 50.0}}

    def test_duplicate(self, client):
        first = detect(client).json()
        second = detect(client).json()
        assert second["duplicate"] is True
        assert second["violation_id"] == first["violation_id"]

    def test_describe(self, client):
        resp = client.get("/api/v1/webhook/detection")
        assert resp.status_code == 200
        assert resp.json()["status"] == "active"

    def test_detection_stats(self, client):
        detect(client, extraction_confidence=0.8)
        detect(client, camera_id="CAM-02", extraction_confidence=1.0)
        detect(client, beam_intensity=10)

        resp = client.get("/api/v1/webhook/detection/stats", headers={"x-api-key": WEBHOOK_KEY})
        assert resp.status_code == 200
        assert resp.json() == {"totalViolations": 2, "todayViolations": 2,
                               "pendingApproval": 2, "averageConfidence": pytest.approx(0.9)}

    def test_detection_stats_needs_webhook_key(self, client):
        assert client.get("/api/v1/webhook/detection/stats").status_code == 401
        resp = client.get("/api/v1/webhook/detection/stats", headers={"x-api-key": "wrong"})
        assert resp.status_code == 401
        assert resp.json()["error"] == "UNAUTHORIZED"

    def test_detection_logs(self, client):
        detect(client)
        detect(client, beam_intensity=10)
        logs = client.get("/api/v1/detection-logs").json()
        assert len(logs) == 2
        assert all(l["processed"] for l in logs)
        assert {l["error_message"] for l in logs} == {None, "Beam intensity too low"}


class TestReviewAndPayment:
    def test_full_lifecycle(self, client, provider):
        violation_id = detect(client).json()["violation_id"]

        queue = client.get("/api/v1/admin/violations", params={"status": "pending"}).json()
        assert [v["id"] for v in queue["violations"]] == [violation_id]
        assert queue["stats"]["pending_approval"] == 1

        resp = client.put("/api/v1/admin/violations", json={"violationId": violation_id, "action": "approve"},
                          headers={"X-Reviewer-Id": "officer-3"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "approved"
        assert resp.json()["reviewed_by"] == "officer-3"

        again = client.put("/api/v1/admin/violations", json={"violationId": violation_id, "action": "reject"})
        assert again.status_code == 409
        assert again.json()["error"] == "ALREADY_DECIDED"

        order = client.post("/api/v1/payments/create-order",
                            json={"violationId": violation_id, "paymentMethod": "upi"}, headers=OWNER)
        assert order.status_code == 200
        order = order.json()
        assert order["providerOrderId"] == "order_API1"
        assert order["amount"] == 1500
        assert order["amountPaise"] == 150000

        signature = compute_signature("order_API1", "pay_77", SECRET)
        verify = client.post("/api/v1/payments/verify", json={
            "razorpay_order_id": "order_API1",
            "razorpay_payment_id": "pay_77",
            "razorpay_signature": signature,
        })
        assert verify.status_code == 200
        receipt_number = verify.json()["receiptNumber"]
        assert receipt_number == f"RCP-{order['transactionId']}"

        replay = client.post("/api/v1/payments/verify", json={
            "providerOrderId": "order_API1", "providerPaymentId": "pay_77", "providerSignature": signature,
        })
        assert replay.json()["receiptNumber"] == receipt_number

        mine = client.get("/api/v1/violations", headers=OWNER).json()
        assert mine["violations"][0]["status"] == "paid"
        assert mine["stats"]["paid_fines"] == 1500

        history = client.get("/api/v1/payments", headers=OWNER).json()
        assert [p["status"] for p in history] == ["completed"]

        receipt = client.get(f"/api/v1/payments/{order['paymentId']}/receipt", headers=OWNER).json()
        assert receipt["receipt"]["receipt_number"] == receipt_number

    def test_bulk_review(self, client):
        a = detect(client, camera_id="A").json()["violation_id"]
        b = detect(client, camera_id="B").json()["violation_id"]
        client.put("/api/v1/admin/violations", json={"violationId": b, "action": "reject"})
        resp = client.put("/api/v1/admin/violations/bulk",
                          json={"violationIds": [a, b, 999], "action": "approve"})
        assert resp.status_code == 200
        assert resp.json()["succeeded"] == [a]
        assert resp.json()["skipped"] == [b, 999]

    def test_payment_needs_caller(self, client):
        violation_id = detect(client).json()["violation_id"]
        resp = client.post("/api/v1/payments/create-order",
                           json={"violationId": violation_id, "paymentMethod": "upi"})
        assert resp.status_code == 401

    def test_unapproved_payment(self, client):
        violation_id = detect(client).json()["violation_id"]
        resp = client.post("/api/v1/payments/create-order",
                           json={"violationId": violation_id, "paymentMethod": "upi"}, headers=OWNER)
        assert resp.status_code == 409
        assert resp.json()["error"] == "NOT_APPROVED"

    def test_bad_signature(self, client):
        resp = client.post("/api/v1/payments/verify", json={
            "providerOrderId": "order_API1", "providerPaymentId": "pay_1", "providerSignature": "forged",
        })
        assert resp.status_code == 400
        assert resp.json()["error"] == "SIGNATURE_INVALID"

    def test_other_owner_cannot_read_violation(self, client):
        violation_id = detect(client).json()["violation_id"]
        assert client.get(f"/api/v1/violations/{violation_id}", headers=OWNER).status_code == 200
        resp = client.get(f"/api/v1/violations/{violation_id}", headers={"X-Vehicle-Number": "KA01MX9999"})
        assert resp.status_code == 403


class TestOwners:
    def test_register_links_and_login(self, client):
        detect(client)
        resp = client.post("/api/v1/vehicles", json={
            "vehicleNumber": "MH 12 AB 1234", "ownerName": "Asha Patil", "ownerDob": "1990-05-17",
        })
        assert resp.status_code == 200
        assert resp.json()["linkedViolationCount"] == 1
        assert "owner_dob_hash" not in resp.json()["vehicle"]

        dup = client.post("/api/v1/vehicles", json={
            "vehicleNumber": "MH12AB1234", "ownerName": "Someone", "ownerDob": "1970-01-01",
        })
        assert dup.status_code == 409

        login = client.post("/api/v1/auth/login", json={"vehicleNumber": "mh12ab1234", "dob": "1990-05-17"})
        assert login.status_code == 200
        assert login.json()["hasOpenViolations"] is True

        bad = client.post("/api/v1/auth/login", json={"vehicleNumber": "MH12AB1234", "dob": "1990-01-01"})
        assert bad.status_code == 401
        assert bad.json()["error"] == "AUTH_FAILED"

    def test_lookup(self, client):
        unknown = client.get("/api/v1/vehicles/lookup/MH12AB1234").json()
        assert unknown["registered"] is False
        client.post("/api/v1/vehicles", json={
            "vehicleNumber": "MH12AB1234", "ownerName": "Asha Patil", "ownerDob": "1990-05-17",
            "phoneNumber": "+91 98200 00000", "email": "asha@example.in",
        })
        known = client.get("/api/v1/vehicles/lookup/mh12ab1234").json()
        assert known["registered"] is True
        assert known["plate"] == "MH 12 AB 1234"
        assert known["vehicle"]["phone_number"] == "+91 98200 00000"
        assert known["vehicle"]["email"] == "asha@example.in"
        assert "owner_dob_hash" not in known["vehicle"]


class TestAdminKey:
    def test_admin_routes_require_key_when_configured(self, client):
        with patch.object(settings, "ADMIN_API_KEY", "admin-key"):
            assert client.get("/api/v1/admin/violations").status_code == 401
            assert client.get("/api/v1/detection-logs").status_code == 401
            ok = client.get("/api/v1/admin/violations", headers={"X-API-Key": "admin-key"})
            assert ok.status_code == 200
            assert client.get("/api/v1/health").status_code == 200

    def test_health(self, client):
        body = client.get("/api/v1/health").json()
        assert body["status"] == "ok"
        assert body["database"] == "ok"
