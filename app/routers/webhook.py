# app/routers/webhook.py
"""
Sensor webhook endpoint.
POST /webhook/detection — receives one high-beam detection from a roadside unit.
GET  /webhook/detection — self-description for integrators and uptime checks.
GET  /webhook/detection/stats — detection summary for the sensor fleet (webhook key).
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.database import get_db
from app.dependencies import get_ingestor
from app.services import violation_store
from app.services.detection_ingestor import DetectionIngestor
from app.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


def _caller_key(request: Request) -> Optional[str]:
    key = request.headers.get("x-api-key")
    if key:
        return key
    auth = request.headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip()
    return None


def _source_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.post("/webhook/detection", summary="Sensor webhook — high-beam detection")
async def receive_detection(request: Request, db: Session = Depends(get_db),
                            ingestor: DetectionIngestor = Depends(get_ingestor)):
    """
    Creates a pending violation for a valid detection. A repeat delivery of
    the same detection returns the original violation with duplicate=true.
    """
    raw_body = await request.body()
    source_ip = _source_ip(request)
    logger.info(f"Detection from {source_ip} | {len(raw_body)} bytes")

    result = await ingestor.ingest(db, raw_body, _caller_key(request), source_ip=source_ip)
    return {
        "success": True,
        "message": "Duplicate detection ignored" if result.duplicate else "Violation recorded successfully",
        "violation_id": result.violation_id,
        "challan_number": result.challan_number,
        "fine_amount": result.fine_amount,
        "status": result.status,
        "vehicle_number": result.vehicle_number,
        "owner_found": result.owner_found,
        "owner_name": result.owner_name,
        "duplicate": result.duplicate,
    }


@router.get("/webhook/detection", summary="Webhook description")
def describe_webhook():
    return {
        "status": "active",
        "endpoint": "/api/v1/webhook/detection",
        "method": "POST",
        "auth": "x-api-key header or Authorization: Bearer <key>",
        "required_fields": ["vehicle_number", "beam_intensity"],
        "optional_fields": ["extraction_confidence", "timestamp", "camera_id", "device_id",
                            "location", "image_url", "image_base64", "video_url"],
    }


@router.get("/webhook/detection/stats", summary="Detection summary")
def detection_stats(request: Request, db: Session = Depends(get_db),
                    ingestor: DetectionIngestor = Depends(get_ingestor)):
    """Same key as the webhook. Today is counted from UTC midnight."""
    ingestor.authenticate(_caller_key(request))
    stats = violation_store.detection_stats(db)
    return {
        "totalViolations": stats["total_violations"],
        "todayViolations": stats["today_violations"],
        "pendingApproval": stats["pending_approval"],
        "averageConfidence": stats["average_confidence"],
    }
