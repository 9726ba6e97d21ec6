# app/schemas/violation.py
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional


class ViolationOut(BaseModel):
    id: int
    vehicle_id: Optional[int]
    vehicle_number: str
    detection_timestamp: datetime
    latitude: Optional[float]
    longitude: Optional[float]
    location_address: Optional[str]
    beam_intensity: float
    ai_confidence: float
    evidence_image_url: Optional[str]
    evidence_video_url: Optional[str]
    camera_id: str
    device_id: Optional[str]
    fine_amount: int
    challan_number: str
    status: str
    reviewed_by: Optional[str]
    reviewed_at: Optional[datetime]
    review_notes: Optional[str]
    payment_id: Optional[int]
    created_at: datetime

    class Config:
        from_attributes = True


class ReviewDecision(BaseModel):
    violation_id: int = Field(alias="violationId")
    action: str                  # approve | reject
    notes: Optional[str] = None

    class Config:
        populate_by_name = True


class BulkReviewDecision(BaseModel):
    violation_ids: list[int] = Field(alias="violationIds", min_length=1)
    action: str
    notes: Optional[str] = None

    class Config:
        populate_by_name = True
