# app/schemas/detection_log.py
from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class DetectionLogOut(BaseModel):
    id: int
    raw_payload: Optional[str]
    extracted_plate: Optional[str]
    extraction_confidence: Optional[float]
    source_ip: Optional[str]
    camera_id: Optional[str]
    processed: bool
    violation_id: Optional[int]
    is_duplicate: bool
    error_message: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True
