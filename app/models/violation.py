# app/models/violation.py
"""
Violations table — one row per accepted high-beam detection and its adjudication.
Rows are never deleted; rejected and paid records stay for audit.
status is only ever written by app.services.violation_store.
"""

from sqlalchemy import Column, Integer, String, DateTime, Float, Text, ForeignKey
from app.database import Base
from app.models.enums import ViolationStatus


class Violation(Base):
    __tablename__ = "violations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), index=True)   # null until owner resolved
    vehicle_number = Column(String(20), nullable=False, index=True)
    detection_timestamp = Column(DateTime, nullable=False, index=True)

    latitude = Column(Float)
    longitude = Column(Float)
    location_address = Column(String(500), nullable=False, default="Detection Zone")

    beam_intensity = Column(Float, nullable=False)       # 0–100
    ai_confidence = Column(Float, nullable=False)        # 0.0–1.0
    evidence_image_url = Column(Text)
    evidence_video_url = Column(Text)
    camera_id = Column(String(50), nullable=False, index=True)
    device_id = Column(String(50))

    fine_amount = Column(Integer, nullable=False)        # fixed at creation
    challan_number = Column(String(20), unique=True, nullable=False, index=True)
    status = Column(String(20), nullable=False, default=ViolationStatus.PENDING.value, index=True)

    reviewed_by = Column(String(100))
    reviewed_at = Column(DateTime)
    review_notes = Column(Text)
    payment_id = Column(Integer)                          # completed payment (payments.id)

    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime)

    def __repr__(self):
        return f"<Violation {self.id} challan={self.challan_number} plate={self.vehicle_number} status={self.status}>"
