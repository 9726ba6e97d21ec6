# app/models/detection_log.py
"""
Raw detection webhook log table.
Stores every inbound sensor call verbatim, whether or not it produced a violation.
Used for audit trail, debugging, and replay.
"""

from sqlalchemy import Column, Integer, String, DateTime, Text, Float, Boolean, ForeignKey
from app.database import Base


class DetectionLog(Base):
    __tablename__ = "detection_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    raw_payload = Column(Text)
    extracted_plate = Column(String(50))
    extraction_confidence = Column(Float)
    source_ip = Column(String(64))
    camera_id = Column(String(50), index=True)
    processed = Column(Boolean, default=False, nullable=False)
    violation_id = Column(Integer, ForeignKey("violations.id"))
    is_duplicate = Column(Boolean, default=False, nullable=False)
    error_message = Column(Text)
    created_at = Column(DateTime, nullable=False, index=True)

    def __repr__(self):
        return f"<DetectionLog {self.id} plate={self.extracted_plate} processed={self.processed}>"
