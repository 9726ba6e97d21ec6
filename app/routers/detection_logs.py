# app/routers/detection_logs.py
"""Detection audit trail — every authenticated webhook call and its outcome."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.database import get_db
from app.schemas.detection_log import DetectionLogOut
from app.services import violation_store

router = APIRouter()


@router.get("/detection-logs", response_model=list[DetectionLogOut], summary="List detection logs")
def list_detection_logs(limit: int = Query(50, ge=1, le=500), processed: Optional[bool] = None,
                        camera_id: Optional[str] = None, db: Session = Depends(get_db)):
    """Newest first. Filter by processed flag or camera_id."""
    return violation_store.list_detection_logs(db, limit=limit, processed=processed, camera_id=camera_id)
