# app/routers/admin_violations.py
"""
Reviewer endpoints — guarded by X-API-Key when ADMIN_API_KEY is set.
GET /admin/violations       — review queue + dashboard stats
PUT /admin/violations       — approve / reject one violation
PUT /admin/violations/bulk  — approve / reject many
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.database import get_db
from app.dependencies import get_reviewer_id
from app.models.enums import ViolationStatus
from app.schemas.violation import BulkReviewDecision, ReviewDecision, ViolationOut
from app.services import review_engine, violation_store

router = APIRouter()


@router.get("/admin/violations", summary="Review queue")
def review_queue(status: Optional[ViolationStatus] = None, limit: int = Query(100, ge=1, le=1000),
                 db: Session = Depends(get_db)):
    violations = violation_store.list_violations(db, status=status, limit=limit)
    return {
        "success": True,
        "violations": [ViolationOut.model_validate(v) for v in violations],
        "stats": violation_store.violation_stats(db),
    }


@router.put("/admin/violations", summary="Approve or reject a violation")
async def decide_violation(body: ReviewDecision, db: Session = Depends(get_db),
                           reviewer: str = Depends(get_reviewer_id)):
    result = await review_engine.decide(db, body.violation_id, body.action, reviewer, body.notes)
    return {
        "success": True,
        "message": f"Violation {result.status} successfully",
        "violation_id": result.violation_id,
        "status": result.status,
        "reviewed_by": result.reviewed_by,
        "reviewed_at": result.reviewed_at,
    }


@router.put("/admin/violations/bulk", summary="Approve or reject many violations")
async def bulk_decide_violations(body: BulkReviewDecision, db: Session = Depends(get_db),
                                 reviewer: str = Depends(get_reviewer_id)):
    result = await review_engine.bulk_decide(db, body.violation_ids, body.action, reviewer, body.notes)
    return {"success": True, "succeeded": result.succeeded, "skipped": result.skipped}
