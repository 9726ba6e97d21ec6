# app/routers/violations.py
"""Owner-facing violation views. The caller is identified by X-Vehicle-Number."""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.dependencies import get_caller_identity
from app.exceptions import Forbidden, Unauthorized
from app.schemas.vehicle import VehicleOut
from app.schemas.violation import ViolationOut
from app.services import owner_resolver, violation_store

router = APIRouter()


def _require_caller(caller: Optional[str]) -> str:
    if not caller:
        raise Unauthorized("Unauthorized")
    return caller


@router.get("/violations", summary="Caller's violations and fine totals")
def my_violations(db: Session = Depends(get_db), caller: Optional[str] = Depends(get_caller_identity)):
    dashboard = owner_resolver.owner_dashboard(db, _require_caller(caller))
    vehicle = dashboard["vehicle"]
    return {
        "success": True,
        "vehicle": VehicleOut.model_validate(vehicle) if vehicle else None,
        "vehicle_number": dashboard["vehicle_number"],
        "violations": [ViolationOut.model_validate(v) for v in dashboard["violations"]],
        "stats": {
            "total_fines": dashboard["total_fines"],
            "pending_fines": dashboard["pending_fines"],
            "paid_fines": dashboard["paid_fines"],
            "violation_count": dashboard["violation_count"],
        },
    }


@router.get("/violations/{violation_id}", response_model=ViolationOut, summary="One violation")
def get_violation(violation_id: int, db: Session = Depends(get_db),
                  caller: Optional[str] = Depends(get_caller_identity)):
    caller = _require_caller(caller)
    violation = violation_store.get_violation(db, violation_id)
    if violation.vehicle_number != caller:
        raise Forbidden("This violation does not belong to your vehicle")
    return violation
