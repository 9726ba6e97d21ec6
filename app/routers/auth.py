# app/routers/auth.py
"""Owner login by plate + date of birth."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.schemas.vehicle import LoginRequest, VehicleOut
from app.services import owner_resolver

router = APIRouter()


@router.post("/auth/login", summary="Owner login")
async def login(body: LoginRequest, db: Session = Depends(get_db)):
    result = await owner_resolver.login(db, body.vehicle_number, body.dob,
                                        auto_register=settings.AUTO_REGISTER_ON_LOGIN)
    return {
        "success": True,
        "message": "Login successful",
        "hasOpenViolations": result.has_open_violations,
        "created": result.created,
        "owner": VehicleOut.model_validate(result.owner),
    }
