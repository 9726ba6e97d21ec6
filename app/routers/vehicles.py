# app/routers/vehicles.py
"""Owner registration and plate lookup."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.schemas.vehicle import VehicleCreate, VehicleOut
from app.services import owner_resolver
from app.utils.plate import display_vehicle_number, format_vehicle_number

router = APIRouter()


@router.post("/vehicles", summary="Register a vehicle owner")
async def register_vehicle(body: VehicleCreate, db: Session = Depends(get_db)):
    """Claims the plate and links any violations recorded before registration."""
    result = await owner_resolver.register_owner(db, body.vehicle_number, owner_resolver.OwnerDetails(
        owner_name=body.owner_name,
        dob=body.owner_dob,
        phone_number=body.phone_number,
        email=body.email,
        address=body.address,
    ))
    return {
        "success": True,
        "vehicle": VehicleOut.model_validate(result.vehicle),
        "linkedViolationCount": result.linked_violation_count,
    }


@router.get("/vehicles/lookup/{plate}", summary="Look up a plate number")
def lookup_vehicle(plate: str, db: Session = Depends(get_db)):
    key = format_vehicle_number(plate)
    vehicle = owner_resolver.lookup_vehicle(db, key)
    if not vehicle or vehicle.is_placeholder:
        return {"plate": display_vehicle_number(key), "vehicle_number": key,
                "status": "unknown", "registered": False}
    return {"plate": display_vehicle_number(key), "vehicle_number": key, "status": "known",
            "registered": True, "owner": vehicle.owner_name,
            "vehicle": VehicleOut.model_validate(vehicle)}
