# app/schemas/vehicle.py
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional


class VehicleCreate(BaseModel):
    vehicle_number: str = Field(alias="vehicleNumber")
    owner_name: str = Field(alias="ownerName")
    owner_dob: str = Field(alias="ownerDob")
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")
    email: Optional[str] = None
    address: Optional[str] = None

    class Config:
        populate_by_name = True


class LoginRequest(BaseModel):
    vehicle_number: str = Field(alias="vehicleNumber")
    dob: str

    class Config:
        populate_by_name = True


class VehicleOut(BaseModel):
    id: int
    vehicle_number: str
    owner_name: str
    phone_number: Optional[str]
    email: Optional[str]
    address: Optional[str]
    is_placeholder: bool
    created_at: datetime

    class Config:
        from_attributes = True
