# app/models/vehicle.py
"""
Registered vehicles table.
One row per canonical registration number. Placeholder rows are created for
plates seen by a camera before their owner registers, and claimed later.
"""

from sqlalchemy import Column, Integer, String, DateTime, Boolean
from app.database import Base


class Vehicle(Base):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_number = Column(String(20), unique=True, nullable=False, index=True)
    owner_name = Column(String(200), nullable=False)
    owner_dob_hash = Column(String(100), nullable=False)   # bcrypt hash, never plaintext
    phone_number = Column(String(20))
    email = Column(String(200))
    address = Column(String(500))
    is_placeholder = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime)

    def __repr__(self):
        return f"<Vehicle {self.vehicle_number} owner={self.owner_name} placeholder={self.is_placeholder}>"
