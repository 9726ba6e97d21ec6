"""Shared fixtures: an in-memory SQLite database per test."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from datetime import datetime
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base
from app.models.enums import ViolationStatus
from app.models.vehicle import Vehicle
from app.services import violation_store
from app.utils.security import hash_secret

import app.models  # noqa: F401


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_violation(db):
    """Factory for violations in any state, created through the store."""
    def _make(vehicle_number="MH12AB1234", status=ViolationStatus.PENDING, fine_amount=1500,
              camera_id="CAM-01", vehicle_id=None, **kwargs):
        violation = violation_store.create_violation(
            db,
            vehicle_number=vehicle_number,
            fine_amount=fine_amount,
            beam_intensity=kwargs.pop("beam_intensity", 70.0),
            ai_confidence=kwargs.pop("ai_confidence", 0.95),
            camera_id=camera_id,
            vehicle_id=vehicle_id,
            **kwargs,
        )
        status = ViolationStatus(status)
        if status in (ViolationStatus.APPROVED, ViolationStatus.PAID):
            violation_store.transition(db, violation.id, ViolationStatus.APPROVED, actor="officer-1")
        if status is ViolationStatus.REJECTED:
            violation_store.transition(db, violation.id, ViolationStatus.REJECTED, actor="officer-1")
        if status is ViolationStatus.PAID:
            violation_store.transition(db, violation.id, ViolationStatus.PAID, actor="payment")
        db.refresh(violation)
        return violation
    return _make


@pytest.fixture
def make_vehicle(db):
    def _make(vehicle_number="MH12AB1234", dob="1990-05-17", owner_name="Asha Patil"):
        now = datetime.utcnow()
        vehicle = Vehicle(vehicle_number=vehicle_number, owner_name=owner_name,
                          owner_dob_hash=hash_secret(dob), is_placeholder=False,
                          created_at=now, updated_at=now)
        db.add(vehicle)
        db.commit()
        db.refresh(vehicle)
        return vehicle
    return _make
