# app/dependencies.py
"""
Request-scoped dependencies shared by routers.

Caller identity comes from the X-Vehicle-Number header, set by the session
gateway in front of this API after an owner logs in. No header = anonymous.
"""

from functools import lru_cache
from typing import Optional

from fastapi import Header

from app.services.detection_ingestor import DetectionIngestor, IngestionPolicy
from app.services.payment_provider import RazorpayProvider
from app.services.payment_reconciler import PaymentReconciler, ReconcilerConfig
from app.utils.plate import format_vehicle_number

DEFAULT_REVIEWER = "admin"


def get_caller_identity(x_vehicle_number: Optional[str] = Header(default=None)) -> Optional[str]:
    return format_vehicle_number(x_vehicle_number) or None


def get_reviewer_id(x_reviewer_id: Optional[str] = Header(default=None)) -> str:
    return (x_reviewer_id or "").strip() or DEFAULT_REVIEWER


@lru_cache
def get_ingestor() -> DetectionIngestor:
    return DetectionIngestor(IngestionPolicy.from_settings())


@lru_cache
def get_reconciler() -> PaymentReconciler:
    return PaymentReconciler(ReconcilerConfig.from_settings(), RazorpayProvider.from_settings())
