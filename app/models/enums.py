# app/models/enums.py
"""Status vocabularies shared by models, services and schemas."""

from enum import Enum


class ViolationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    UPI = "upi"
    CARD = "card"
    NETBANKING = "netbanking"
    WALLET = "wallet"
    RAZORPAY = "razorpay"


class ReviewAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"

    @property
    def target_status(self) -> ViolationStatus:
        return ViolationStatus.APPROVED if self is ReviewAction.APPROVE else ViolationStatus.REJECTED
