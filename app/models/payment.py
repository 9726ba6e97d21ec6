# app/models/payment.py
"""
Payments table — one row per settlement attempt against a violation.
Written only by app.services.payment_reconciler.
"""

from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey
from app.database import Base
from app.models.enums import PaymentStatus


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    violation_id = Column(Integer, ForeignKey("violations.id"), nullable=False, index=True)
    vehicle_number = Column(String(20), nullable=False)
    amount = Column(Integer, nullable=False)             # rupees, equals the violation fine
    currency = Column(String(3), nullable=False, default="INR")
    payment_method = Column(String(20), nullable=False)

    transaction_id = Column(String(40), unique=True, nullable=False)
    gateway_order_id = Column(String(64), unique=True)
    gateway_payment_id = Column(String(64))
    gateway_signature = Column(String(128))

    status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True)
    failure_reason = Column(Text)
    receipt_number = Column(String(50))
    receipt_url = Column(String(200))
    paid_at = Column(DateTime)

    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime)

    def __repr__(self):
        return f"<Payment {self.id} txn={self.transaction_id} violation={self.violation_id} status={self.status}>"
