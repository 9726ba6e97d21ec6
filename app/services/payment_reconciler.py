# app/services/payment_reconciler.py
"""
Payment Reconciler — settles approved violations through the payment provider.

Flow:
  create_intent → pending Payment row + provider order
  verify        → signature check, then Payment completed + Violation paid
                  in a single transaction

Retries are safe: verifying an already-completed payment returns the same
receipt, and a verify that loses the race to a concurrent one returns the
winner's receipt instead of failing.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.exceptions import (AlreadyPaid, Forbidden, NotApproved, NotFound, PersistenceError,
                            ProviderError, SignatureInvalid, Unauthorized, ValidationError)
from app.models.enums import PaymentMethod, PaymentStatus, ViolationStatus
from app.models.payment import Payment
from app.models.violation import Violation
from app.services import violation_store
from app.services.payment_provider import PaymentProvider, verify_signature
from app.utils.identifiers import generate_transaction_id, receipt_number_for
from app.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ReconcilerConfig:
    secret: str
    currency: str = "INR"
    key_id: str = ""

    @classmethod
    def from_settings(cls, s=settings) -> "ReconcilerConfig":
        return cls(secret=s.PAYMENT_PROVIDER_SECRET, currency=s.PAYMENT_CURRENCY,
                   key_id=s.PAYMENT_PROVIDER_KEY_ID)


@dataclass
class PaymentIntent:
    payment_id: int
    provider_order_id: str
    amount: int
    currency: str
    transaction_id: str
    challan_number: str
    key_id: str


@dataclass
class Receipt:
    payment_id: int
    receipt_number: str
    transaction_id: str
    violation_id: int
    challan_number: Optional[str]
    vehicle_number: str
    amount: int
    currency: str
    payment_method: str
    status: str
    paid_at: Optional[datetime]
    gateway_payment_id: Optional[str]
    receipt_url: Optional[str]


def receipt_url_for(payment_id: int) -> str:
    return f"/api/v1/payments/{payment_id}/receipt"


class PaymentReconciler:

    def __init__(self, config: ReconcilerConfig, provider: PaymentProvider):
        self.config = config
        self.provider = provider

    # ── Intent ────────────────────────────────────────────────────────────

    async def create_intent(self, db: Session, violation_id: int, method: str,
                            caller: Optional[str]) -> PaymentIntent:
        """Open a pending payment for an approved violation owned by the caller."""
        if not caller:
            raise Unauthorized("Unauthorized")
        try:
            method = PaymentMethod(method).value
        except ValueError:
            raise ValidationError(f"Unsupported payment method: {method}", field="paymentMethod")

        violation = violation_store.get_violation(db, violation_id)
        if violation.vehicle_number != caller:
            logger.warning(f"[PAYMENT] {caller} tried to pay violation {violation_id} "
                           f"belonging to {violation.vehicle_number}")
            raise Forbidden("This violation does not belong to your vehicle")
        if violation.status == ViolationStatus.PAID.value:
            raise AlreadyPaid("This violation has already been paid",
                              details={"violation_id": violation_id})
        if violation.status != ViolationStatus.APPROVED.value:
            raise NotApproved("This violation is not approved for payment yet",
                              details={"violation_id": violation_id, "status": violation.status})

        now = datetime.utcnow()
        payment = Payment(
            violation_id=violation.id,
            vehicle_number=violation.vehicle_number,
            amount=violation.fine_amount,
            currency=self.config.currency,
            payment_method=method,
            transaction_id=generate_transaction_id(),
            status=PaymentStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        try:
            db.add(payment)
            db.commit()
            db.refresh(payment)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"[PAYMENT] Could not create payment for violation {violation_id}: {e}")
            raise PersistenceError("Failed to create payment") from e

        try:
            order_id = await self.provider.create_order(
                payment.amount * 100,
                payment.currency,
                payment.transaction_id,
                {"violation_id": str(violation.id), "challan_number": violation.challan_number,
                 "vehicle_number": violation.vehicle_number},
            )
        except ProviderError as e:
            self._mark_failed(db, payment, e.message)
            raise
        except Exception as e:
            self._mark_failed(db, payment, f"Provider client error: {e.__class__.__name__}")
            raise ProviderError("Payment provider unavailable",
                                details={"receipt": payment.transaction_id}) from e

        payment.gateway_order_id = order_id
        payment.updated_at = datetime.utcnow()
        db.commit()
        db.refresh(payment)
        logger.info(f"[PAYMENT] Intent {payment.id} txn={payment.transaction_id} order={order_id} "
                    f"for violation {violation.id} ({payment.amount} {payment.currency})")

        return PaymentIntent(
            payment_id=payment.id,
            provider_order_id=order_id,
            amount=payment.amount,
            currency=payment.currency,
            transaction_id=payment.transaction_id,
            challan_number=violation.challan_number,
            key_id=self.config.key_id,
        )

    def _mark_failed(self, db: Session, payment: Payment, reason: str):
        payment.status = PaymentStatus.FAILED.value
        payment.failure_reason = reason
        payment.updated_at = datetime.utcnow()
        db.commit()
        logger.error(f"[PAYMENT] Payment {payment.id} failed: {reason}")

    # ── Verification ──────────────────────────────────────────────────────

    async def verify(self, db: Session, order_id: str, payment_id: str, signature: str) -> Receipt:
        """
        Confirm a completed checkout. Nothing is written unless the signature
        checks out.
        """
        if not verify_signature(order_id, payment_id, signature, self.config.secret):
            logger.error(f"[PAYMENT] Invalid signature for order {order_id}")
            raise SignatureInvalid("Payment verification failed - Invalid signature",
                                   details={"order_id": order_id})

        payment = db.query(Payment).filter(Payment.gateway_order_id == order_id).first()
        if not payment:
            raise NotFound("Payment record not found", details={"order_id": order_id})

        if payment.status == PaymentStatus.COMPLETED.value:
            logger.info(f"[PAYMENT] Order {order_id} already settled — returning existing receipt")
            return self._receipt(db, payment)

        now = datetime.utcnow()
        try:
            swapped = (
                db.query(Payment)
                .filter(Payment.id == payment.id, Payment.status == PaymentStatus.PENDING.value)
                .update({
                    "status": PaymentStatus.COMPLETED.value,
                    "gateway_payment_id": payment_id,
                    "gateway_signature": signature,
                    "receipt_number": receipt_number_for(payment.transaction_id),
                    "receipt_url": receipt_url_for(payment.id),
                    "paid_at": now,
                    "updated_at": now,
                }, synchronize_session=False)
            )
            if swapped == 1:
                violation_store.transition(db, payment.violation_id, ViolationStatus.PAID,
                                           actor=f"payment:{payment.id}", payment_id=payment.id,
                                           commit=False)
            db.commit()
        except Exception:
            db.rollback()
            logger.error(f"[PAYMENT] Settlement of order {order_id} rolled back", exc_info=True)
            raise

        db.expire(payment)
        if swapped != 1:
            # A concurrent verify got there first.
            db.refresh(payment)
            if payment.status != PaymentStatus.COMPLETED.value:
                raise NotFound("Payment is no longer pending", details={"order_id": order_id,
                                                                         "status": payment.status})
            logger.info(f"[PAYMENT] Order {order_id} settled concurrently — returning winner's receipt")
            return self._receipt(db, payment)

        logger.info(f"[PAYMENT] Payment {payment.id} completed, violation {payment.violation_id} paid")
        return self._receipt(db, payment)

    # ── Reads ─────────────────────────────────────────────────────────────

    def get_receipt(self, db: Session, payment_id: int, caller: Optional[str] = None) -> Receipt:
        payment = db.query(Payment).filter(Payment.id == payment_id).first()
        if not payment or (caller and payment.vehicle_number != caller):
            raise NotFound(f"Payment {payment_id} not found")
        if payment.status != PaymentStatus.COMPLETED.value:
            raise NotFound(f"No receipt for payment {payment_id}",
                           details={"status": payment.status})
        return self._receipt(db, payment)

    def list_for_vehicle(self, db: Session, vehicle_number: str) -> list[Payment]:
        return (
            db.query(Payment)
            .filter(Payment.vehicle_number == vehicle_number)
            .order_by(Payment.created_at.desc(), Payment.id.desc())
            .all()
        )

    @staticmethod
    def _receipt(db: Session, payment: Payment) -> Receipt:
        challan = db.query(Violation.challan_number).filter(Violation.id == payment.violation_id).scalar()
        return Receipt(
            payment_id=payment.id,
            receipt_number=payment.receipt_number,
            transaction_id=payment.transaction_id,
            violation_id=payment.violation_id,
            challan_number=challan,
            vehicle_number=payment.vehicle_number,
            amount=payment.amount,
            currency=payment.currency,
            payment_method=payment.payment_method,
            status=payment.status,
            paid_at=payment.paid_at,
            gateway_payment_id=payment.gateway_payment_id,
            receipt_url=payment.receipt_url,
        )
