# app/routers/payments.py
"""
Fine settlement.
POST /payments/create-order  — open a provider checkout for an approved violation
POST /payments/verify        — confirm a checkout (idempotent)
GET  /payments               — caller's payment history
GET  /payments/{id}/receipt  — receipt for a completed payment
"""

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.dependencies import get_caller_identity, get_reconciler
from app.exceptions import Unauthorized
from app.schemas.payment import CreateOrderRequest, PaymentOut, VerifyPaymentRequest
from app.services.payment_reconciler import PaymentReconciler

router = APIRouter()


@router.post("/payments/create-order", summary="Create a payment order")
async def create_order(body: CreateOrderRequest, db: Session = Depends(get_db),
                       caller: Optional[str] = Depends(get_caller_identity),
                       reconciler: PaymentReconciler = Depends(get_reconciler)):
    intent = await reconciler.create_intent(db, body.violation_id, body.payment_method, caller)
    return {
        "success": True,
        "paymentId": intent.payment_id,
        "providerOrderId": intent.provider_order_id,
        "amount": intent.amount,
        "amountPaise": intent.amount * 100,
        "currency": intent.currency,
        "transactionId": intent.transaction_id,
        "challanNumber": intent.challan_number,
        "keyId": intent.key_id,
    }


@router.post("/payments/verify", summary="Verify a completed payment")
async def verify_payment(body: VerifyPaymentRequest, db: Session = Depends(get_db),
                         reconciler: PaymentReconciler = Depends(get_reconciler)):
    receipt = await reconciler.verify(db, body.provider_order_id, body.provider_payment_id,
                                      body.provider_signature)
    return {
        "success": True,
        "message": "Payment verified successfully",
        "paymentId": receipt.payment_id,
        "transactionId": receipt.transaction_id,
        "receiptNumber": receipt.receipt_number,
        "amount": receipt.amount,
        "paidAt": receipt.paid_at,
        "challanNumber": receipt.challan_number,
        "vehicleNumber": receipt.vehicle_number,
        "providerPaymentId": receipt.gateway_payment_id,
    }


@router.get("/payments", response_model=list[PaymentOut], summary="Caller's payment history")
def payment_history(db: Session = Depends(get_db),
                    caller: Optional[str] = Depends(get_caller_identity),
                    reconciler: PaymentReconciler = Depends(get_reconciler)):
    if not caller:
        raise Unauthorized("Unauthorized")
    return reconciler.list_for_vehicle(db, caller)


@router.get("/payments/{payment_id}/receipt", summary="Payment receipt")
def payment_receipt(payment_id: int, db: Session = Depends(get_db),
                    caller: Optional[str] = Depends(get_caller_identity),
                    reconciler: PaymentReconciler = Depends(get_reconciler)):
    if not caller:
        raise Unauthorized("Unauthorized")
    return {"success": True, "receipt": asdict(reconciler.get_receipt(db, payment_id, caller))}
