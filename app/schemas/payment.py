# app/schemas/payment.py
from pydantic import AliasChoices, BaseModel, Field
from datetime import datetime
from typing import Optional


class CreateOrderRequest(BaseModel):
    violation_id: int = Field(alias="violationId")
    payment_method: str = Field(default="razorpay", alias="paymentMethod")

    class Config:
        populate_by_name = True


class VerifyPaymentRequest(BaseModel):
    """Checkout callback fields. Provider-native names are accepted too."""
    provider_order_id: str = Field(validation_alias=AliasChoices(
        "providerOrderId", "provider_order_id", "razorpay_order_id"))
    provider_payment_id: str = Field(validation_alias=AliasChoices(
        "providerPaymentId", "provider_payment_id", "razorpay_payment_id"))
    provider_signature: str = Field(validation_alias=AliasChoices(
        "providerSignature", "provider_signature", "razorpay_signature"))


class PaymentOut(BaseModel):
    id: int
    violation_id: int
    vehicle_number: str
    amount: int
    currency: str
    payment_method: str
    transaction_id: str
    gateway_order_id: Optional[str]
    status: str
    failure_reason: Optional[str]
    receipt_number: Optional[str]
    paid_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True
