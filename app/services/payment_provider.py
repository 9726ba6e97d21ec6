# app/services/payment_provider.py
"""
Payment provider client — creates hosted checkout orders and verifies the
signature the provider attaches to a completed payment.

Provider: Razorpay-compatible REST API
Endpoint: POST {PAYMENT_PROVIDER_URL}/v1/orders   (HTTP basic auth: key_id / secret)
Signature: hex HMAC-SHA256 of "<order_id>|<payment_id>" keyed with the secret.
"""

import hashlib
import hmac
from typing import Optional, Protocol

import httpx

from app.config import settings
from app.exceptions import ProviderError
from app.utils.logger import get_logger

logger = get_logger(__name__)


class PaymentProvider(Protocol):
    async def create_order(self, amount_paise: int, currency: str, receipt: str,
                           notes: Optional[dict] = None) -> str:
        """Create a checkout order and return the provider's order id."""
        ...


def compute_signature(order_id: str, payment_id: str, secret: str) -> str:
    message = f"{order_id}|{payment_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_signature(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    if not (order_id and payment_id and signature and secret):
        return False
    expected = compute_signature(order_id, payment_id, secret)
    return hmac.compare_digest(expected, signature)


class RazorpayProvider:
    """Thin async client over the provider's Orders API."""

    def __init__(self, base_url: str, key_id: str, secret: str, timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.key_id = key_id
        self.secret = secret
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, s=settings) -> "RazorpayProvider":
        return cls(
            base_url=s.PAYMENT_PROVIDER_URL,
            key_id=s.PAYMENT_PROVIDER_KEY_ID,
            secret=s.PAYMENT_PROVIDER_SECRET,
            timeout=s.PAYMENT_PROVIDER_TIMEOUT,
        )

    async def create_order(self, amount_paise: int, currency: str, receipt: str,
                           notes: Optional[dict] = None) -> str:
        url = f"{self.base_url}/v1/orders"
        body = {"amount": amount_paise, "currency": currency, "receipt": receipt, "notes": notes or {}}
        try:
            async with httpx.AsyncClient(auth=(self.key_id, self.secret), timeout=self.timeout,
                                         transport=self.transport) as client:
                resp = await client.post(url, json=body)
        except httpx.HTTPError as e:
            logger.error(f"[PROVIDER] Order request for {receipt} failed: {e.__class__.__name__}: {e}")
            raise ProviderError("Payment provider unavailable",
                                details={"receipt": receipt}) from e

        if resp.status_code >= 300:
            logger.error(f"[PROVIDER] Order request for {receipt} rejected: HTTP {resp.status_code} {resp.text[:200]}")
            raise ProviderError(f"Payment provider returned HTTP {resp.status_code}",
                                details={"receipt": receipt, "status": resp.status_code})

        try:
            data = resp.json()
        except ValueError:
            data = None
        order_id = data.get("id") if isinstance(data, dict) else None
        if not order_id or not isinstance(order_id, str):
            logger.error(f"[PROVIDER] Order response for {receipt} is malformed: {resp.text[:200]}")
            raise ProviderError("Payment provider response has no order id", details={"receipt": receipt})

        logger.info(f"[PROVIDER] Order {order_id} created for {receipt} ({amount_paise} {currency} paise)")
        return order_id
