"""
Payment Gate

Razorpay order creation and payment verification, plus the two ways to
satisfy payment without a charge: the admin bypass password and a 100%
discount promo code.
"""

import hashlib
import hmac
import logging
import time
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel

from app.core.config import settings
from app.core.errors import (
    PaymentConfigurationError,
    UpstreamUnavailable,
    ValidationError,
)
from app.schemas.document import Payment

logger = logging.getLogger(__name__)

# Promo code -> discount percentage
PROMO_CODES: Dict[str, int] = {
    "BIG123": 100,
}


class PromoCode(BaseModel):
    code: str
    discount: int


class PaymentGateway:
    """Razorpay client and payment-satisfaction rules."""

    def __init__(
        self,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        bypass_password: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        promo_codes: Optional[Dict[str, int]] = None,
    ):
        self.key_id = key_id if key_id is not None else settings.RAZORPAY_KEY_ID
        self.key_secret = key_secret if key_secret is not None else settings.RAZORPAY_KEY_SECRET
        self.bypass_password = bypass_password if bypass_password is not None else settings.PAYMENT_BYPASS_PASSWORD
        self.base_url = (base_url or settings.RAZORPAY_API_URL).rstrip("/")
        self.promo_codes = promo_codes if promo_codes is not None else PROMO_CODES
        self._client = client or httpx.Client(timeout=10.0)

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------ razorpay

    def _require_keys(self) -> None:
        if not self.key_id or not self.key_secret:
            raise PaymentConfigurationError(
                "Razorpay not configured. Please set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET environment variables."
            )

    def _call(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        self._require_keys()
        try:
            response = self._client.request(
                method, f"{self.base_url}{path}", auth=(self.key_id, self.key_secret), **kwargs
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.error("Razorpay %s %s returned %s", method, path, e.response.status_code)
            raise UpstreamUnavailable("Payment provider rejected the request") from e
        except httpx.HTTPError as e:
            logger.error("Razorpay %s %s failed: %s", method, path, e)
            raise UpstreamUnavailable("Payment provider unreachable") from e

    def create_order(self, amount: float, currency: str = "INR", receipt: Optional[str] = None) -> Dict[str, Any]:
        """Create an order for `amount` rupees. Razorpay works in paise."""
        self._require_keys()
        if not amount or amount <= 0:
            raise ValidationError("Invalid amount")
        order = self._call("POST", "/orders", json={
            "amount": int(round(amount * 100)),
            "currency": currency,
            "receipt": receipt or f"receipt_{int(time.time() * 1000)}",
        })
        return {"orderId": order.get("id"), "amount": order.get("amount"), "currency": order.get("currency")}

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """HMAC-SHA256 over "order_id|payment_id" keyed by the key secret."""
        self._require_keys()
        body = f"{order_id}|{payment_id}".encode("utf-8")
        expected = hmac.new(self.key_secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature or "")

    def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        payment = self._call("GET", f"/payments/{payment_id}")
        return {
            "paymentId": payment_id,
            "amount": (payment.get("amount") or 0) / 100,
            "status": payment.get("status"),
            "method": payment.get("method"),
            "transactionReference": payment.get("id"),
        }

    def verify_payment(self, order_id: str, payment_id: str, signature: str) -> Dict[str, Any]:
        if not order_id or not payment_id or not signature:
            raise ValidationError("Missing payment verification data")
        if not self.verify_signature(order_id, payment_id, signature):
            raise ValidationError("Payment verification failed")
        details = self.fetch_payment(payment_id)
        return {"success": True, "orderId": order_id, **details}

    # --------------------------------------------------- no-charge paths

    def validate_promo_code(self, code: Optional[str]) -> PromoCode:
        if not code or not isinstance(code, str):
            raise ValidationError("Promo code is required")
        normalized = code.strip().upper()
        discount = self.promo_codes.get(normalized)
        if discount is None:
            raise ValidationError("Invalid promo code")
        return PromoCode(code=normalized, discount=discount)

    def check_bypass_password(self, password: Optional[str]) -> bool:
        if not self.bypass_password or not password:
            return False
        return hmac.compare_digest(self.bypass_password.encode("utf-8"), password.encode("utf-8"))

    def settle(self, payment: Optional[Payment]) -> Payment:
        """
        Return the payment section to store, or raise ValidationError.

        Bypass and full-discount promo payments are recorded as paid with a
        zero amount.
        """
        if payment is None:
            raise ValidationError("Payment not completed")

        if payment.bypass_password_used:
            if not self.check_bypass_password(payment.bypass_password):
                raise ValidationError("Invalid bypass password")
            return Payment(payment_done=True, amount=0, bypass_password_used=True)

        if payment.promo_code_used:
            promo = self.validate_promo_code(payment.promo_code)
            if promo.discount < 100:
                raise ValidationError("Promo code does not cover the full amount")
            return Payment(payment_done=True, amount=0, promo_code_used=True, promo_code=promo.code)

        if not payment.payment_done:
            raise ValidationError("Payment not completed")
        return payment.model_copy(update={"bypass_password": None})
