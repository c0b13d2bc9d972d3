from typing import Optional
from pydantic import BaseModel


class CreateOrderRequest(BaseModel):
    amount: Optional[float] = None
    currency: str = "INR"
    receipt: Optional[str] = None


class VerifyPaymentRequest(BaseModel):
    # Razorpay checkout posts these back in snake_case
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None


class PromoValidateRequest(BaseModel):
    code: Optional[str] = None


class PromoValidateResponse(BaseModel):
    ok: bool = True
    valid: bool = True
    discount: int
    code: str
