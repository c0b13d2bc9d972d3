from fastapi import APIRouter, Depends

from app.api import deps
from app.core.config import settings
from app.schemas.payment import CreateOrderRequest, VerifyPaymentRequest
from app.services.payments import PaymentGateway

router = APIRouter()


@router.post("/create-order")
def create_order(
    request: CreateOrderRequest,
    payments: PaymentGateway = Depends(deps.get_payments),
):
    """Create a Razorpay order; the amount defaults to the submission fee."""
    amount = request.amount if request.amount is not None else settings.SUBMISSION_FEE
    return payments.create_order(amount, currency=request.currency, receipt=request.receipt)


@router.post("/verify")
def verify_payment(
    request: VerifyPaymentRequest,
    payments: PaymentGateway = Depends(deps.get_payments),
):
    return payments.verify_payment(
        request.razorpay_order_id,
        request.razorpay_payment_id,
        request.razorpay_signature,
    )
