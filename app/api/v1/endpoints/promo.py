from fastapi import APIRouter, Depends

from app.api import deps
from app.schemas.payment import PromoValidateRequest, PromoValidateResponse
from app.services.payments import PaymentGateway

router = APIRouter()


@router.post("/validate", response_model=PromoValidateResponse)
def validate_promo(
    request: PromoValidateRequest,
    payments: PaymentGateway = Depends(deps.get_payments),
):
    promo = payments.validate_promo_code(request.code)
    return PromoValidateResponse(discount=promo.discount, code=promo.code)
