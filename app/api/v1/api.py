from fastapi import APIRouter
from app.api.v1.endpoints import submit, export, sheets, uploads, extraction, payments, promo

api_router = APIRouter()
api_router.include_router(submit.router, prefix="/submit", tags=["submit"])
api_router.include_router(export.router, prefix="/export", tags=["export"])
api_router.include_router(sheets.router, prefix="/sheets", tags=["sheets"])
api_router.include_router(uploads.router, prefix="/uploads", tags=["uploads"])
api_router.include_router(extraction.router, prefix="/extraction", tags=["extraction"])
api_router.include_router(payments.router, prefix="/payment", tags=["payment"])
api_router.include_router(promo.router, prefix="/promo", tags=["promo"])
