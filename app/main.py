import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from app.api.v1.api import api_router
from app.core.config import settings
from app.core.errors import KYCError
from app.services.document_store import DocumentStore
from app.services.excel_store import ExcelRecordStore
from app.services.payments import PaymentGateway
from app.services.sheets_client import SheetsRecordStore
from app.services.storage import LocalUploadStorage
from app.services.submission import SubmissionOrchestrator

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = DocumentStore(settings.sync_database_url).open()
    file_store = ExcelRecordStore(
        os.path.join(settings.DATA_DIR, settings.EXCEL_FILENAME),
        max_attempts=settings.EXCEL_WRITE_ATTEMPTS,
    )
    try:
        file_store.ensure_initialized()
    except KYCError as e:
        logger.warning("Could not initialise workbook mirror at startup: %s", e)

    sheet_store = SheetsRecordStore.from_settings(settings) if settings.sheets_enabled else None
    if sheet_store is None:
        logger.info("GOOGLE_SHEETS_SPREADSHEET_ID not set, remote sheet mirror disabled")

    payments = PaymentGateway()
    app.state.store = store
    app.state.file_store = file_store
    app.state.sheet_store = sheet_store
    app.state.payments = payments
    app.state.storage = LocalUploadStorage()
    app.state.orchestrator = SubmissionOrchestrator(store, file_store, sheet_store, payments)
    try:
        yield
    finally:
        payments.close()
        if sheet_store is not None:
            sheet_store.close()
        store.close()


def create_app() -> FastAPI:
    app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(KYCError)
    async def kyc_error_handler(request: Request, exc: KYCError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = first.get("msg", "invalid value")
        error = f"Invalid payload: {location}: {message}" if location else "Invalid payload"
        return JSONResponse(status_code=400, content={"ok": False, "error": error})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"ok": False, "error": "Internal server error"})

    app.include_router(api_router, prefix=settings.API_V1_STR)

    os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
    app.mount("/uploads", StaticFiles(directory=settings.UPLOAD_DIR), name="uploads")

    @app.get("/health")
    def health():
        return {"ok": True}

    return app


app = create_app()
