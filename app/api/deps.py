import hmac
from typing import Optional

from fastapi import Header, Request

from app.core.config import settings
from app.core.errors import AuthorizationError, RemoteSheetError, ServerMisconfigured, UpstreamUnavailable
from app.services.document_store import DocumentStore
from app.services.excel_store import ExcelRecordStore
from app.services.payments import PaymentGateway
from app.services.sheets_client import SheetsRecordStore
from app.services.storage import LocalUploadStorage
from app.services.submission import SubmissionOrchestrator


def get_store(request: Request) -> DocumentStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise UpstreamUnavailable("Database not configured")
    return store


def get_file_store(request: Request) -> ExcelRecordStore:
    return request.app.state.file_store


def get_sheet_store(request: Request) -> SheetsRecordStore:
    sheet_store = getattr(request.app.state, "sheet_store", None)
    if sheet_store is None:
        raise RemoteSheetError("Google Sheets is not configured")
    return sheet_store


def get_orchestrator(request: Request) -> SubmissionOrchestrator:
    return request.app.state.orchestrator


def get_payments(request: Request) -> PaymentGateway:
    return request.app.state.payments


def get_storage(request: Request) -> LocalUploadStorage:
    return request.app.state.storage


def require_app_password(x_app_pass: Optional[str] = Header(None, alias="x-app-pass")) -> None:
    """Shared-secret gate for the read endpoints."""
    expected = settings.APP_ACCESS_PASSWORD
    if not expected:
        raise ServerMisconfigured("Server not configured: APP_ACCESS_PASSWORD is missing")
    if not x_app_pass or not hmac.compare_digest(x_app_pass.encode("utf-8"), expected.encode("utf-8")):
        raise AuthorizationError("Unauthorized")
