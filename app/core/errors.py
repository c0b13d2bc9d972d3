"""
Error Taxonomy

Every failure that can reach a client is a KYCError carrying an HTTP status
and a short reason string. The exception handler in app.main renders them as
{"ok": false, "error": <reason>, ...extra}.
"""

from typing import Any, Dict, Optional


class KYCError(Exception):
    """Base class for errors surfaced to API clients."""
    status_code = 500

    def __init__(self, message: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}

    def to_body(self) -> Dict[str, Any]:
        return {"ok": False, "error": self.message, **self.extra}


class ValidationError(KYCError):
    """Payload is empty, malformed, or payment is not satisfied."""
    status_code = 400


class DuplicateError(KYCError):
    """A unique document number already exists in one of the stores."""
    status_code = 409

    def __init__(self, field: str, value: str, source: Optional[str] = None):
        super().__init__(
            f"Duplicate record: {field} {value} already exists",
            extra={"duplicateField": field, "duplicateValue": value},
        )
        self.field = field
        self.value = value
        self.source = source


class AuthorizationError(KYCError):
    status_code = 401


class NotFound(KYCError):
    status_code = 404


class ServerMisconfigured(KYCError):
    status_code = 500


class UpstreamUnavailable(KYCError):
    """A dependency (database, sheet, model, payment provider) failed."""
    status_code = 503


class StoreUnavailable(UpstreamUnavailable):
    pass


class RemoteSheetError(UpstreamUnavailable):
    pass


class PaymentConfigurationError(UpstreamUnavailable):
    status_code = 500


class SpreadsheetWriteError(KYCError):
    """The local workbook could not be written after all retry attempts."""
    pass


class PersistencePartialFailure(KYCError):
    """
    One store succeeded while another failed.

    Never raised: the orchestrator records and logs instances of it so the
    decision to ignore a mirror failure stays visible.
    """

    def __init__(self, target: str, cause: BaseException):
        super().__init__(f"{target} write failed: {cause}")
        self.target = target
        self.cause = cause
