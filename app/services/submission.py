"""
Submission Orchestrator

Coordinates one record submission across the three stores:

1. validate the payload and settle payment
2. for new records, look for an existing passport / aadhaar / PAN number in
   the database, then the workbook, then the sheet
3. write to the database (single attempt)
4. write through to the workbook and the sheet, appending new records or
   overwriting the row of an edited one

The database outcome decides the response. Mirror writes are best effort:
each returns a MirrorWriteResult and a failure is logged and dropped. When the
database write fails the mirrors are still written so the submission is not
lost.
"""

import logging
from typing import Any, List, Optional

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from app.core.errors import (
    DuplicateError,
    PersistencePartialFailure,
    StoreUnavailable,
    ValidationError,
)
from app.schemas.document import DocumentRecord, DuplicateCheckResult, StoredRecord, SubmissionRequest
from app.services.document_store import DocumentStore
from app.services.payments import PaymentGateway
from app.services.row_schema import DUPLICATE_COLUMNS

logger = logging.getLogger(__name__)


class MirrorWriteResult(BaseModel):
    target: str
    ok: bool = False
    skipped: bool = False
    sequence: Optional[int] = None
    error: Optional[str] = None


class SubmissionOutcome(BaseModel):
    ok: bool
    id: Optional[int] = None
    error: Optional[str] = None
    file: MirrorWriteResult
    sheet: MirrorWriteResult
    partial_failures: List[str] = Field(default_factory=list)


def _describe_validation_error(exc: PydanticValidationError) -> str:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "invalid value")
    return f"Invalid payload: {location}: {message}" if location else f"Invalid payload: {message}"


def duplicate_in_stored(record: DocumentRecord, matches: List[StoredRecord]) -> DuplicateCheckResult:
    """Attribute a database match to the highest-priority colliding field."""
    numbers = record.unique_numbers()
    for label, key, _ in DUPLICATE_COLUMNS:
        value = numbers[key]
        if not value:
            continue
        for match in matches:
            if match.record.unique_numbers()[key] == value:
                return DuplicateCheckResult(
                    has_duplicate=True, duplicate_field=label, duplicate_value=value, source="database"
                )
    return DuplicateCheckResult(has_duplicate=False)


class SubmissionOrchestrator:
    def __init__(
        self,
        store: DocumentStore,
        file_store,
        sheet_store=None,
        payments: Optional[PaymentGateway] = None,
    ):
        self.store = store
        self.file_store = file_store
        self.sheet_store = sheet_store
        self.payments = payments or PaymentGateway()

    def validate(self, payload: Any) -> SubmissionRequest:
        """Parse the payload, reject empty records and settle payment."""
        if not isinstance(payload, dict):
            raise ValidationError("Invalid payload")
        try:
            request = SubmissionRequest.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError(_describe_validation_error(e)) from e

        if not request.has_document_data():
            raise ValidationError("No document data provided")

        request.payment = self.payments.settle(request.payment)
        return request

    def find_duplicate(self, record: DocumentRecord) -> DuplicateCheckResult:
        """
        First duplicate found in database, workbook or sheet, in that order.

        A store that cannot be checked is logged and skipped.
        """
        numbers = record.unique_numbers()
        if not any(numbers.values()):
            return DuplicateCheckResult(has_duplicate=False)

        try:
            result = duplicate_in_stored(record, self.store.find_by_unique_fields(**numbers))
            if result.has_duplicate:
                return result
        except StoreUnavailable as e:
            logger.warning("Database duplicate check unavailable, continuing with mirrors: %s", e)

        for name, backend in (("file", self.file_store), ("sheet", self.sheet_store)):
            if backend is None:
                continue
            try:
                result = backend.check_duplicate(record)
            except Exception as e:
                logger.warning("Duplicate check against %s failed, skipping it: %s", name, e)
                continue
            if result.has_duplicate:
                return result
        return DuplicateCheckResult(has_duplicate=False)

    def _write_mirror(self, target: str, backend, record: DocumentRecord, sequence: Optional[int]) -> MirrorWriteResult:
        if backend is None:
            return MirrorWriteResult(target=target, skipped=True)
        try:
            if sequence is None:
                written = backend.append(record)
            else:
                backend.update(sequence, record)
                written = sequence
        except Exception as e:
            failure = PersistencePartialFailure(target, e)
            logger.error("%s", failure.message)
            # Clients only see the target; the cause stays in the log
            return MirrorWriteResult(target=target, error=f"{target} mirror write failed")
        return MirrorWriteResult(target=target, ok=True, sequence=written)

    def submit(self, payload: Any) -> SubmissionOutcome:
        request = self.validate(payload)
        record = request.record()
        sequence = request.sequence

        # Edits keep their row; only new records are checked for duplicates
        if sequence is None:
            duplicate = self.find_duplicate(record)
            if duplicate.has_duplicate:
                logger.info(
                    "Rejected duplicate %s %s (found in %s)",
                    duplicate.duplicate_field, duplicate.duplicate_value, duplicate.source,
                )
                raise DuplicateError(duplicate.duplicate_field, duplicate.duplicate_value, source=duplicate.source)

        stored: Optional[StoredRecord] = None
        try:
            stored = self.store.create(record)
        except StoreUnavailable as e:
            logger.error("Database write failed, writing mirrors only: %s", e)

        file_result = self._write_mirror("file", self.file_store, record, sequence)
        sheet_result = self._write_mirror("sheet", self.sheet_store, record, sequence)

        partial = [r.error for r in (file_result, sheet_result) if r.error]
        if stored is None and (file_result.ok or sheet_result.ok):
            partial.append("database write failed; record kept in spreadsheet mirrors only")
            logger.warning("Record saved to mirrors only (file=%s, sheet=%s)", file_result.ok, sheet_result.ok)

        if stored is not None:
            logger.info(
                "Saved record %s (file sequence %s, sheet sequence %s)",
                stored.id, file_result.sequence, sheet_result.sequence,
            )

        return SubmissionOutcome(
            ok=stored is not None,
            id=stored.id if stored else None,
            error=None if stored else "Save failed",
            file=file_result,
            sheet=sheet_result,
            partial_failures=partial,
        )
