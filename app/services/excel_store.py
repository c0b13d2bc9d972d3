"""
Spreadsheet-File Backend

Keeps a local .xlsx workbook mirroring submitted records for offline review
and export. Row 1 is always the HEADERS row; data row `n` (the record's
sequence) lives on sheet row `n + 1`.

Every mutation rewrites the whole workbook through a temp file and an atomic
rename, retried with backoff when the file is locked (for example while it is
open in a spreadsheet program). Read-modify-write cycles are serialised with
an in-process lock; concurrent writers in other processes are not
coordinated.
"""

import errno
import io
import logging
import os
import random
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Iterable, List, Optional

from openpyxl import Workbook, load_workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE

from app.core.errors import SpreadsheetWriteError
from app.schemas.document import DocumentRecord, DuplicateCheckResult
from app.services.row_schema import HEADERS, find_duplicate_in_rows, normalize_rows, row_from_document

logger = logging.getLogger(__name__)

SHEET_TITLE = "records"
LOCK_ERRNOS = {errno.EBUSY, errno.EACCES, errno.EPERM, errno.ETXTBSY}
LOCK_MESSAGES = ("busy", "permission", "denied")


def is_lock_error(exc: BaseException) -> bool:
    """True for failures that look like another process holding the file."""
    if isinstance(exc, PermissionError):
        return True
    if isinstance(exc, OSError) and exc.errno in LOCK_ERRNOS:
        return True
    message = str(exc).lower()
    return any(word in message for word in LOCK_MESSAGES)


def _clean_cell(value: Any) -> Any:
    if isinstance(value, str):
        return ILLEGAL_CHARACTERS_RE.sub("", value)
    return value


def _row_has_data(row: Iterable[Any]) -> bool:
    return any(cell is not None and str(cell).strip() != "" for cell in row)


def new_workbook(rows: Iterable[List[Any]] = ()) -> Workbook:
    wb = Workbook()
    ws = wb.active
    ws.title = SHEET_TITLE
    ws.append(HEADERS)
    for row in rows:
        ws.append([_clean_cell(v) for v in row])
    return wb


def workbook_bytes(wb: Workbook) -> bytes:
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


class ExcelRecordStore:
    """Local workbook mirror of the record store."""

    def __init__(
        self,
        path: str,
        max_attempts: int = 5,
        base_delay: float = 0.05,
        sleep=time.sleep,
    ):
        self.path = Path(path)
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self._sleep = sleep
        self._lock = threading.RLock()

    # ------------------------------------------------------------------ I/O

    def _reset(self) -> Workbook:
        wb = new_workbook()
        self._save(wb)
        return wb

    def _load(self) -> Workbook:
        """Open the workbook, recreating it when missing, empty or corrupt."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists() or self.path.stat().st_size == 0:
            return self._reset()
        try:
            wb = load_workbook(self.path)
        except Exception as e:
            logger.warning("Workbook %s unreadable, recreating it: %s", self.path, e)
            return self._reset()
        if not wb.worksheets:
            return self._reset()
        ws = wb.worksheets[0]
        if ws.max_row <= 1 and not _row_has_data(c.value for c in ws[1]):
            for idx, title in enumerate(HEADERS, start=1):
                ws.cell(row=1, column=idx, value=title)
        return wb

    def _write_once(self, wb: Workbook) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=".records-", suffix=".xlsx.tmp")
        os.close(fd)
        try:
            wb.save(tmp_path)
            os.replace(tmp_path, self.path)
        finally:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)

    def _save(self, wb: Workbook) -> None:
        for attempt in range(1, self.max_attempts + 1):
            try:
                self._write_once(wb)
                return
            except OSError as e:
                if not is_lock_error(e):
                    raise SpreadsheetWriteError(f"Workbook write failed: {e}") from e
                if attempt == self.max_attempts:
                    raise SpreadsheetWriteError(
                        f"Workbook still locked after {self.max_attempts} attempts: {e}"
                    ) from e
                delay = self.base_delay * (2 ** (attempt - 1))
                delay += random.uniform(0, delay)
                logger.warning(
                    "Workbook %s locked (attempt %d/%d), retrying in %.2fs",
                    self.path, attempt, self.max_attempts, delay,
                )
                self._sleep(delay)

    # ----------------------------------------------------------- operations

    def ensure_initialized(self) -> None:
        with self._lock:
            self._load()

    def data_rows(self) -> List[List[Any]]:
        """All non-empty rows below the header, as plain values."""
        with self._lock:
            ws = self._load().worksheets[0]
            return [list(row) for row in ws.iter_rows(min_row=2, values_only=True) if _row_has_data(row)]

    def append(self, record: DocumentRecord) -> int:
        """Write `record` after the existing content and return its sequence."""
        with self._lock:
            wb = self._load()
            ws = wb.worksheets[0]
            existing = sum(1 for row in ws.iter_rows(min_row=2, values_only=True) if _row_has_data(row))
            sequence = existing + 1
            target_row = ws.max_row + 1
            for idx, value in enumerate(row_from_document(record, sequence), start=1):
                ws.cell(row=target_row, column=idx, value=_clean_cell(value))
            self._save(wb)
            logger.info("Appended record to workbook as sequence %d", sequence)
            return sequence

    def update(self, sequence: int, record: DocumentRecord) -> None:
        """Overwrite the row previously assigned `sequence`."""
        if sequence < 1:
            raise ValueError("sequence must be >= 1")
        with self._lock:
            wb = self._load()
            ws = wb.worksheets[0]
            target_row = 1 + sequence
            for idx, value in enumerate(row_from_document(record, sequence), start=1):
                ws.cell(row=target_row, column=idx, value=_clean_cell(value))
            self._save(wb)
            logger.info("Updated workbook row for sequence %d", sequence)

    def check_duplicate(self, record: DocumentRecord) -> DuplicateCheckResult:
        result = find_duplicate_in_rows(record, self.data_rows())
        if result.has_duplicate:
            result.source = "file"
        return result

    def normalize_legacy_rows(self) -> int:
        """Rewrite every row and the header row in canonical column order."""
        with self._lock:
            wb = self._load()
            ws = wb.worksheets[0]
            header_row = [c.value for c in ws[1]]
            rows = [list(row) for row in ws.iter_rows(min_row=2, values_only=True)]
            width = max(len(header_row), len(HEADERS))
            updates = normalize_rows(header_row, rows)
            for idx in range(1, width + 1):
                ws.cell(row=1, column=idx, value=HEADERS[idx - 1] if idx <= len(HEADERS) else None)
            for sequence, row in updates:
                padded = row + [None] * (width - len(row))
                for idx, value in enumerate(padded, start=1):
                    ws.cell(row=sequence + 1, column=idx, value=_clean_cell(value))
            self._save(wb)
            return len(updates)

    def read_bytes(self) -> bytes:
        """Current mirror content, creating an empty workbook if needed."""
        with self._lock:
            self._load()
            return self.path.read_bytes()

    @staticmethod
    def build_export(records: Iterable[DocumentRecord]) -> bytes:
        """Fresh workbook for `records`, numbered in the given order."""
        rows = (row_from_document(record, idx) for idx, record in enumerate(records, start=1))
        return workbook_bytes(new_workbook(rows))
