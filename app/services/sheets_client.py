"""
Remote-Sheet Backend

Mirrors submitted records into a shared Google Sheet through the Sheets v4
REST API. Same row semantics as the local workbook: row 1 holds HEADERS and
data row `n` (the sequence) sits on sheet row `n + 1`.

Nothing is cached between calls. The target sheet, header row and next
sequence are re-read every time so that edits made directly in the sheet
(or a sheet created elsewhere) are picked up. Search and duplicate checks
are linear scans over every row, which is fine for hundreds of rows but not
for large sheets.

All HTTP, transport and credential failures surface as RemoteSheetError.
"""

import base64
import binascii
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

import httpx
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account
from openpyxl.utils import get_column_letter
from pydantic import BaseModel

from app.core.errors import RemoteSheetError
from app.schemas.document import DocumentRecord, DuplicateCheckResult
from app.services.row_schema import HEADERS, find_duplicate_in_rows, normalize_rows, row_from_document

logger = logging.getLogger(__name__)

SHEETS_API_URL = "https://sheets.googleapis.com/v4/spreadsheets"
SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
TOKEN_URI = "https://oauth2.googleapis.com/token"
SEARCH_SEPARATOR = " \u0001 "
HEADER_SCAN_END = "ZZ"


def normalize_private_key(raw: Optional[str]) -> str:
    """
    Accept a service account key as pasted into an env var.

    Handles surrounding quotes, literal "\\n" escapes, stray carriage returns
    and base64-encoded PEM blocks.
    """
    key = (raw or "").strip()
    if not key:
        return key
    if len(key) >= 2 and key[0] == key[-1] and key[0] in ("'", '"'):
        key = key[1:-1]
    key = key.replace("\\n", "\n").replace("\r", "")
    if "BEGIN PRIVATE KEY" in key or "BEGIN RSA PRIVATE KEY" in key:
        return key
    try:
        decoded = base64.b64decode(key, validate=False).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return key
    if "BEGIN PRIVATE KEY" in decoded or "BEGIN RSA PRIVATE KEY" in decoded:
        return decoded.replace("\r", "")
    return key


class ServiceAccountTokenProvider:
    """Returns a valid OAuth access token for a service account, refreshing as needed."""

    def __init__(self, client_email: Optional[str], private_key: Optional[str]):
        self.client_email = client_email
        self.private_key = private_key
        self._credentials = None

    def __call__(self) -> str:
        if not self.client_email or not self.private_key:
            raise RemoteSheetError(
                "Google Sheets credentials missing. Set GOOGLE_SERVICE_ACCOUNT_EMAIL and GOOGLE_SERVICE_ACCOUNT_KEY"
            )
        if self._credentials is None:
            info = {
                "type": "service_account",
                "client_email": self.client_email,
                "private_key": normalize_private_key(self.private_key),
                "token_uri": TOKEN_URI,
            }
            self._credentials = service_account.Credentials.from_service_account_info(info, scopes=SCOPES)
        if not self._credentials.valid:
            self._credentials.refresh(GoogleAuthRequest())
        return self._credentials.token


class SheetInfo(BaseModel):
    title: str
    sheet_id: int


class SheetMatch(BaseModel):
    sequence: int
    row_index: int
    values: List[str]


class SheetSearchResult(BaseModel):
    matches: List[SheetMatch]
    headers: List[str]


def a1(title: str, start: str, end: Optional[str] = None) -> str:
    """A1 range on sheet `title`, e.g. 'records'!A2:AH."""
    quoted = "'" + title.replace("'", "''") + "'"
    return f"{quoted}!{start}:{end}" if end else f"{quoted}!{start}"


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


class SheetsRecordStore:
    """Google Sheet mirror of the record store."""

    def __init__(
        self,
        spreadsheet_id: Optional[str],
        sheet_name: str = "records",
        token_provider: Optional[Callable[[], str]] = None,
        client: Optional[httpx.Client] = None,
        base_url: str = SHEETS_API_URL,
        timeout: float = 15.0,
    ):
        self.spreadsheet_id = spreadsheet_id
        self.sheet_name = sheet_name
        self.base_url = base_url.rstrip("/")
        self._token_provider = token_provider or ServiceAccountTokenProvider(None, None)
        self._client = client or httpx.Client(timeout=timeout)

    @classmethod
    def from_settings(cls, settings) -> "SheetsRecordStore":
        return cls(
            spreadsheet_id=settings.GOOGLE_SHEETS_SPREADSHEET_ID,
            sheet_name=settings.GOOGLE_SHEETS_SHEET_NAME,
            token_provider=ServiceAccountTokenProvider(
                settings.GOOGLE_SERVICE_ACCOUNT_EMAIL,
                settings.GOOGLE_SERVICE_ACCOUNT_KEY,
            ),
        )

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------ transport

    def _request(self, method: str, path: str = "", **kwargs) -> Dict[str, Any]:
        if not self.spreadsheet_id:
            raise RemoteSheetError("GOOGLE_SHEETS_SPREADSHEET_ID is not set")
        try:
            token = self._token_provider()
        except (GoogleAuthError, ValueError, KeyError) as e:
            raise RemoteSheetError(f"Google credentials rejected: {e}") from e

        url = f"{self.base_url}/{self.spreadsheet_id}{path}"
        try:
            response = self._client.request(method, url, headers={"Authorization": f"Bearer {token}"}, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise RemoteSheetError(f"Sheets API returned {e.response.status_code} for {method} {path or '/'}") from e
        except httpx.HTTPError as e:
            raise RemoteSheetError(f"Sheets API unreachable: {e}") from e
        return response.json() if response.content else {}

    def _get_values(self, range_: str) -> List[List[Any]]:
        data = self._request("GET", f"/values/{quote(range_, safe='')}")
        return data.get("values", [])

    def _update_values(self, range_: str, rows: List[List[Any]]) -> None:
        self._request(
            "PUT",
            f"/values/{quote(range_, safe='')}",
            params={"valueInputOption": "RAW"},
            json={"values": rows},
        )

    def _append_values(self, range_: str, rows: List[List[Any]]) -> None:
        self._request(
            "POST",
            f"/values/{quote(range_, safe='')}:append",
            params={"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"},
            json={"values": rows},
        )

    def _batch_update(self, requests: List[Dict[str, Any]]) -> Dict[str, Any]:
        return self._request("POST", ":batchUpdate", json={"requests": requests})

    # --------------------------------------------------------------- sheets

    def list_sheets(self) -> List[SheetInfo]:
        meta = self._request("GET", "", params={"fields": "sheets.properties"})
        sheets = []
        for sheet in meta.get("sheets", []):
            props = sheet.get("properties", {})
            if props.get("title") is not None and isinstance(props.get("sheetId"), int):
                sheets.append(SheetInfo(title=props["title"], sheet_id=props["sheetId"]))
        return sheets

    def get_or_create_sheet(self, title: Optional[str] = None) -> SheetInfo:
        """Sheet with exactly this title, created when absent."""
        title = title or self.sheet_name
        for sheet in self.list_sheets():
            if sheet.title == title:
                return sheet

        logger.info("Creating sheet %r in spreadsheet %s", title, self.spreadsheet_id)
        reply = self._batch_update([{"addSheet": {"properties": {"title": title}}}])
        replies = reply.get("replies") or [{}]
        props = (replies[0].get("addSheet") or {}).get("properties") or {}
        if props.get("title") and isinstance(props.get("sheetId"), int):
            return SheetInfo(title=props["title"], sheet_id=props["sheetId"])

        for sheet in self.list_sheets():
            if sheet.title == title:
                return sheet
        raise RemoteSheetError(f"Failed to create sheet {title!r}")

    def format_header_row(self, sheet: SheetInfo) -> None:
        """Freeze and style the header row. Safe to repeat."""
        self._batch_update([
            {
                "updateSheetProperties": {
                    "properties": {"sheetId": sheet.sheet_id, "gridProperties": {"frozenRowCount": 1}},
                    "fields": "gridProperties.frozenRowCount",
                }
            },
            {
                "repeatCell": {
                    "range": {
                        "sheetId": sheet.sheet_id,
                        "startRowIndex": 0,
                        "endRowIndex": 1,
                        "startColumnIndex": 0,
                        "endColumnIndex": len(HEADERS),
                    },
                    "cell": {
                        "userEnteredFormat": {
                            "textFormat": {"bold": True},
                            "backgroundColor": {"red": 0.9, "green": 0.9, "blue": 0.9},
                            "horizontalAlignment": "CENTER",
                            "wrapStrategy": "WRAP",
                            "padding": {"top": 2, "bottom": 2, "left": 4, "right": 4},
                        }
                    },
                    "fields": "userEnteredFormat(textFormat,horizontalAlignment,backgroundColor,wrapStrategy,padding)",
                }
            },
        ])

    def read_header_row(self, sheet: Optional[SheetInfo] = None) -> List[str]:
        sheet = sheet or self.get_or_create_sheet()
        rows = self._get_values(a1(sheet.title, "A1", f"{HEADER_SCAN_END}1"))
        return [_as_text(v) for v in (rows[0] if rows else [])]

    def ensure_headers(self, sheet: SheetInfo) -> int:
        """Enforce the canonical header row and return the next sequence."""
        # Extra columns typed in after the last canonical one are left alone
        if self.read_header_row(sheet)[: len(HEADERS)] != HEADERS:
            logger.info("Rewriting header row of sheet %r", sheet.title)
            self._update_values(a1(sheet.title, "A1"), [HEADERS])
        self.format_header_row(sheet)
        first_column = self._get_values(a1(sheet.title, "A2", "A"))
        return len(first_column) + 1

    def read_data_rows(self, sheet: Optional[SheetInfo] = None, width: Optional[int] = None) -> List[List[str]]:
        sheet = sheet or self.get_or_create_sheet()
        last = get_column_letter(max(width or 0, len(HEADERS)))
        return [[_as_text(v) for v in row] for row in self._get_values(a1(sheet.title, "A2", last))]

    # ----------------------------------------------------------- operations

    def append(self, record: DocumentRecord) -> int:
        sheet = self.get_or_create_sheet()
        sequence = self.ensure_headers(sheet)
        self._append_values(a1(sheet.title, "A1"), [row_from_document(record, sequence)])
        logger.info("Appended record to sheet %r as sequence %d", sheet.title, sequence)
        return sequence

    def update(self, sequence: int, record: DocumentRecord) -> None:
        if sequence < 1:
            raise ValueError("sequence must be >= 1")
        sheet = self.get_or_create_sheet()
        self.ensure_headers(sheet)
        row_number = sequence + 1
        last = get_column_letter(len(HEADERS))
        self._update_values(
            a1(sheet.title, f"A{row_number}", f"{last}{row_number}"),
            [row_from_document(record, sequence)],
        )
        logger.info("Updated sheet %r row for sequence %d", sheet.title, sequence)

    def write_rows(self, updates: Sequence[Tuple[int, List[Any]]], sheet: Optional[SheetInfo] = None) -> int:
        """Overwrite several rows by sequence in one batch request."""
        if not updates:
            return 0
        sheet = sheet or self.get_or_create_sheet()
        width = max(len(row) for _, row in updates)
        last = get_column_letter(width)
        data = [
            {"range": a1(sheet.title, f"A{sequence + 1}", f"{last}{sequence + 1}"), "values": [row]}
            for sequence, row in updates
        ]
        self._request("POST", "/values:batchUpdate", json={"valueInputOption": "RAW", "data": data})
        return len(data)

    def check_duplicate(self, record: DocumentRecord) -> DuplicateCheckResult:
        result = find_duplicate_in_rows(record, self.read_data_rows())
        if result.has_duplicate:
            result.source = "sheet"
        return result

    def find_by_query(self, query: str) -> SheetSearchResult:
        """Rows containing `query` (case-insensitive) in any cell."""
        sheet = self.get_or_create_sheet()
        headers = self.read_header_row(sheet)
        rows = self.read_data_rows(sheet, width=len(headers))
        needle = (query or "").strip().lower()
        matches: List[SheetMatch] = []
        if needle:
            for idx, values in enumerate(rows):
                if needle not in SEARCH_SEPARATOR.join(values).lower():
                    continue
                try:
                    sequence = int(float(values[0])) if values and values[0] else idx + 1
                except (ValueError, OverflowError):
                    sequence = idx + 1
                if sequence < 1:
                    sequence = idx + 1
                matches.append(SheetMatch(sequence=sequence, row_index=idx + 2, values=values))
        return SheetSearchResult(matches=matches, headers=headers)

    def normalize_legacy_rows(self) -> int:
        """Rewrite every row in canonical column order, then fix the header row."""
        sheet = self.get_or_create_sheet()
        headers = self.read_header_row(sheet)
        if not headers:
            raise RemoteSheetError("Unable to read header row from Google Sheet")
        rows = self.read_data_rows(sheet, width=len(headers))
        width = max(len(headers), len(HEADERS))
        updates = [(sequence, row + [""] * (width - len(row))) for sequence, row in normalize_rows(headers, rows)]
        count = self.write_rows(updates, sheet=sheet)
        if headers != HEADERS:
            self._update_values(
                a1(sheet.title, "A1", f"{get_column_letter(width)}1"),
                [HEADERS + [""] * (width - len(HEADERS))],
            )
        return count

    def debug_status(self) -> Dict[str, Any]:
        """Read-only view of the sheet state; creates nothing."""
        sheets = self.list_sheets()
        sheet = next((s for s in sheets if s.title == self.sheet_name), None)
        status: Dict[str, Any] = {
            "spreadsheetId": self.spreadsheet_id,
            "sheetTitle": self.sheet_name,
            "titles": [s.title for s in sheets],
            "hasSheet": sheet is not None,
            "headerOk": False,
            "nextSeq": None,
        }
        if sheet is not None:
            status["headerOk"] = self.read_header_row(sheet)[: len(HEADERS)] == HEADERS
            status["nextSeq"] = len(self._get_values(a1(self.sheet_name, "A2", "A"))) + 1
        return status
