import json
import re
from typing import Any, Dict, List, Optional

import httpx
import pytest

from app.schemas.document import DocumentRecord
from app.services.document_store import DocumentStore
from app.services.excel_store import ExcelRecordStore
from app.services.sheets_client import SheetsRecordStore

SPREADSHEET_ID = "test-spreadsheet"
RANGE_RE = re.compile(r"^'((?:[^']|'')*)'!([A-Z]+)(\d+)?(?::([A-Z]+)(\d+)?)?$")


def column_index(letters: str) -> int:
    """0-based index of an A1 column name."""
    n = 0
    for ch in letters:
        n = n * 26 + (ord(ch) - 64)
    return n - 1


class FakeSheetsAPI:
    """
    In-memory stand-in for the parts of the Sheets v4 REST API the client uses.

    Cells are returned as strings and trailing empty cells and rows are
    trimmed, like the real API does.
    """

    def __init__(self, spreadsheet_id: str = SPREADSHEET_ID):
        self.spreadsheet_id = spreadsheet_id
        self.sheets: Dict[str, Dict[str, Any]] = {}
        self.calls: List[Dict[str, Any]] = []
        self.fail_with: Optional[int] = None
        self._next_id = 100

    def add_sheet(self, title: str, rows=()) -> None:
        self.sheets[title] = {"id": self._next_id, "grid": [list(r) for r in rows]}
        self._next_id += 1

    def rows(self, title: str) -> List[List[str]]:
        return [[("" if v is None else str(v)) for v in row] for row in self.sheets[title]["grid"]]

    # ------------------------------------------------------------ helpers

    def _parse(self, range_: str):
        m = RANGE_RE.match(range_)
        assert m, f"unexpected range {range_!r}"
        title = m.group(1).replace("''", "'")
        start_col = column_index(m.group(2))
        start_row = int(m.group(3)) if m.group(3) else 1
        end_col = column_index(m.group(4)) if m.group(4) else None
        end_row = int(m.group(5)) if m.group(5) else None
        if end_col is None:
            end_col = start_col if m.group(3) else None
        return title, start_row, start_col, end_row, end_col

    def _write(self, title: str, row: int, col: int, values: List[List[Any]]) -> None:
        grid = self.sheets[title]["grid"]
        for offset, row_values in enumerate(values):
            r = row - 1 + offset
            while len(grid) <= r:
                grid.append([])
            target = grid[r]
            while len(target) < col + len(row_values):
                target.append("")
            for c, value in enumerate(row_values):
                target[col + c] = value

    def _read(self, title: str, start_row: int, start_col: int, end_row, end_col) -> List[List[str]]:
        grid = self.sheets[title]["grid"]
        last_row = len(grid) if end_row is None else min(end_row, len(grid))
        out = []
        for r in range(start_row - 1, last_row):
            row = grid[r]
            stop = len(row) if end_col is None else min(end_col + 1, len(row))
            cells = ["" if v is None else str(v) for v in row[start_col:stop]]
            while cells and cells[-1] == "":
                cells.pop()
            out.append(cells)
        while out and not out[-1]:
            out.pop()
        return out

    # ------------------------------------------------------------ handler

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        prefix = f"/v4/spreadsheets/{self.spreadsheet_id}"
        path = request.url.path
        assert path.startswith(prefix), path
        rest = path[len(prefix):]
        self.calls.append({"method": request.method, "path": rest, "body": body})
        if self.fail_with:
            return httpx.Response(self.fail_with, json={"error": {"message": "boom"}})

        if request.method == "GET" and rest == "":
            sheets = [{"properties": {"title": t, "sheetId": s["id"]}} for t, s in self.sheets.items()]
            return httpx.Response(200, json={"sheets": sheets})

        if request.method == "POST" and rest == ":batchUpdate":
            replies = []
            for req in body["requests"]:
                if "addSheet" in req:
                    title = req["addSheet"]["properties"]["title"]
                    self.add_sheet(title)
                    replies.append({"addSheet": {"properties": {"title": title, "sheetId": self.sheets[title]["id"]}}})
                else:
                    replies.append({})
            return httpx.Response(200, json={"replies": replies})

        if request.method == "POST" and rest == "/values:batchUpdate":
            for item in body["data"]:
                title, row, col, _, _ = self._parse(item["range"])
                self._write(title, row, col, item["values"])
            return httpx.Response(200, json={"totalUpdatedRows": len(body["data"])})

        assert rest.startswith("/values/"), rest
        range_ = rest[len("/values/"):]
        if request.method == "POST" and range_.endswith(":append"):
            title, _, col, _, _ = self._parse(range_[: -len(":append")])
            used = len(self._read(title, 1, 0, None, None))
            self._write(title, used + 1, col, body["values"])
            return httpx.Response(200, json={"updates": {"updatedRows": len(body["values"])}})

        title, start_row, start_col, end_row, end_col = self._parse(range_)
        if title not in self.sheets:
            return httpx.Response(400, json={"error": {"message": f"Unable to parse range: {range_}"}})
        if request.method == "GET":
            return httpx.Response(200, json={"range": range_, "values": self._read(title, start_row, start_col, end_row, end_col)})
        if request.method == "PUT":
            self._write(title, start_row, start_col, body["values"])
            return httpx.Response(200, json={"updatedRange": range_})
        return httpx.Response(405)


@pytest.fixture
def fake_sheets():
    return FakeSheetsAPI()


@pytest.fixture
def sheet_store(fake_sheets):
    client = httpx.Client(transport=httpx.MockTransport(fake_sheets.handler))
    store = SheetsRecordStore(
        spreadsheet_id=SPREADSHEET_ID,
        sheet_name="records",
        token_provider=lambda: "test-token",
        client=client,
    )
    yield store
    store.close()


@pytest.fixture
def excel_store(tmp_path):
    return ExcelRecordStore(str(tmp_path / "data" / "records.xlsx"), sleep=lambda _: None)


@pytest.fixture
def document_store():
    store = DocumentStore("sqlite://").open()
    yield store
    store.close()


def make_record(passport=None, aadhaar=None, pan=None, **extra) -> DocumentRecord:
    payload: Dict[str, Any] = {
        "passport_front": {"passportNumber": passport, "firstName": "Asha", "lastName": "Rao"},
        "aadhar": {"aadhaarNumber": aadhaar, "name": "Asha Rao"},
        "pan": {"panNumber": pan, "name": "ASHA RAO"},
        "payment": {"paymentDone": True, "amount": 1},
    }
    payload.update(extra)
    return DocumentRecord.model_validate(payload)


@pytest.fixture
def record_factory():
    return make_record
