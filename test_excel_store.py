import io
import os
import threading
from unittest.mock import patch

import pytest
from openpyxl import Workbook, load_workbook

from app.core.errors import SpreadsheetWriteError
from app.services.excel_store import ExcelRecordStore, is_lock_error
from app.services.row_schema import HEADERS


def read_sheet(path):
    ws = load_workbook(path).worksheets[0]
    return [list(row) for row in ws.iter_rows(values_only=True)]


def test_ensure_initialized_creates_header_row(excel_store):
    excel_store.ensure_initialized()
    rows = read_sheet(excel_store.path)
    assert rows == [HEADERS]


def test_corrupt_workbook_is_recreated(excel_store):
    excel_store.path.parent.mkdir(parents=True)
    excel_store.path.write_bytes(b"this is not a zip file")

    excel_store.ensure_initialized()
    assert read_sheet(excel_store.path) == [HEADERS]


def test_empty_file_is_recreated(excel_store):
    excel_store.path.parent.mkdir(parents=True)
    excel_store.path.write_bytes(b"")
    assert excel_store.data_rows() == []
    assert read_sheet(excel_store.path)[0] == HEADERS


def test_appends_are_numbered_in_order(excel_store, record_factory):
    sequences = [excel_store.append(record_factory(passport=f"P{i}")) for i in range(1, 4)]
    assert sequences == [1, 2, 3]

    rows = read_sheet(excel_store.path)
    assert rows[0] == HEADERS
    assert [r[0] for r in rows[1:]] == [1, 2, 3]
    assert [r[HEADERS.index("Passport No.")] for r in rows[1:]] == ["P1", "P2", "P3"]


def test_update_overwrites_in_place(excel_store, record_factory):
    for i in range(1, 4):
        excel_store.append(record_factory(passport=f"P{i}"))

    excel_store.update(2, record_factory(passport="P2-EDITED"))

    rows = read_sheet(excel_store.path)
    assert len(rows) == 4
    assert [r[0] for r in rows[1:]] == [1, 2, 3]
    assert [r[HEADERS.index("Passport No.")] for r in rows[1:]] == ["P1", "P2-EDITED", "P3"]
    assert excel_store.append(record_factory(passport="P4")) == 4


def test_update_rejects_bad_sequence(excel_store, record_factory):
    with pytest.raises(ValueError):
        excel_store.update(0, record_factory(passport="P1"))


def test_check_duplicate(excel_store, record_factory):
    excel_store.append(record_factory(passport="A1234567", aadhaar="111122223333", pan="ABCDE1234F"))

    result = excel_store.check_duplicate(record_factory(passport="X0000000", pan="ABCDE1234F"))
    assert result.has_duplicate
    assert result.duplicate_field == "PAN Number"
    assert result.source == "file"

    assert not excel_store.check_duplicate(record_factory(passport="C9999999")).has_duplicate


def test_control_characters_are_stripped(excel_store, record_factory):
    record = record_factory(passport="A1\x0b23")
    excel_store.append(record)
    rows = read_sheet(excel_store.path)
    assert rows[1][HEADERS.index("Passport No.")] == "A123"


def test_locked_file_is_retried(excel_store, record_factory):
    excel_store.ensure_initialized()
    real_replace = os.replace
    calls = {"n": 0}

    def flaky_replace(src, dst):
        calls["n"] += 1
        if calls["n"] < 3:
            raise PermissionError(13, "Permission denied")
        return real_replace(src, dst)

    with patch("app.services.excel_store.os.replace", side_effect=flaky_replace):
        assert excel_store.append(record_factory(passport="P1")) == 1

    assert calls["n"] == 3
    assert read_sheet(excel_store.path)[1][HEADERS.index("Passport No.")] == "P1"
    # No temp files left behind
    assert [p.name for p in excel_store.path.parent.iterdir()] == ["records.xlsx"]


def test_lock_that_never_clears_raises(tmp_path, record_factory):
    sleeps = []
    store = ExcelRecordStore(str(tmp_path / "records.xlsx"), max_attempts=3, sleep=sleeps.append)
    store.ensure_initialized()

    with patch("app.services.excel_store.os.replace", side_effect=PermissionError(13, "Permission denied")):
        with pytest.raises(SpreadsheetWriteError):
            store.append(record_factory(passport="P1"))

    assert len(sleeps) == 2
    # Exponential backoff with up to 100% jitter on a 0.05s base
    assert 0.05 <= sleeps[0] <= 0.1
    assert 0.1 <= sleeps[1] <= 0.2
    assert read_sheet(store.path) == [HEADERS]


def test_non_lock_errors_are_not_retried(excel_store, record_factory):
    excel_store.ensure_initialized()
    with patch("app.services.excel_store.os.replace", side_effect=OSError(28, "No space left on device")):
        with pytest.raises(SpreadsheetWriteError):
            excel_store.append(record_factory(passport="P1"))


@pytest.mark.parametrize(
    "exc, expected",
    [
        (PermissionError(13, "Permission denied"), True),
        (OSError(16, "Device or resource busy"), True),
        (OSError(2, "No such file"), False),
        (ValueError("resource busy"), True),
    ],
)
def test_is_lock_error(exc, expected):
    assert is_lock_error(exc) is expected


def test_normalize_legacy_rows(excel_store):
    legacy_headers = ["NO", "Passport No.", "PAN Number"]
    wb = Workbook()
    ws = wb.active
    ws.append(legacy_headers)
    ws.append([1, "A1234567", "ABCDE1234F"])
    ws.append([2, "B7654321", ""])
    excel_store.path.parent.mkdir(parents=True)
    wb.save(excel_store.path)

    assert excel_store.normalize_legacy_rows() == 2

    rows = read_sheet(excel_store.path)
    assert rows[0] == HEADERS
    assert rows[1][HEADERS.index("Passport No.")] == "A1234567"
    assert rows[1][HEADERS.index("PAN Number")] == "ABCDE1234F"
    assert rows[2][HEADERS.index("Passport No.")] == "B7654321"
    assert [r[0] for r in rows[1:]] == [1, 2]


def test_build_export_numbers_records(record_factory):
    content = ExcelRecordStore.build_export([record_factory(passport="P1"), record_factory(passport="P2")])
    ws = load_workbook(io.BytesIO(content)).worksheets[0]
    rows = [list(r) for r in ws.iter_rows(values_only=True)]
    assert rows[0] == HEADERS
    assert [r[0] for r in rows[1:]] == [1, 2]
    assert rows[2][HEADERS.index("Passport No.")] == "P2"


def test_read_bytes_initialises_file(excel_store):
    content = excel_store.read_bytes()
    ws = load_workbook(io.BytesIO(content)).worksheets[0]
    assert [c.value for c in ws[1]] == HEADERS


def test_concurrent_appends_get_distinct_sequences(excel_store, record_factory):
    sequences = []
    errors = []

    def worker(i):
        try:
            sequences.append(excel_store.append(record_factory(passport=f"T{i}")))
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert sorted(sequences) == list(range(1, 11))
    rows = read_sheet(excel_store.path)[1:]
    assert sorted(r[0] for r in rows) == list(range(1, 11))
    assert sorted(r[HEADERS.index("Passport No.")] for r in rows) == sorted(f"T{i}" for i in range(10))
