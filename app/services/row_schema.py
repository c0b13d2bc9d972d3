"""
Row Schema

Canonical column layout shared by every spreadsheet mirror, and the mapping
between a nested DocumentRecord and a flat positional row.

COLUMNS is the single source of truth: HEADERS is derived from it, and an
import-time check makes sure every section field is either mapped to a column
or explicitly listed in UNMAPPED_FIELDS.

The projection is lossy: fields without a dedicated column (PAN father name
and date of birth, Aadhaar gender and address, passport marital status,
photo public id) come back as "" when a record is rebuilt from a row.
"""

import re
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

from app.schemas.document import (
    DOCUMENT_SECTIONS,
    Aadhaar,
    DocumentRecord,
    DuplicateCheckResult,
    Pan,
    PassportBack,
    PassportFront,
    Payment,
    Photo,
)


class Column(NamedTuple):
    title: str
    section: Optional[str] = None
    field: Optional[str] = None
    # Extra (section, field) targets filled from this column when reading a row
    also: Tuple[Tuple[str, str], ...] = ()


SEQUENCE_COLUMN = "NO"
PAYMENT_STATUS_COLUMN = "Payment Status"

COLUMNS: Tuple[Column, ...] = (
    Column(SEQUENCE_COLUMN),
    Column("PAN Number", "pan", "pan_number"),
    Column("Aadhaar Number", "aadhar", "aadhaar_number"),
    Column("Aadhaar Name", "aadhar", "name"),
    Column("Sex", "passport_front", "sex"),
    Column("Full Name (Passport)", "passport_front", "first_name"),
    Column("Last Name", "passport_front", "last_name"),
    Column("Passport No.", "passport_front", "passport_number"),
    Column("Nationality", "passport_front", "nationality"),
    Column("DOB", "passport_front", "date_of_birth", also=(("aadhar", "date_of_birth"),)),
    Column("D.O.Issue", "passport_front", "date_of_issue"),
    Column("D.O.Expire", "passport_front", "date_of_expiry"),
    Column("Mobile Number", "passport_back", "mobile_number"),
    Column("Email", "passport_back", "email"),
    Column("REF", "passport_back", "ref"),
    Column("FF 6E", "passport_back", "ff_6e"),
    Column("FF EK", "passport_back", "ff_ek"),
    Column("FF EY", "passport_back", "ff_ey"),
    Column("FF SQ", "passport_back", "ff_sq"),
    Column("FF AI", "passport_back", "ff_ai"),
    Column("Father Name", "passport_back", "father_name"),
    Column("Mother Name", "passport_back", "mother_name"),
    Column("Spouse Name", "passport_back", "spouse_name"),
    Column("Place Of Birth", "passport_front", "place_of_birth"),
    Column("Place Of Issue", "passport_front", "place_of_issue"),
    Column("PAN Name", "pan", "name"),
    Column("Passport Address", "passport_back", "address"),
    Column("Passport Front Image URL", "passport_front", "image_url"),
    Column("Passport Back Image URL", "passport_back", "image_url"),
    Column("Aadhaar Image URL", "aadhar", "image_url"),
    Column("PAN Image URL", "pan", "image_url"),
    Column("Traveler Photo URL", "photo", "image_url"),
    # Appended after the legacy layout so existing column positions hold
    Column("FF QR", "passport_back", "ff_qr"),
    Column(PAYMENT_STATUS_COLUMN),
)

HEADERS: List[str] = [column.title for column in COLUMNS]

SECTION_MODELS = {
    "passport_front": PassportFront,
    "passport_back": PassportBack,
    "aadhar": Aadhaar,
    "pan": Pan,
    "photo": Photo,
}

UNMAPPED_FIELDS = frozenset({
    ("passport_front", "marital_status"),
    ("aadhar", "gender"),
    ("aadhar", "address"),
    ("pan", "father_name"),
    ("pan", "date_of_birth"),
    ("photo", "public_id"),
})

# Unique document numbers, in duplicate-check priority order:
# (label reported to clients, DocumentRecord.unique_numbers() key, column index)
DUPLICATE_COLUMNS: Tuple[Tuple[str, str, int], ...] = (
    ("Passport Number", "passport_number", HEADERS.index("Passport No.")),
    ("Aadhaar Number", "aadhaar_number", HEADERS.index("Aadhaar Number")),
    ("PAN Number", "pan_number", HEADERS.index("PAN Number")),
)


def _check_columns() -> None:
    if len(set(HEADERS)) != len(HEADERS):
        raise RuntimeError("Duplicate column titles in row schema")
    mapped = set()
    for column in COLUMNS:
        if column.section:
            mapped.add((column.section, column.field))
            mapped.update(column.also)
    for name in DOCUMENT_SECTIONS:
        for field in SECTION_MODELS[name].model_fields:
            if (name, field) not in mapped and (name, field) not in UNMAPPED_FIELDS:
                raise RuntimeError(f"Field {name}.{field} has no column in the row schema")


_check_columns()


def canonical_header_key(value: Any) -> str:
    """Header title normalised for matching: trimmed, single-spaced, lower case."""
    if value is None:
        return ""
    return re.sub(r"\s+", " ", str(value).strip()).lower()


_CANONICAL_INDEX: Dict[str, int] = {canonical_header_key(title): idx for idx, title in enumerate(HEADERS)}


def _format_amount(amount: float) -> str:
    if float(amount).is_integer():
        return str(int(amount))
    return f"{amount:.2f}".rstrip("0").rstrip(".")


def payment_status_cell(payment: Optional[Payment]) -> str:
    """Human readable payment status for the Payment Status column."""
    if payment is None:
        return "No"
    if payment.bypass_password_used:
        return "Admin"
    if payment.promo_code_used and payment.payment_done:
        return "Promo Code"
    if payment.payment_done:
        if payment.amount and payment.amount > 0:
            return f"Yes / ₹{_format_amount(payment.amount)}"
        return "Yes"
    return "No"


def _cell_value(record: DocumentRecord, column: Column) -> str:
    section = getattr(record, column.section)
    if section is None:
        return ""
    value = getattr(section, column.field)
    return "" if value is None else str(value)


def row_from_document(record: DocumentRecord, sequence: int) -> List[Any]:
    """Flat row for `record` in HEADERS order."""
    row: List[Any] = []
    for column in COLUMNS:
        if column.title == SEQUENCE_COLUMN:
            row.append(sequence)
        elif column.title == PAYMENT_STATUS_COLUMN:
            row.append(payment_status_cell(record.payment))
        else:
            row.append(_cell_value(record, column))
    return row


def document_from_row(values: Sequence[Any], header_row: Optional[Sequence[Any]] = None) -> DocumentRecord:
    """
    Rebuild a DocumentRecord from a stored row.

    Columns are located by title using the header row actually read from
    storage, so rows written under an older column order still map correctly.
    Without a header row the canonical HEADERS positions are assumed. Payment
    is not reconstituted.
    """
    if header_row and any(canonical_header_key(h) for h in header_row):
        index: Dict[str, int] = {}
        for idx, title in enumerate(header_row):
            key = canonical_header_key(title)
            if key:
                index[key] = idx
    else:
        index = _CANONICAL_INDEX

    def lookup(title: str) -> str:
        idx = index.get(canonical_header_key(title))
        if idx is None or idx >= len(values):
            return ""
        value = values[idx]
        return "" if value is None else str(value)

    sections: Dict[str, Dict[str, str]] = {
        name: {field: "" for field in SECTION_MODELS[name].model_fields}
        for name in DOCUMENT_SECTIONS
    }
    for column in COLUMNS:
        if column.section is None:
            continue
        value = lookup(column.title)
        for section, field in ((column.section, column.field),) + column.also:
            sections[section][field] = value

    return DocumentRecord(**{name: SECTION_MODELS[name](**fields) for name, fields in sections.items()})


def find_duplicate_in_rows(record: DocumentRecord, rows: Iterable[Sequence[Any]]) -> DuplicateCheckResult:
    """
    Match a record's passport, aadhaar and PAN numbers against stored rows.

    Fields are checked in priority order across all rows: a passport collision
    anywhere wins over an aadhaar collision, which wins over PAN. Blank values
    never match.
    """
    numbers = record.unique_numbers()
    wanted = [(label, numbers[key], idx) for label, key, idx in DUPLICATE_COLUMNS if numbers[key]]
    if not wanted:
        return DuplicateCheckResult(has_duplicate=False)

    rows = list(rows)
    for label, value, idx in wanted:
        for row in rows:
            if idx >= len(row) or row[idx] is None:
                continue
            if str(row[idx]).strip() == value:
                return DuplicateCheckResult(has_duplicate=True, duplicate_field=label, duplicate_value=value)
    return DuplicateCheckResult(has_duplicate=False)


def normalize_rows(header_row: Sequence[Any], rows: Iterable[Sequence[Any]]) -> List[Tuple[int, List[Any]]]:
    """
    Re-serialise stored rows into the canonical HEADERS layout.

    Each non-empty row is read through the stored `header_row`, rebuilt as a
    record and written back in canonical order with its positional sequence.
    An existing Payment Status cell is carried over since payment is not
    reconstituted from rows. Returns (sequence, row) pairs; running it on
    already-canonical data yields identical rows.
    """
    status_idx = None
    for idx, title in enumerate(header_row or ()):
        if canonical_header_key(title) == canonical_header_key(PAYMENT_STATUS_COLUMN):
            status_idx = idx

    updates: List[Tuple[int, List[Any]]] = []
    for sequence, values in enumerate(rows, start=1):
        if not any(v is not None and str(v).strip() != "" for v in values):
            continue
        row = row_from_document(document_from_row(values, header_row), sequence)
        if status_idx is not None and status_idx < len(values) and values[status_idx] not in (None, ""):
            row[HEADERS.index(PAYMENT_STATUS_COLUMN)] = str(values[status_idx])
        updates.append((sequence, row))
    return updates
