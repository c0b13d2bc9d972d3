"""
Document Schemas

Pydantic models for one applicant's KYC record. Each section is a fixed-field
model; the wire format uses camelCase names (passportNumber, ff6E) while the
Python attributes are snake_case.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Section(BaseModel):
    """Base for all record sections."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def has_data(self) -> bool:
        """True when any string field carries a non-blank value."""
        for value in self.model_dump().values():
            if isinstance(value, str) and value.strip():
                return True
        return False


class PassportFront(Section):
    passport_number: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    nationality: Optional[str] = None
    sex: Optional[str] = None
    date_of_birth: Optional[str] = None
    place_of_birth: Optional[str] = None
    place_of_issue: Optional[str] = None
    marital_status: Optional[str] = None
    date_of_issue: Optional[str] = None
    date_of_expiry: Optional[str] = None
    image_url: Optional[str] = None


class PassportBack(Section):
    father_name: Optional[str] = None
    mother_name: Optional[str] = None
    spouse_name: Optional[str] = None
    address: Optional[str] = None
    email: Optional[str] = None
    mobile_number: Optional[str] = None
    # Manual-only: reference and frequent-flyer numbers
    ref: Optional[str] = None
    ff_6e: Optional[str] = Field(None, alias="ff6E")
    ff_ek: Optional[str] = Field(None, alias="ffEK")
    ff_ey: Optional[str] = Field(None, alias="ffEY")
    ff_sq: Optional[str] = Field(None, alias="ffSQ")
    ff_ai: Optional[str] = Field(None, alias="ffAI")
    ff_qr: Optional[str] = Field(None, alias="ffQR")
    image_url: Optional[str] = None


class Aadhaar(Section):
    aadhaar_number: Optional[str] = None
    name: Optional[str] = None
    date_of_birth: Optional[str] = None
    gender: Optional[str] = None
    address: Optional[str] = None
    image_url: Optional[str] = None


class Pan(Section):
    pan_number: Optional[str] = None
    name: Optional[str] = None
    father_name: Optional[str] = None
    date_of_birth: Optional[str] = None
    image_url: Optional[str] = None


class Photo(Section):
    image_url: Optional[str] = None
    public_id: Optional[str] = None


class Payment(Section):
    payment_done: bool = False
    amount: float = 0
    payment_id: Optional[str] = None
    transaction_reference: Optional[str] = None
    bypass_password_used: bool = False
    promo_code_used: bool = False
    promo_code: Optional[str] = None
    # Checked by the payment gate, never stored
    bypass_password: Optional[str] = Field(None, exclude=True)


DOCUMENT_SECTIONS = ("passport_front", "passport_back", "aadhar", "pan", "photo")


class DocumentRecord(BaseModel):
    """Full set of sections for one applicant plus payment metadata."""
    model_config = ConfigDict(extra="ignore")

    passport_front: Optional[PassportFront] = None
    passport_back: Optional[PassportBack] = None
    aadhar: Optional[Aadhaar] = None
    pan: Optional[Pan] = None
    photo: Optional[Photo] = None
    payment: Optional[Payment] = None

    def has_document_data(self) -> bool:
        for name in DOCUMENT_SECTIONS:
            section = getattr(self, name)
            if section is not None and section.has_data():
                return True
        return False

    def unique_numbers(self) -> Dict[str, Optional[str]]:
        """Trimmed passport/aadhaar/pan numbers; blank values become None."""
        def clean(value: Optional[str]) -> Optional[str]:
            value = (value or "").strip()
            return value or None

        return {
            "passport_number": clean(self.passport_front.passport_number if self.passport_front else None),
            "aadhaar_number": clean(self.aadhar.aadhaar_number if self.aadhar else None),
            "pan_number": clean(self.pan.pan_number if self.pan else None),
        }

    def to_storage(self) -> Dict[str, Any]:
        """Section dicts in wire (camelCase) form, empty sections dropped."""
        return self.model_dump(by_alias=True, exclude_none=True)


class SubmissionRequest(DocumentRecord):
    """Submitted record; a sequence means "update the mirrored row"."""
    sequence: Optional[int] = Field(None, ge=1)

    def record(self) -> DocumentRecord:
        return DocumentRecord(**{name: getattr(self, name) for name in DocumentRecord.model_fields})


class StoredRecord(BaseModel):
    id: int
    record: DocumentRecord
    created_at: Optional[datetime] = None


class DuplicateCheckResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    has_duplicate: bool = False
    duplicate_field: Optional[str] = None
    duplicate_value: Optional[str] = None
    source: Optional[str] = None


class SubmissionResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    ok: bool
    id: Optional[int] = None
    file_sequence: Optional[int] = None
    sheet_sequence: Optional[int] = None
    error: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)


class SearchResult(BaseModel):
    sequence: int
    values: List[Any]
    document: Dict[str, Any]
