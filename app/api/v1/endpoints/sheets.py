"""
Sheets API Endpoints

Password-protected read access to the shared Google Sheet: free-text
search, duplicate lookup and a read-only status check.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from app.api import deps
from app.core.errors import ValidationError
from app.schemas.document import Aadhaar, DocumentRecord, Pan, PassportFront, SearchResult
from app.services.row_schema import document_from_row
from app.services.sheets_client import SheetsRecordStore
from app.services.submission import SubmissionOrchestrator

router = APIRouter(dependencies=[Depends(deps.require_app_password)])


@router.get("/search")
def search_sheet(
    q: Optional[str] = None,
    sheet_store: SheetsRecordStore = Depends(deps.get_sheet_store),
) -> Dict[str, Any]:
    """Rows containing `q` in any cell, each mapped back to a record."""
    query = (q or "").strip()
    if not query:
        raise ValidationError("Missing q")

    found = sheet_store.find_by_query(query)
    results = [
        SearchResult(
            sequence=match.sequence,
            values=match.values,
            document=document_from_row(match.values, found.headers).model_dump(by_alias=True, exclude_none=True),
        ).model_dump()
        for match in found.matches
    ]
    return {"ok": True, "results": results}


@router.get("/duplicate-check")
def duplicate_check(
    passport_number: Optional[str] = Query(None, alias="passportNumber"),
    aadhaar_number: Optional[str] = Query(None, alias="aadhaarNumber"),
    pan_number: Optional[str] = Query(None, alias="panNumber"),
    orchestrator: SubmissionOrchestrator = Depends(deps.get_orchestrator),
) -> Dict[str, Any]:
    """Look a set of document numbers up in every store."""
    record = DocumentRecord(
        passport_front=PassportFront(passport_number=passport_number),
        aadhar=Aadhaar(aadhaar_number=aadhaar_number),
        pan=Pan(pan_number=pan_number),
    )
    if not any(record.unique_numbers().values()):
        raise ValidationError("Provide passportNumber, aadhaarNumber or panNumber")
    result = orchestrator.find_duplicate(record)
    return {"ok": True, **result.model_dump(by_alias=True)}


@router.get("/debug")
def sheet_debug(sheet_store: SheetsRecordStore = Depends(deps.get_sheet_store)) -> Dict[str, Any]:
    return {"ok": True, **sheet_store.debug_status()}
