"""
Submission API Endpoint

Validates a KYC record, rejects duplicates and persists it to the database
and the spreadsheet mirrors.
"""

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from app.api import deps
from app.schemas.document import SubmissionResponse
from app.services.submission import SubmissionOrchestrator

router = APIRouter()


@router.post("", response_model=SubmissionResponse, response_model_by_alias=True, response_model_exclude_none=True)
def submit_record(
    payload: Any = Body(None),
    orchestrator: SubmissionOrchestrator = Depends(deps.get_orchestrator),
):
    """
    Submit a record.

    Validation and duplicate errors propagate as 400 / 409. A failed database
    write still reaches the mirrors and is reported as a 500 "Save failed".
    """
    outcome = orchestrator.submit(payload)
    response = SubmissionResponse(
        ok=outcome.ok,
        id=outcome.id,
        file_sequence=outcome.file.sequence,
        sheet_sequence=outcome.sheet.sequence,
        error=outcome.error,
        warnings=outcome.partial_failures,
    )
    if not outcome.ok:
        body: Dict[str, Any] = response.model_dump(by_alias=True, exclude_none=True)
        return JSONResponse(status_code=500, content=body)
    return response
