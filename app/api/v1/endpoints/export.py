import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, Response

from app.api import deps
from app.services.document_store import DocumentStore
from app.services.excel_store import ExcelRecordStore

logger = logging.getLogger(__name__)

router = APIRouter()

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
EXPORT_FILENAME = "document-records.xlsx"


def _xlsx_response(content: bytes) -> Response:
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{EXPORT_FILENAME}"'},
    )


@router.get("")
def export_records(
    store: DocumentStore = Depends(deps.get_store),
    file_store: ExcelRecordStore = Depends(deps.get_file_store),
):
    """
    Download all records as a workbook, oldest first.

    Built from the database; the local mirror file is served when the
    database cannot be read.
    """
    try:
        records = [stored.record for stored in store.list_all(ascending=True)]
        return _xlsx_response(ExcelRecordStore.build_export(records))
    except Exception as e:
        logger.warning("Database export failed, falling back to the mirror file: %s", e)

    try:
        return _xlsx_response(file_store.read_bytes())
    except Exception as e:
        logger.error("Mirror file export failed: %s", e)
        return JSONResponse(status_code=500, content={"ok": False, "error": "Export failed"})
