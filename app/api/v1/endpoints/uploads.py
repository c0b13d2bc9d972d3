from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from app.api import deps
from app.schemas.upload import DeleteUploadRequest, UploadResult
from app.services.storage import LocalUploadStorage

router = APIRouter()


@router.post("", response_model=UploadResult, response_model_by_alias=True)
async def upload_file(
    file: UploadFile = File(...),
    folder: Optional[str] = Form(None),
    storage: LocalUploadStorage = Depends(deps.get_storage),
):
    """
    Store one document image or PDF and return where it can be fetched.
    """
    try:
        content = await file.read()
    finally:
        await file.close()

    stored = storage.store(
        filename=file.filename or "upload",
        content=content,
        content_type=file.content_type,
        folder=folder or "id-ocr-docs",
    )
    return UploadResult(
        url=stored.url,
        public_id=stored.public_id,
        preview_url=stored.preview_url,
        is_pdf=stored.is_pdf,
    )


@router.delete("")
def delete_file(
    body: DeleteUploadRequest,
    storage: LocalUploadStorage = Depends(deps.get_storage),
):
    storage.delete(body.public_id)
    return {"ok": True}
