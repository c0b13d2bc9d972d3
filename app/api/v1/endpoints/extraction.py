"""
Extraction API Endpoints

Classify an uploaded document and extract its fields with the vision model.
Documents are referenced by an image URL or by the publicId returned from
the upload endpoint.
"""

from fastapi import APIRouter, Depends

from app.api import deps
from app.core.errors import ValidationError
from app.schemas.extraction import (
    ClassifyRequest,
    ClassifyResponse,
    ExtractionResponse,
    ExtractRequest,
    PageClassification,
)
from app.services.extractor import extractor_agent, pick_page
from app.services.storage import LocalUploadStorage

router = APIRouter()


def _stored_image(storage: LocalUploadStorage, public_id: str) -> str:
    path = storage.path_for(public_id)
    if not path.is_file():
        raise ValidationError("Unknown publicId")
    return str(path)


@router.post("/classify", response_model=ClassifyResponse, response_model_by_alias=True)
def classify_document(
    request: ClassifyRequest,
    storage: LocalUploadStorage = Depends(deps.get_storage),
):
    """
    Classify a document image, or the first two pages of an uploaded PDF.

    For PDFs the page returned is the one best matching `wanted` (when given)
    or the most confident page.
    """
    if request.public_id and request.is_pdf:
        path = _stored_image(storage, request.public_id)
        results = extractor_agent.classify_pages(path)
        best = pick_page(results, request.wanted or "")
        return ClassifyResponse(
            type=best.type,
            confidence=best.confidence,
            page=best.page,
            pages=[PageClassification(page=r.page, type=r.type, confidence=r.confidence) for r in results],
        )

    if request.public_id:
        image_url = extractor_agent.file_data_url(_stored_image(storage, request.public_id))
    elif request.image_url:
        image_url = request.image_url
    else:
        raise ValidationError("Provide imageUrl, publicId(+isPdf), or image file")

    result = extractor_agent.classify(image_url)
    return ClassifyResponse(type=result.type, confidence=result.confidence)


@router.post("/extract", response_model=ExtractionResponse, response_model_by_alias=True)
def extract_document(
    request: ExtractRequest,
    storage: LocalUploadStorage = Depends(deps.get_storage),
):
    """Extract the fields for `docType` from one image or one PDF page."""
    if request.public_id:
        path = _stored_image(storage, request.public_id)
        if request.is_pdf:
            page = request.page or 1
            images = extractor_agent.pdf_page_images(path, pages=(page,))
            if page not in images:
                raise ValidationError(f"PDF has no page {page}")
            image_url = images[page]
        else:
            image_url = extractor_agent.file_data_url(path)
        echo_url = storage.url_for(request.public_id)
    elif request.image_url:
        image_url = echo_url = request.image_url
    else:
        raise ValidationError("Missing file or imageUrl")

    data = extractor_agent.extract(request.doc_type, image_url)
    # Report the fetchable URL rather than an inline data URL
    data["imageUrl"] = echo_url
    return ExtractionResponse(doc_type=request.doc_type, data=data)
