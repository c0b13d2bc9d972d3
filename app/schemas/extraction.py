"""
Extraction Schemas

Pydantic models for the classify and extract endpoints.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ClassifyRequest(_CamelModel):
    """Classify an already uploaded image or PDF."""
    image_url: Optional[str] = None
    public_id: Optional[str] = None
    is_pdf: bool = False
    # Document type the caller is looking for; picks the best PDF page
    wanted: Optional[str] = None


class PageClassification(_CamelModel):
    page: Optional[int] = None
    type: str
    confidence: float


class ClassifyResponse(_CamelModel):
    ok: bool = True
    type: str = Field(..., description="passport_front, passport_back, aadhar, pan or unknown")
    confidence: float = Field(..., ge=0.0, le=1.0)
    page: Optional[int] = None
    pages: List[PageClassification] = Field(default_factory=list)


class ExtractRequest(_CamelModel):
    doc_type: str
    image_url: Optional[str] = None
    public_id: Optional[str] = None
    is_pdf: bool = False
    page: Optional[int] = None


class ExtractionResponse(_CamelModel):
    ok: bool = True
    doc_type: str
    data: Dict[str, Any] = Field(default_factory=dict)
