"""
Extractor Agent Service

Uses an OpenAI vision model to classify uploaded KYC document images
(passport front/back, Aadhaar, PAN) and to extract their fields.

Model calls are retried with exponential backoff. Fields the model cannot
read are omitted rather than guessed, and manual-only fields are always
stripped from the extraction result.
"""

import base64
import json
import logging
import mimetypes
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx
import pymupdf  # PyMuPDF for PDF handling
from pydantic import BaseModel

from app.core.errors import UpstreamUnavailable, ValidationError
from app.services.llm_client import get_model_name, get_vision_client

logger = logging.getLogger(__name__)

DOC_TYPES = ("passport_front", "passport_back", "aadhar", "pan", "unknown")
PASSPORT_PAGES = ("passport_front", "passport_back")

EXTRACTION_FIELDS: Dict[str, List[str]] = {
    "passport_front": [
        "passportNumber", "givenNames", "surname", "firstName", "lastName", "nationality", "sex",
        "dateOfBirth", "placeOfBirth", "placeOfIssue", "maritalStatus", "dateOfIssue", "dateOfExpiry",
    ],
    "passport_back": ["fatherName", "motherName", "spouseName", "address", "email", "mobileNumber"],
    "aadhar": ["aadhaarNumber", "name", "dateOfBirth", "gender", "address"],
    "pan": ["panNumber", "name", "fatherName", "dateOfBirth"],
}

# Only ever entered by a person, never by extraction
MANUAL_ONLY_FIELDS: Dict[str, Sequence[str]] = {
    "passport_back": ("ref", "ff6E", "ffEK", "ffEY", "ffSQ", "ffAI", "ffQR"),
}

CLASSIFY_SYSTEM_PROMPT = (
    "You are a careful document classifier for Indian KYC documents. Classify the provided image strictly "
    "as one of: passport_front, passport_back, aadhar, pan, or unknown. Return a confidence between 0 and 1. "
    'Respond with a JSON object: {"type": "...", "confidence": 0.0}'
)

CLASSIFY_USER_PROMPT = (
    "Classify this document. Guidelines: passport_front = passport biodata page with photo and MRZ "
    "(two lines of < at bottom). passport_back = address/family details page of passport, typically without "
    "MRZ. aadhar = Aadhaar card with UIDAI branding and 12-digit number. pan = PAN card with 10-character "
    "alphanumeric (ABCDE1234F) and Income Tax Dept."
)

EXTRACT_SYSTEM_PROMPT = (
    "You are a precise OCR assistant. Extract only clean text for the requested fields. Use yyyy-mm-dd for "
    "dates when visible. Omit fields you cannot find. For Indian passports: 'surname' is the top-right "
    "Surname label and is the lastName; 'givenNames' is the Given Names line; set firstName to the first "
    "token of 'givenNames'. Respond with a single JSON object whose keys are the requested field names."
)


class Classification(BaseModel):
    type: str
    confidence: float
    page: Optional[int] = None
    page_image_url: Optional[str] = None


def with_retries(fn: Callable[[], Any], attempts: int = 3, base_delay: float = 0.6, sleep=time.sleep) -> Any:
    """Call `fn` up to `attempts` times, doubling the delay between tries."""
    last_error: Optional[Exception] = None
    for attempt in range(attempts):
        try:
            return fn()
        except Exception as e:
            last_error = e
            logger.warning("Vision call failed (attempt %d/%d): %s", attempt + 1, attempts, e)
            if attempt < attempts - 1:
                sleep(base_delay * (2 ** attempt))
    raise UpstreamUnavailable("Vision model call failed") from last_error


def pick_page(results: Sequence[Classification], wanted: str) -> Optional[Classification]:
    """
    Choose the page that best matches `wanted` among per-page classifications.

    Exact type at highest confidence first. For passports, when both pages
    were labelled as the opposite side, the one least confident in that label
    is taken; otherwise page 1 is the front and page 2 the back. Last resort
    is the most confident page of any type.
    """
    if not results:
        return None
    exact = [r for r in results if r.type == wanted]
    if exact:
        return max(exact, key=lambda r: r.confidence)

    if wanted in PASSPORT_PAGES:
        other = PASSPORT_PAGES[1] if wanted == PASSPORT_PAGES[0] else PASSPORT_PAGES[0]
        opposite = [r for r in results if r.type == other]
        if len(opposite) >= 2:
            return min(opposite, key=lambda r: r.confidence)
        page_number = 1 if wanted == "passport_front" else 2
        for r in results:
            if r.page == page_number:
                return r

    return max(results, key=lambda r: r.confidence)


def _parse_json(text: Optional[str]) -> Dict[str, Any]:
    result_text = (text or "").strip()
    # Clean up the response if it has markdown code blocks
    if result_text.startswith("```"):
        result_text = result_text.split("```")[1]
        if result_text.startswith("json"):
            result_text = result_text[4:]
    if result_text.endswith("```"):
        result_text = result_text[:-3]
    data = json.loads(result_text.strip() or "{}")
    return data if isinstance(data, dict) else {}


def clean_extraction(doc_type: str, raw: Dict[str, Any], image_url: Optional[str] = None) -> Dict[str, Any]:
    """Keep expected string fields, normalise passport names, drop manual-only fields."""
    allowed = set(EXTRACTION_FIELDS.get(doc_type, ()))
    data = {
        key: value.strip()
        for key, value in raw.items()
        if key in allowed and isinstance(value, str) and value.strip()
    }

    if doc_type == "passport_front":
        given = data.pop("givenNames", "") or data.get("firstName", "")
        surname = data.pop("surname", "") or data.get("lastName", "")
        if given:
            data["firstName"] = given
        if surname:
            data["lastName"] = surname

    for field in MANUAL_ONLY_FIELDS.get(doc_type, ()):
        data.pop(field, None)

    if image_url:
        data["imageUrl"] = image_url
    return data


class ExtractorAgent:
    """
    AI-powered classifier and field extractor for KYC document images.
    """

    def __init__(self, client=None, http_client: Optional[httpx.Client] = None, sleep=time.sleep):
        self._client = client
        self._http = http_client
        self._sleep = sleep

    @property
    def client(self):
        if self._client is None:
            self._client = get_vision_client()
        return self._client

    @property
    def model(self) -> str:
        return get_model_name()

    def _encode_bytes(self, content: bytes, content_type: str = "image/png") -> str:
        return f"data:{content_type};base64,{base64.standard_b64encode(content).decode('utf-8')}"

    def file_data_url(self, path: str) -> str:
        """Inline a locally stored image as a data URL."""
        content_type = mimetypes.guess_type(path)[0] or "image/png"
        with open(path, "rb") as f:
            return self._encode_bytes(f.read(), content_type)

    def pdf_page_images(self, pdf_path: str, pages: Sequence[int] = (1, 2)) -> Dict[int, str]:
        """Render the requested 1-based pages of a PDF to PNG data URLs."""
        images: Dict[int, str] = {}
        doc = pymupdf.open(pdf_path)
        try:
            for page_number in pages:
                if page_number < 1 or page_number > len(doc):
                    continue
                pix = doc[page_number - 1].get_pixmap(matrix=pymupdf.Matrix(2, 2))
                images[page_number] = self._encode_bytes(pix.tobytes("png"))
        finally:
            doc.close()
        return images

    def ensure_url_ready(self, url: str, attempts: int = 3, base_delay: float = 0.4) -> bool:
        """Wait for a freshly uploaded remote image to become reachable."""
        if not url.lower().startswith(("http://", "https://")):
            return True
        http = self._http or httpx.Client(timeout=5.0)
        try:
            for attempt in range(attempts):
                try:
                    if http.head(url).is_success:
                        return True
                except httpx.HTTPError:
                    pass
                self._sleep(base_delay * (2 ** attempt))
            return False
        finally:
            if self._http is None:
                http.close()

    def _vision_json(self, system_prompt: str, text: str, image_url: str) -> Dict[str, Any]:
        client = self.client

        def call():
            response = client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": text},
                            {"type": "image_url", "image_url": {"url": image_url, "detail": "high"}},
                        ],
                    },
                ],
                response_format={"type": "json_object"},
                temperature=0,
                max_tokens=1024,
            )
            return _parse_json(response.choices[0].message.content)

        return with_retries(call, sleep=self._sleep)

    def classify(self, image_url: str) -> Classification:
        """Classify one image as a KYC document type."""
        if not image_url:
            raise ValidationError("Provide imageUrl, publicId(+isPdf), or image file")
        self.ensure_url_ready(image_url)
        result = self._vision_json(CLASSIFY_SYSTEM_PROMPT, CLASSIFY_USER_PROMPT, image_url)

        doc_type = str(result.get("type", "unknown")).strip().lower()
        if doc_type not in DOC_TYPES:
            doc_type = "unknown"
        try:
            confidence = float(result.get("confidence", 0.0))
        except (TypeError, ValueError):
            confidence = 0.0
        return Classification(type=doc_type, confidence=min(1.0, max(0.0, confidence)))

    def classify_pages(self, pdf_path: str, pages: Sequence[int] = (1, 2)) -> List[Classification]:
        """Classify each page; pages that fail are dropped."""
        results: List[Classification] = []
        for page_number, data_url in self.pdf_page_images(pdf_path, pages).items():
            try:
                classification = self.classify(data_url)
            except UpstreamUnavailable as e:
                logger.warning("Classification of page %d of %s failed: %s", page_number, pdf_path, e)
                continue
            classification.page = page_number
            results.append(classification)
        if not results:
            raise UpstreamUnavailable("Classification failed")
        return results

    def extract(self, doc_type: str, image_url: str) -> Dict[str, Any]:
        """Extract the fields expected for `doc_type` from one image."""
        if doc_type not in EXTRACTION_FIELDS:
            raise ValidationError(f"Unsupported document type: {doc_type}")
        if not image_url:
            raise ValidationError("Missing file or imageUrl")
        self.ensure_url_ready(image_url)

        fields = ", ".join(EXTRACTION_FIELDS[doc_type])
        text = f"Extract fields for {doc_type.replace('_', ' ')} from this image. Fields: {fields}."
        try:
            raw = self._vision_json(EXTRACT_SYSTEM_PROMPT, text, image_url)
        except UpstreamUnavailable as e:
            if isinstance(e.__cause__, json.JSONDecodeError):
                logger.warning("Extraction for %s returned unparseable output, using no fields", doc_type)
                raw = {}
            else:
                raise
        return clean_extraction(doc_type, raw, image_url)


# Singleton instance
extractor_agent = ExtractorAgent()
