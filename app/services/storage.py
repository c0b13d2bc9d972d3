"""
Upload Storage

Stores uploaded document images and PDFs on local disk under UPLOAD_DIR.
Files are served back by the StaticFiles mount at /uploads.
"""

import logging
import os
import uuid
from pathlib import Path
from typing import Optional

from app.core.config import settings
from app.core.errors import NotFound, ValidationError
from app.schemas.upload import StoredUpload

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = ("image/", "application/pdf")


def _safe_name(filename: str) -> str:
    name = os.path.basename(filename or "").strip().replace(" ", "_")
    return name or "upload"


class LocalUploadStorage:
    def __init__(self, root: Optional[str] = None, base_url: Optional[str] = None):
        self.root = Path(root or settings.UPLOAD_DIR).resolve()
        self.base_url = (base_url or settings.UPLOAD_BASE_URL).rstrip("/")

    def path_for(self, public_id: str) -> Path:
        """Resolve `public_id` to a file inside the upload root."""
        if not public_id:
            raise ValidationError("Missing publicId")
        path = (self.root / public_id).resolve()
        if path != self.root and self.root not in path.parents:
            raise ValidationError("Invalid publicId")
        return path

    def url_for(self, public_id: str) -> str:
        return f"{self.base_url}/{public_id}"

    def store(
        self,
        filename: str,
        content: bytes,
        content_type: Optional[str] = None,
        folder: str = "id-ocr-docs",
    ) -> StoredUpload:
        if not content:
            raise ValidationError("Missing file")
        content_type = content_type or "application/octet-stream"
        is_pdf = content_type == "application/pdf" or filename.lower().endswith(".pdf")
        if not is_pdf and not content_type.startswith(ALLOWED_CONTENT_TYPES):
            raise ValidationError(f"Unsupported file type: {content_type}")

        folder = _safe_name(folder)
        public_id = f"{folder}/{uuid.uuid4().hex}_{_safe_name(filename)}"
        path = self.path_for(public_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as buffer:
            buffer.write(content)

        url = self.url_for(public_id)
        logger.info("Stored upload %s (%d bytes)", public_id, len(content))
        return StoredUpload(
            url=url,
            public_id=public_id,
            preview_url=url,
            is_pdf=is_pdf,
            path=str(path),
        )

    def delete(self, public_id: str) -> None:
        path = self.path_for(public_id)
        if not path.is_file():
            raise NotFound("File not found")
        path.unlink()
        logger.info("Deleted upload %s", public_id)
