from typing import Optional
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class StoredUpload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    url: str
    public_id: str
    preview_url: Optional[str] = None
    is_pdf: bool = False
    path: Optional[str] = None


class UploadResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    ok: bool = True
    url: str
    public_id: str
    preview_url: Optional[str] = None
    is_pdf: bool = False


class DeleteUploadRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    public_id: str
