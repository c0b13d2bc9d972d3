"""
LLM Client Factory

Builds the OpenAI client used for document classification and field
extraction. Only OpenAI vision models are supported.
"""

from typing import Optional

from openai import OpenAI

from app.core.config import settings
from app.core.errors import ServerMisconfigured


def get_vision_client(api_key: Optional[str] = None) -> OpenAI:
    """
    Get an OpenAI client for vision calls.

    Raises ServerMisconfigured when no API key is configured.
    """
    api_key = api_key or settings.OPENAI_API_KEY
    if not api_key:
        raise ServerMisconfigured("OPENAI_API_KEY is not set. Add it to your environment.")
    return OpenAI(api_key=api_key)


def get_model_name() -> str:
    return settings.VISION_MODEL
