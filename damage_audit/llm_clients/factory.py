from __future__ import annotations
from typing import Optional

from ..config import AuditSettings
from .base import LLMVisionClient


def create_vision_client(settings: Optional[AuditSettings] = None) -> LLMVisionClient:
    settings = settings or AuditSettings.from_env()
    if settings.provider == "openai":
        from .openai_adapter import OpenAIAdapter
        return OpenAIAdapter(model_name=settings.openai_model)
    from .gemini_adapter import GeminiAdapter
    return GeminiAdapter(model_name=settings.gemini_model)
