from __future__ import annotations
import os
from typing import List, Optional

try:
    import google.generativeai as genai  # type: ignore
except Exception:  # pragma: no cover
    genai = None  # type: ignore

from .base import ImageInput


class GeminiAdapter:
    def __init__(self, model_name: str = "gemini-2.5-flash", api_key: Optional[str] = None):
        if genai is None:
            raise RuntimeError("google-generativeai package not available")
        api_key = api_key or os.getenv("GOOGLE_API_KEY") or os.getenv("GEMINI_API_KEY")
        if not api_key:
            raise RuntimeError("GOOGLE_API_KEY/GEMINI_API_KEY is required for GeminiAdapter")
        genai.configure(api_key=api_key)
        self.model_name = model_name
        self._vision_model = genai.GenerativeModel(self.model_name)
        self.response_mime_type = os.getenv("GEMINI_RESPONSE_MIME", "application/json")

    def vision_json(
        self,
        prompt: str,
        images: List[ImageInput],
        temperature: float = 0.0,
    ) -> str:
        inputs: List = [prompt]
        inputs.extend({"mime_type": img.mime_type, "data": img.data} for img in images)
        gen_cfg = {
            "temperature": temperature,
            "response_mime_type": self.response_mime_type,
        }
        resp = self._vision_model.generate_content(inputs, generation_config=gen_cfg)
        # For SDK v0.7+, text is at resp.text
        return (getattr(resp, "text", None) or "").strip()
