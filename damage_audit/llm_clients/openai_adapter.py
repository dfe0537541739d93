from __future__ import annotations
import base64
from typing import List

try:
    from openai import OpenAI  # type: ignore
except Exception:  # pragma: no cover
    OpenAI = None  # type: ignore

from .base import ImageInput


def _data_url(img: ImageInput) -> str:
    return f"data:{img.mime_type};base64," + base64.b64encode(img.data).decode()


class OpenAIAdapter:
    def __init__(self, model_name: str = "gpt-4o", max_tokens: int = 6144):
        if OpenAI is None:
            raise RuntimeError("openai package not available")
        self.client = OpenAI()
        self.model_name = model_name
        self.max_tokens = max_tokens

    def vision_json(
        self,
        prompt: str,
        images: List[ImageInput],
        temperature: float = 0.0,
    ) -> str:
        user_parts: list[dict] = [{"type": "text", "text": "Please analyze all images and reply with JSON only."}]
        for img in images:
            user_parts.append({"type": "image_url", "image_url": {"url": _data_url(img)}})
        resp = self.client.chat.completions.create(
            model=self.model_name,
            messages=[
                {"role": "system", "content": prompt},
                {"role": "user", "content": user_parts},
            ],
            max_tokens=self.max_tokens,
            temperature=temperature,
            response_format={"type": "json_object"},
        )
        return (resp.choices[0].message.content or "").strip()
