from __future__ import annotations
from dataclasses import dataclass
from typing import List, Protocol


@dataclass(frozen=True)
class ImageInput:
    """One image as sent upstream: encoded bytes plus MIME type."""

    data: bytes
    mime_type: str = "image/jpeg"
    name: str = ""


class LLMVisionClient(Protocol):
    """Provider-agnostic interface for vision generation.

    Implementations make exactly one upstream call per invocation and let SDK
    errors propagate; retry and backoff belong to the inference gateway.
    """

    model_name: str

    def vision_json(
        self,
        prompt: str,
        images: List[ImageInput],
        temperature: float = 0.0,
    ) -> str:
        """Generate a JSON (as string) response given a prompt and images."""
        ...
