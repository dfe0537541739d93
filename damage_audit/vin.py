"""Read the vehicle identification number off a photo of the VIN plate."""
from __future__ import annotations
import logging
import re
from typing import Optional

from .errors import ProviderError
from .llm_clients.base import ImageInput, LLMVisionClient
from .utils.json_parser import try_parse_json

logger = logging.getLogger(__name__)

VIN_PROMPT = """Extract the 17-character vehicle identification number (VIN) visible in the photo.
Reply with JSON only: {"vin": "<17 characters>"} or {"vin": null} if no VIN is readable."""

# I, O and Q never appear in a VIN
VIN_RE = re.compile(r"\b[A-HJ-NPR-Z0-9]{17}\b")


def normalize_vin(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    upper = str(text).upper()
    m = VIN_RE.search(upper) or VIN_RE.search(re.sub(r"[\s-]", "", upper))
    return m.group(0) if m else None


def extract_vin(client: LLMVisionClient, image: ImageInput) -> Optional[str]:
    """One vision call; returns the VIN or ``None`` when none could be read."""
    try:
        text = client.vision_json(VIN_PROMPT, [image])
    except Exception as exc:
        raise ProviderError(f"VIN extraction failed: {exc}") from exc
    parsed = try_parse_json(text)
    candidate = parsed.get("vin") if isinstance(parsed, dict) else text
    vin = normalize_vin(candidate)
    if vin is None:
        logger.warning("no VIN found in %s", image.name or "image")
    return vin
