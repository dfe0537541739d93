from __future__ import annotations
import json
import os
import re
from typing import Any, List, Optional

from pydantic import ValidationError

from ..errors import SchemaParseError
from ..schema import ProviderImageOutput

_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)
_BOOL_NONE_FIXES = [
    (re.compile(r"(?<![\w\-\'])\bTrue\b"), "true"),
    (re.compile(r"(?<![\w\-\'])\bFalse\b"), "false"),
    (re.compile(r"(?<![\w\-\'])\bNone\b"), "null"),
]

_TRAILING_COMMA_RE = re.compile(r",\s*(\]|\})")

# Maximum repair attempts can be tuned via env
MAX_REPAIR_PASSES = max(0, int(os.getenv("JSON_REPAIR_PASSES", "2")))


def extract_json_text(text: str) -> str:
    """Strip Markdown code fences if present and trim whitespace."""
    if not text:
        return ""
    return _CODE_FENCE_RE.sub("", text.strip()).strip()


def _braces_slice(s: str) -> Optional[str]:
    l = s.find("{")
    r = s.rfind("}")
    if l != -1 and r != -1 and r > l:
        return s[l : r + 1]
    return None


def _apply_simple_repairs(s: str) -> str:
    out = s
    for pat, repl in _BOOL_NONE_FIXES:
        out = pat.sub(repl, out)
    out = _TRAILING_COMMA_RE.sub(r"\1", out)
    return out


def try_parse_json(text: str) -> Optional[Any]:
    """Attempt to parse possibly-imperfect JSON with incremental repairs.

    Returns parsed object or None if it cannot be parsed.
    """
    if not text:
        return None
    s = extract_json_text(text)

    try:
        return json.loads(s)
    except json.JSONDecodeError:
        pass

    sliced = _braces_slice(s)
    if sliced:
        try:
            return json.loads(sliced)
        except json.JSONDecodeError:
            s = sliced

    cur = s
    for _ in range(MAX_REPAIR_PASSES):
        repaired = _apply_simple_repairs(cur)
        if repaired == cur:
            break
        try:
            return json.loads(repaired)
        except json.JSONDecodeError:
            cur = repaired

    return None


def split_batch_payload(parsed: Any, batch_size: int) -> List[Any]:
    """Per-image items of a batch response, in submission order.

    Accepts ``{"results": [...]}``, a bare list, or (for a single image) the
    image object itself. Missing trailing items come back as ``None``.
    """
    if isinstance(parsed, dict) and isinstance(parsed.get("results"), list):
        items = list(parsed["results"])
    elif isinstance(parsed, list):
        items = list(parsed)
    elif isinstance(parsed, dict) and batch_size == 1:
        items = [parsed]
    else:
        raise SchemaParseError("batch response is neither a results list nor an image object")
    items = items[:batch_size]
    items.extend([None] * (batch_size - len(items)))
    return items


def validate_image_output(data: Any, image_index: Optional[int] = None) -> ProviderImageOutput:
    """Validate one image's payload; any mismatch is a :class:`SchemaParseError`."""
    if not isinstance(data, dict):
        raise SchemaParseError(f"expected an object, got {type(data).__name__}", image_index)
    try:
        return ProviderImageOutput.model_validate(data)
    except ValidationError as exc:
        raise SchemaParseError(f"schema validation failed: {exc.error_count()} error(s): {exc}", image_index) from exc
