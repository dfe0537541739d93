from __future__ import annotations
import io
from pathlib import Path
from typing import Iterable, List

from PIL import Image

from ..llm_clients.base import ImageInput

IMAGE_SUFFIXES = (".jpg", ".jpeg", ".png", ".webp")


def read_image_bytes_resized(p: Path, max_px: int = 1600, quality: int = 80) -> bytes:
    """Re-encode as a JPEG no larger than ``max_px`` on its long side."""
    with Image.open(p) as src:
        img = src.convert("RGB")
    if max(img.size) > max_px:
        img.thumbnail((max_px, max_px))
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=quality, optimize=True)
    return buf.getvalue()


def load_image_input(p: Path, max_px: int = 1600, quality: int = 80) -> ImageInput:
    return ImageInput(data=read_image_bytes_resized(p, max_px, quality), mime_type="image/jpeg", name=p.name)


def list_images(images_dir: Path) -> List[Path]:
    return sorted(p for p in images_dir.iterdir() if p.suffix.lower() in IMAGE_SUFFIXES)


def load_image_inputs(paths: Iterable[Path], max_px: int = 1600, quality: int = 80) -> List[ImageInput]:
    return [load_image_input(p, max_px, quality) for p in paths]
