from __future__ import annotations
import os
from dataclasses import dataclass, fields
from typing import Mapping, Optional

PROVIDERS = ("gemini", "openai")
IOU_MODES = ("bbox", "polygon")


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from None


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {raw!r}") from None


@dataclass(frozen=True)
class AuditSettings:
    """Tunables for one audit run. Defaults mirror the production values."""

    provider: str = "gemini"
    gemini_model: str = "gemini-2.5-flash"
    openai_model: str = "gpt-4o"

    # gateway / quota backoff
    batch_size: int = 4
    min_batch_size: int = 1
    quota_cooldown_s: float = 61.0
    quota_jitter_s: float = 2.0
    max_attempts: int = 3

    # post-processing
    verified_confidence: float = 0.9
    reject_below_confidence: float = 0.0
    uncalibrated_mm_per_unit: float = 2.0

    # benchmark
    benchmark_iou_threshold: float = 0.3
    iou_mode: str = "bbox"

    # consolidation
    labor_share: float = 0.40
    ontology_path: Optional[str] = None

    # image encoding
    image_max_px: int = 1600
    image_jpeg_quality: int = 80

    def __post_init__(self) -> None:
        if self.provider not in PROVIDERS:
            raise ValueError(f"unknown provider {self.provider!r}; expected one of {PROVIDERS}")
        if self.iou_mode not in IOU_MODES:
            raise ValueError(f"unknown iou mode {self.iou_mode!r}; expected one of {IOU_MODES}")
        if self.min_batch_size < 1:
            raise ValueError("min_batch_size must be >= 1")
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.quota_cooldown_s < 0 or self.quota_jitter_s < 0:
            raise ValueError("quota cooldown and jitter must be non-negative")
        if not 0.0 <= self.labor_share <= 1.0:
            raise ValueError("labor_share must be within [0, 1]")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "AuditSettings":
        env = os.environ if env is None else env
        provider = (env.get("MODEL_PROVIDER") or env.get("LLM_PROVIDER") or "gemini").strip().lower()
        if provider in ("google", "googleai", "google-ai"):
            provider = "gemini"
        return cls(
            provider=provider,
            gemini_model=env.get("GEMINI_VISION_MODEL", cls.gemini_model),
            openai_model=env.get("OPENAI_VISION_MODEL", env.get("OPENAI_MODEL", cls.openai_model)),
            batch_size=_env_int(env, "GATEWAY_BATCH_SIZE", cls.batch_size),
            min_batch_size=_env_int(env, "GATEWAY_MIN_BATCH_SIZE", cls.min_batch_size),
            quota_cooldown_s=_env_float(env, "QUOTA_COOLDOWN_S", cls.quota_cooldown_s),
            quota_jitter_s=_env_float(env, "QUOTA_JITTER_S", cls.quota_jitter_s),
            max_attempts=_env_int(env, "GATEWAY_MAX_ATTEMPTS", cls.max_attempts),
            verified_confidence=_env_float(env, "VERIFIED_CONFIDENCE", cls.verified_confidence),
            reject_below_confidence=_env_float(env, "REJECT_BELOW_CONFIDENCE", cls.reject_below_confidence),
            uncalibrated_mm_per_unit=_env_float(env, "UNCALIBRATED_MM_PER_UNIT", cls.uncalibrated_mm_per_unit),
            benchmark_iou_threshold=_env_float(env, "BENCHMARK_IOU_THRESHOLD", cls.benchmark_iou_threshold),
            iou_mode=(env.get("IOU_MODE") or cls.iou_mode).strip().lower(),
            labor_share=_env_float(env, "LABOR_SHARE", cls.labor_share),
            ontology_path=env.get("ONTOLOGY_PATH") or None,
            image_max_px=_env_int(env, "IMAGE_MAX_PX", cls.image_max_px),
            image_jpeg_quality=_env_int(env, "IMAGE_JPEG_QUALITY", cls.image_jpeg_quality),
        )

    def as_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}
