"""Inference gateway: the only component that talks to the external provider.

Calls are strictly sequential within a run. A quota-class failure halves the
batch size (down to the floor), waits out the cooldown and retries the same
starting offset with the smaller slice. Any other provider failure leaves
``submit_batch`` at once as :class:`ProviderError`, without retry. Either way a
batch that cannot be completed is given up on and the run moves past it.
"""
from __future__ import annotations
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional, Protocol, Sequence

from .config import AuditSettings
from .errors import AuditError, BatchExhausted, ProviderError, QuotaExceeded, RunCancelled, SchemaParseError
from .llm_clients.base import ImageInput, LLMVisionClient
from .postprocess import process_image_response
from .scheduler import BatchScheduler, QuotaObserver, cooperative_sleep, is_quota_error
from .schema import ImageAnalysis
from .utils.json_parser import split_batch_payload, try_parse_json, validate_image_output

logger = logging.getLogger(__name__)

DETECTION_PROMPT = """You are a vehicle damage auditor. You receive {n} photo(s) of the same vehicle.
For EACH photo, in the order given, report the vehicle outline and every visible damage.
All coordinates are [x, y] pairs on a 0-1000 grid relative to the photo.
Ignore damage on background objects, reflections or other vehicles.

Reply with JSON only:
{{
  "results": [{{
    "vehicle_hull": [[x, y], ...],
    "detectedIssues": [{{
      "part": "Precise part name (e.g. Left Quarter Panel)",
      "issueType": "Scratch" | "Dent" | "Paint Chip" | "Rust" | "Crack" | "Misalignment" | "Glass Damage" | "Tear" | "Other",
      "severity": "Minor" | "Moderate" | "Severe" | "Critical",
      "polygon_points": [[x, y], ...],
      "confidence": 0.0-1.0,
      "measured_mm": {{"length": number, "width": number, "depth": number}},
      "repair_suggestion": {{"method": "Repair" | "Replace", "labor_hours": number, "refinish_hours": number, "estimated_cost": number}}
    }}],
    "reference_object": {{"type": "CreditCard" | "ArUco", "size_mm": number, "polygon_points": [[x, y], ...]}} or null,
    "screen_capture_suspected": boolean,
    "comprehensive_verdict": "short summary"
  }}]
}}"""


class BatchProvider(Protocol):
    """Upstream contract: one raw (unvalidated) payload per submitted image, in order."""

    def analyze_batch(self, images: Sequence[ImageInput]) -> List[Any]:
        ...


class VisionBatchProvider:
    """:class:`BatchProvider` on top of an LLM vision client."""

    def __init__(self, client: LLMVisionClient, prompt: str = DETECTION_PROMPT, temperature: float = 0.0):
        self.client = client
        self.prompt = prompt
        self.temperature = temperature

    @property
    def model_version(self) -> str:
        return getattr(self.client, "model_name", "unknown")

    def analyze_batch(self, images: Sequence[ImageInput]) -> List[Any]:
        text = self.client.vision_json(self.prompt.format(n=len(images)), list(images), temperature=self.temperature)
        parsed = try_parse_json(text)
        if parsed is None:
            raise SchemaParseError("provider returned text that is not JSON")
        return split_batch_payload(parsed, len(images))


@dataclass
class GatewayRun:
    analyses: List[ImageAnalysis] = field(default_factory=list)
    failed_indices: List[int] = field(default_factory=list)
    skipped_indices: List[int] = field(default_factory=list)
    calls: int = 0
    final_batch_size: int = 0


class InferenceGateway:
    def __init__(
        self,
        provider: BatchProvider,
        scheduler: Optional[BatchScheduler] = None,
        settings: Optional[AuditSettings] = None,
        observer: Optional[QuotaObserver] = None,
        cancel_event: Optional[threading.Event] = None,
        sleep: Callable[[float], None] = time.sleep,
        declared_hulls: Optional[Mapping[int, Sequence[Sequence[float]]]] = None,
    ):
        self.provider = provider
        self.settings = settings or AuditSettings()
        # one scheduler per gateway per run, never shared
        self.scheduler = scheduler or BatchScheduler.from_settings(self.settings)
        self.observer = observer
        self.cancel_event = cancel_event
        self.declared_hulls = dict(declared_hulls or {})
        self._sleep = sleep
        self.calls = 0

    def _notify(self, seconds: float) -> None:
        if self.observer is not None:
            self.observer.quota_wait(seconds)

    def _check_cancelled(self, where: str) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise RunCancelled(f"run cancelled {where}")

    def _back_off(self, quota: QuotaExceeded, offset: int, size: int, attempt: int) -> None:
        if not self.scheduler.attempts_left:
            logger.error("batch at offset %d exhausted: %s", offset, self.scheduler.snapshot())
            raise BatchExhausted(offset, size, attempt, quota)
        new_size = self.scheduler.shrink()
        delay = self.scheduler.backoff_delay()
        logger.warning("quota exceeded at offset %d (%s); batch size %d -> %d, waiting %.1fs",
                       offset, quota, size, new_size, delay)
        self._notify(delay)
        cooperative_sleep(delay, self.cancel_event, self._sleep)

    def submit_batch(self, images: Sequence[ImageInput], offset: int = 0) -> List[Any]:
        """Send the head of ``images`` and return one raw payload per image sent.

        The returned list's length is the number of images consumed. A
        response that cannot be parsed at all yields ``None`` for every image
        of the slice (they are skipped downstream, never retried).
        """
        if not images:
            return []
        self.scheduler.start_batch()
        while True:
            self._check_cancelled("before batch submission")
            size = min(self.scheduler.current_batch_size, len(images))
            attempt = self.scheduler.record_attempt()
            chunk = list(images[:size])
            logger.info("calling provider: offset=%d size=%d attempt=%d/%d",
                        offset, size, attempt, self.scheduler.max_attempts)
            self.calls += 1
            try:
                items = self.provider.analyze_batch(chunk)
            except SchemaParseError as exc:
                logger.error("batch at offset %d: unparseable response (%s); skipping %d image(s)",
                             offset, exc, size)
                self._notify(0.0)
                return [None] * size
            except QuotaExceeded as exc:
                self._back_off(exc, offset, size, attempt)
                continue
            except AuditError:
                raise
            except Exception as exc:
                if not is_quota_error(exc):
                    raise ProviderError(f"provider call failed at offset {offset}: {exc}",
                                        offset=offset, size=size) from exc
                try:
                    self._back_off(QuotaExceeded(str(exc)), offset, size, attempt)
                except BatchExhausted as exhausted:
                    raise exhausted from exc
                continue

            self._notify(0.0)
            items = list(items)[:size]
            if len(items) < size:
                logger.warning("provider returned %d of %d items at offset %d", len(items), size, offset)
                items.extend([None] * (size - len(items)))
            return items

    def run(self, images: Sequence[ImageInput]) -> GatewayRun:
        """Process every image in submission order, tolerating failed batches.

        Exhausted batches and batches hit by a non-quota provider error add
        their indices to ``failed_indices`` and the run moves on. The last
        provider error is re-raised only when no image was analysed at all.
        """
        result = GatewayRun()
        offset = 0
        total = len(images)
        last_error: Optional[ProviderError] = None
        while offset < total:
            self._check_cancelled("before batch submission")
            try:
                items = self.submit_batch(images[offset:], offset)
            except BatchExhausted as exc:
                logger.error("giving up on images %d..%d: %s", offset, offset + exc.size - 1, exc)
                result.failed_indices.extend(range(offset, offset + exc.size))
                offset += exc.size
                continue
            except ProviderError as exc:
                size = max(1, exc.size)
                logger.error("images %d..%d failed: %s", offset, offset + size - 1, exc)
                result.failed_indices.extend(range(offset, offset + size))
                offset += size
                last_error = exc
                continue

            for j, item in enumerate(items):
                idx = offset + j
                try:
                    raw = validate_image_output(item, idx)
                except SchemaParseError as exc:
                    logger.error("image %d: %s", idx, exc)
                    result.skipped_indices.append(idx)
                    continue
                result.analyses.append(process_image_response(
                    raw, idx, declared_hull=self.declared_hulls.get(idx), settings=self.settings,
                ))
            offset += len(items)

        result.calls = self.calls
        result.final_batch_size = self.scheduler.current_batch_size
        logger.info("run finished: %d analysed, %d failed, %d skipped, %d provider calls",
                    len(result.analyses), len(result.failed_indices), len(result.skipped_indices), result.calls)
        if not result.analyses and last_error is not None:
            raise last_error
        return result
