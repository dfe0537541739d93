from __future__ import annotations
import logging
import threading
import time
from typing import Callable, Mapping, Optional, Sequence

from .benchmark import run_full_benchmark
from .config import AuditSettings
from .errors import NoImagesProcessed
from .finalize.merge import IssueMatcher, consolidate_issues
from .gateway import BatchProvider, InferenceGateway
from .llm_clients.base import ImageInput
from .scheduler import QuotaObserver
from .schema import CaseReport, GroundTruthSet

logger = logging.getLogger(__name__)


def audit_case(
    images: Sequence[ImageInput],
    provider: BatchProvider,
    settings: Optional[AuditSettings] = None,
    observer: Optional[QuotaObserver] = None,
    cancel_event: Optional[threading.Event] = None,
    ground_truth: Optional[Sequence[GroundTruthSet]] = None,
    model_version: Optional[str] = None,
    matcher: Optional[IssueMatcher] = None,
    vehicle_id: Optional[str] = None,
    declared_hulls: Optional[Mapping[int, Sequence[Sequence[float]]]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> CaseReport:
    """Run one case end to end: inference, consolidation, optional benchmark.

    Partial results are normal: images in exhausted, failed or unparseable
    batches simply contribute nothing. Only a case where no image at all
    produced an analysis is an error. ``declared_hulls`` maps an image index to
    a caller-supplied vehicle outline that replaces the provider's hull.
    """
    settings = settings or AuditSettings()
    model_version = model_version or getattr(provider, "model_version", "unknown")
    started = time.monotonic()

    # fresh gateway (and scheduler) per run
    gateway = InferenceGateway(provider, settings=settings, observer=observer,
                               cancel_event=cancel_event, sleep=sleep,
                               declared_hulls=declared_hulls)
    run = gateway.run(images)
    if not run.analyses:
        raise NoImagesProcessed(
            f"none of {len(images)} image(s) could be analysed "
            f"(failed={run.failed_indices}, skipped={run.skipped_indices})"
        )
    if run.failed_indices or run.skipped_indices:
        logger.warning("partial case: %d of %d images analysed", len(run.analyses), len(images))

    consolidation = consolidate_issues(run.analyses, matcher=matcher, labor_share=settings.labor_share)

    benchmark = None
    if ground_truth:
        benchmark = run_full_benchmark(run.analyses, ground_truth, model_version,
                                       iou_mode=settings.iou_mode,
                                       threshold=settings.benchmark_iou_threshold)

    return CaseReport(
        vehicle_id=vehicle_id,
        model_version=model_version,
        images=run.analyses,
        consolidated_issues=consolidation.consolidated_issues,
        financials=consolidation.financials,
        condition_score=consolidation.condition_score,
        failed_image_indices=run.failed_indices,
        skipped_image_indices=run.skipped_indices,
        benchmark=benchmark,
        inference_time_ms=int((time.monotonic() - started) * 1000),
    )
