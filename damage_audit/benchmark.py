"""Score detections against a labelled ground-truth set.

Matching is greedy per detection: the first ground-truth issue of the same
issue type whose IoU with the detection exceeds the threshold. Aggregate
metrics are the arithmetic mean of the per-image metrics (macro-average).
"""
from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Sequence

from .geometry import iou, polygon_iou
from .schema import (
    BenchmarkReport,
    EvaluationMetrics,
    GroundTruthIssue,
    GroundTruthSet,
    ImageBenchmarkResult,
)

logger = logging.getLogger(__name__)

MATCH_IOU_THRESHOLD = 0.3

IOU_FUNCTIONS = {
    "bbox": iou,
    "polygon": polygon_iou,
}

# Small embedded, read-only labelled fixture.
GOLDEN_DATASET: List[GroundTruthSet] = [
    GroundTruthSet(
        id="GOLD-01",
        image_url="",
        issues=[
            GroundTruthIssue(
                part="bumper",
                issue_type="Scratch",
                polygon=[(100, 100), (200, 100), (200, 200), (100, 200)],
            ),
        ],
    ),
]


def _detections_of(result: Any) -> Sequence[Any]:
    # ImageAnalysis and ProviderImageOutput both expose `detected_issues`;
    # polygons under 3 points carry no area and are not scored
    return [d for d in getattr(result, "detected_issues", None) or [] if len(d.polygon) >= 3]


def _compliance_id(result: Any, i: int) -> str:
    trail = getattr(result, "audit_trail", None) or []
    return trail[0].id if trail else f"COMPLY-{i}"


def safe_ratio(num: float, den: float, empty: float) -> float:
    return empty if den == 0 else num / den


def f1_score(precision: float, recall: float) -> float:
    if precision + recall == 0:
        return 0.0
    return 2 * precision * recall / (precision + recall)


def evaluate_image(
    detections: Sequence[Any],
    truth: GroundTruthSet,
    iou_fn: Callable = iou,
    threshold: float = MATCH_IOU_THRESHOLD,
):
    """Return ``(metrics, true_positives)`` for one image."""
    tp = 0
    total_iou = 0.0
    dim_errors: List[float] = []
    for det in detections:
        match = None
        match_iou = 0.0
        for t in truth.issues:
            if t.issue_type != det.issue_type:
                continue
            score = iou_fn(det.polygon, t.polygon)
            if score > threshold:
                match, match_iou = t, score
                break
        if match is None:
            continue
        tp += 1
        total_iou += match_iou
        measured = getattr(det, "measured_length_mm", None)
        if match.length_mm and measured is not None:
            dim_errors.append(abs(measured - match.length_mm) / match.length_mm * 100.0)

    precision = safe_ratio(tp, len(detections), 1.0)
    recall = safe_ratio(tp, len(truth.issues), 1.0)
    metrics = EvaluationMetrics(
        precision=precision,
        recall=recall,
        f1=f1_score(precision, recall),
        mean_iou=safe_ratio(total_iou, tp, 0.0),
        dimension_error_percent=sum(dim_errors) / len(dim_errors) if dim_errors else 0.0,
    )
    return metrics, tp


def _macro_average(per_image: Sequence[ImageBenchmarkResult]) -> EvaluationMetrics:
    n = len(per_image)
    if n == 0:
        return EvaluationMetrics(precision=0.0, recall=0.0, f1=0.0, mean_iou=0.0, dimension_error_percent=0.0)

    def avg(attr: str) -> float:
        return sum(getattr(r.metrics, attr) for r in per_image) / n

    return EvaluationMetrics(
        precision=avg("precision"),
        recall=avg("recall"),
        f1=avg("f1"),
        mean_iou=avg("mean_iou"),
        dimension_error_percent=avg("dimension_error_percent"),
    )


def run_full_benchmark(
    results: Sequence[Any],
    truths: Sequence[GroundTruthSet],
    model_version: str,
    iou_mode: str = "bbox",
    threshold: float = MATCH_IOU_THRESHOLD,
    timestamp: Optional[str] = None,
) -> BenchmarkReport:
    """Benchmark analyses (or raw provider outputs) against ``truths``.

    Result ``i`` is paired with ``truths[i]``; results beyond the end of the
    ground-truth list fall back to ``truths[0]``.
    """
    if not truths:
        raise ValueError("ground-truth set is empty")
    if iou_mode not in IOU_FUNCTIONS:
        raise ValueError(f"unknown iou mode {iou_mode!r}")
    iou_fn = IOU_FUNCTIONS[iou_mode]

    per_image: List[ImageBenchmarkResult] = []
    for i, res in enumerate(results):
        truth = truths[i] if i < len(truths) else truths[0]
        detections = _detections_of(res)
        metrics, tp = evaluate_image(detections, truth, iou_fn, threshold)
        per_image.append(ImageBenchmarkResult(
            image_id=truth.id,
            metrics=metrics,
            false_positives=len(detections) - tp,
            false_negatives=len(truth.issues) - tp,
            compliance_id=_compliance_id(res, i),
        ))

    overall = _macro_average(per_image)
    logger.info("benchmark %s: %d images, P=%.3f R=%.3f F1=%.3f mIoU=%.3f",
                model_version, len(per_image), overall.precision, overall.recall,
                overall.f1, overall.mean_iou)
    return BenchmarkReport(
        timestamp=timestamp or datetime.now(timezone.utc).isoformat(),
        model_version=model_version,
        overall_metrics=overall,
        per_image_results=per_image,
    )
