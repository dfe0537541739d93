"""Turn one validated provider response into an :class:`ImageAnalysis`.

Gates run in a fixed order and each evaluation appends one audit entry:
image-level gates first (screen-capture screen, scale calibration), then one
hull-containment entry per detection that has a usable polygon. Detections
with fewer than 3 points are dropped before any gate and leave no trace.
"""
from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from .config import AuditSettings
from .geometry import bbox_center, bounding_box, point_in_polygon
from .schema import (
    AuditEntry,
    Calibration,
    ImageAnalysis,
    ProviderImageOutput,
    RawDetection,
    RepairEstimate,
    RoiValidation,
    ValidatedIssue,
)

logger = logging.getLogger(__name__)

# labor hours, refinish hours, cost (USD) when the model gives no estimate
SEVERITY_REPAIR_DEFAULTS = {
    "Minor": (1.0, 1.0, 250.0),
    "Moderate": (2.5, 2.0, 650.0),
    "Severe": (5.0, 3.5, 1400.0),
    "Critical": (7.0, 5.0, 1850.0),
}

UNCALIBRATED_CONFIDENCE_SCALE = 0.5


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class _AuditTrail:
    def __init__(self, image_index: int, clock: Callable[[], str]):
        self.image_index = image_index
        self.clock = clock
        self.entries: List[AuditEntry] = []

    def add(self, stage: str, status: str, detail: str) -> None:
        self.entries.append(AuditEntry(
            id=f"F{self.image_index}-G{len(self.entries)}",
            timestamp=self.clock(),
            stage=stage,
            status=status,
            detail=detail,
        ))


def build_calibration(raw: ProviderImageOutput, settings: AuditSettings) -> Calibration:
    ref = raw.reference_object
    if ref is not None and len(ref.polygon) >= 2:
        box = bounding_box(ref.polygon)
        span = max(box.width, box.height)
        if span > 0:
            return Calibration(
                reference_object_detected=True,
                mm_per_unit=ref.size_mm / span,
                method="Reference_Object",
                confidence_scale=1.0,
            )
    return Calibration(
        reference_object_detected=False,
        mm_per_unit=settings.uncalibrated_mm_per_unit,
        method="AI_Estimation",
        confidence_scale=UNCALIBRATED_CONFIDENCE_SCALE,
    )


def measure_length_mm(polygon: Sequence[Sequence[float]], calibration: Calibration) -> float:
    box = bounding_box(polygon)
    return max(box.width, box.height) * calibration.mm_per_unit


def repair_estimate_for(det: RawDetection) -> RepairEstimate:
    method = "Replace" if det.severity == "Critical" else "Repair"
    if det.repair_suggestion is not None:
        r = det.repair_suggestion
        return RepairEstimate(
            method=r.method or method,
            labor_hours=r.labor_hours,
            refinish_hours=r.refinish_hours,
            estimated_cost=r.estimated_cost,
        )
    labor, refinish, cost = SEVERITY_REPAIR_DEFAULTS[det.severity]
    return RepairEstimate(method=method, labor_hours=labor, refinish_hours=refinish, estimated_cost=cost)


def issue_status(confidence: float, settings: AuditSettings) -> str:
    if confidence < settings.reject_below_confidence:
        return "rejected"
    if confidence >= settings.verified_confidence:
        return "verified"
    return "provisional"


def process_image_response(
    raw: ProviderImageOutput,
    image_index: int,
    declared_hull: Optional[Sequence[Sequence[float]]] = None,
    settings: Optional[AuditSettings] = None,
    clock: Callable[[], str] = _utc_now,
) -> ImageAnalysis:
    """Gate, measure and grade every detection of one image.

    ``declared_hull`` overrides the hull the provider returned; a hull with
    fewer than 3 points disables the subject-isolation gate (everything counts
    as contained).
    """
    settings = settings or AuditSettings()
    hull = list(declared_hull) if declared_hull is not None else list(raw.vehicle_hull)
    hull_defined = len(hull) > 2
    trail = _AuditTrail(image_index, clock)

    if raw.screen_capture_suspected:
        trail.add("adversarial screen-capture check", "flagged",
                  "provider reports the photo looks like a re-captured screen or print")
    else:
        trail.add("adversarial screen-capture check", "pass", "no screen-capture artefacts reported")

    calibration = build_calibration(raw, settings)
    if calibration.reference_object_detected:
        trail.add("scale calibration", "pass",
                  f"reference object {raw.reference_object.type} -> {calibration.mm_per_unit:.3f} mm/unit")
    else:
        trail.add("scale calibration", "warning",
                  f"no reference object; heuristic {calibration.mm_per_unit:.3f} mm/unit, lengths are estimates")

    issues: List[ValidatedIssue] = []
    gated = 0
    outside = 0
    for idx, det in enumerate(raw.detected_issues):
        if len(det.polygon) < 3:
            logger.debug("image %d: dropping %s/%s, polygon has %d points",
                         image_index, det.part, det.issue_type, len(det.polygon))
            continue
        gated += 1
        center = bbox_center(det.polygon)
        if not hull_defined:
            inside = True
            trail.add("hull containment", "warning",
                      f"{det.part}/{det.issue_type}: hull undefined, containment assumed")
        else:
            inside = point_in_polygon(center, hull)
            if inside:
                trail.add("hull containment", "pass",
                          f"{det.part}/{det.issue_type}: centre ({center[0]:.0f}, {center[1]:.0f}) inside hull")
            else:
                trail.add("hull containment", "flagged",
                          f"{det.part}/{det.issue_type}: centre ({center[0]:.0f}, {center[1]:.0f}) outside hull, discarded")
        if not inside:
            outside += 1
            continue

        issues.append(ValidatedIssue(
            id=f"F{image_index}-I{idx}",
            part=det.part,
            issue_type=det.issue_type,
            severity=det.severity,
            polygon=list(det.polygon),
            confidence=det.confidence,
            measured_mm=det.measured_mm,
            source_image_index=image_index,
            inside_hull=True,
            measured_length_mm=measure_length_mm(det.polygon, calibration),
            calibration_method=calibration.method,
            status=issue_status(det.confidence, settings),
            repair_suggestion=repair_estimate_for(det),
        ))

    inside_pct = 100.0 * (gated - outside) / gated if gated else 100.0
    if outside:
        logger.info("image %d: subject-isolation gate discarded %d of %d detections",
                    image_index, outside, gated)

    return ImageAnalysis(
        image_index=image_index,
        vehicle_hull=hull,
        detected_issues=issues,
        calibration=calibration,
        audit_trail=trail.entries,
        roi_validation=RoiValidation(
            hull_defined=hull_defined,
            detections_inside_hull_pct=inside_pct,
            discarded_outside_hull=outside,
        ),
        verdict=raw.comprehensive_verdict,
    )
