from __future__ import annotations
from typing import Any, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

Severity = Literal["Minor", "Moderate", "Severe", "Critical"]
IssueStatus = Literal["verified", "provisional", "rejected"]
GateOutcome = Literal["pass", "warning", "flagged"]
CalibrationMethod = Literal["Reference_Object", "AI_Estimation"]

PointT = Tuple[float, float]

SEVERITY_PRIORITY = {"Minor": 1, "Moderate": 2, "Severe": 3, "Critical": 4}


def normalize_severity(v: Any) -> str:
    if not v:
        return "Minor"
    s = str(v).strip().lower()
    if s in ("critical", "catastrophic"):
        return "Critical"
    if s in ("severe", "high"):  # accept "high" as severe
        return "Severe"
    if s in ("moderate", "medium"):
        return "Moderate"
    return "Minor"


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_json_dict(self) -> dict:
        """Downstream wire shape (camelCase field names)."""
        return self.model_dump(by_alias=True, mode="json")


class _Frozen(_Model):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


# ---------------------------------------------------------------------------
# Provider output (validated before post-processing)
# ---------------------------------------------------------------------------

class MeasurementHint(_Frozen):
    length: Optional[float] = None
    width: Optional[float] = None
    depth: Optional[float] = None


class RepairEstimate(_Frozen):
    method: Optional[str] = None
    labor_hours: float = Field(0.0, ge=0.0)
    refinish_hours: float = Field(0.0, ge=0.0)
    estimated_cost: float = Field(0.0, ge=0.0)


class ReferenceObject(_Frozen):
    type: str = "CreditCard"
    size_mm: float = Field(..., gt=0.0)
    polygon: List[PointT] = Field(default_factory=list, alias="polygon_points")


class RawDetection(_Model):
    part: str = "Component"
    issue_type: str = Field(..., min_length=1, alias="issueType")
    severity: Severity = "Minor"
    polygon: List[PointT] = Field(default_factory=list, alias="polygon_points")
    confidence: float = 0.0
    measured_mm: Optional[MeasurementHint] = None
    repair_suggestion: Optional[RepairEstimate] = None

    @field_validator("severity", mode="before")
    @classmethod
    def _norm_severity(cls, v):  # type: ignore[no-untyped-def]
        return normalize_severity(v)

    @field_validator("confidence", mode="before")
    @classmethod
    def _norm_confidence(cls, v):  # type: ignore[no-untyped-def]
        if v is None:
            return 0.0
        c = float(v)
        if c > 1.0:  # some prompts answer on a 0-100 scale
            c = c / 100.0
        return min(1.0, max(0.0, c))

    @field_validator("part", mode="before")
    @classmethod
    def _default_part(cls, v):  # type: ignore[no-untyped-def]
        return v if v else "Component"


class ProviderImageOutput(_Model):
    vehicle_hull: List[PointT] = Field(default_factory=list)
    detected_issues: List[RawDetection] = Field(default_factory=list, alias="detectedIssues")
    reference_object: Optional[ReferenceObject] = None
    screen_capture_suspected: bool = False
    comprehensive_verdict: Optional[str] = None


# ---------------------------------------------------------------------------
# Per-image analysis
# ---------------------------------------------------------------------------

class ValidatedIssue(_Frozen):
    id: str
    part: str
    issue_type: str = Field(..., alias="issueType")
    severity: Severity
    polygon: List[PointT] = Field(..., alias="polygon_points")
    confidence: float
    measured_mm: Optional[MeasurementHint] = None
    source_image_index: int = Field(..., alias="sourceFileIndex")
    inside_hull: bool
    measured_length_mm: float
    calibration_method: CalibrationMethod
    status: IssueStatus
    repair_suggestion: RepairEstimate


class AuditEntry(_Frozen):
    id: str
    timestamp: str
    stage: str
    status: GateOutcome
    detail: str = ""


class Calibration(_Frozen):
    reference_object_detected: bool
    mm_per_unit: float
    method: CalibrationMethod
    confidence_scale: float


class RoiValidation(_Frozen):
    hull_defined: bool
    detections_inside_hull_pct: float
    discarded_outside_hull: int = 0


class ImageAnalysis(_Frozen):
    image_index: int = Field(..., alias="imageIndex")
    vehicle_hull: List[PointT] = Field(default_factory=list)
    detected_issues: List[ValidatedIssue] = Field(default_factory=list, alias="detectedIssues")
    calibration: Calibration
    audit_trail: List[AuditEntry] = Field(default_factory=list)
    roi_validation: Optional[RoiValidation] = None
    verdict: Optional[str] = None


# ---------------------------------------------------------------------------
# Case level
# ---------------------------------------------------------------------------

class ConsolidatedIssue(_Model):
    id: str
    part: str
    issue_type: str = Field(..., alias="issueType")
    severity: Severity
    total_instances: int = 1
    evidence_indices: List[int] = Field(default_factory=list)
    max_confidence: float = 0.0
    total_labor_hours: float = 0.0
    total_refinish_hours: float = 0.0
    consolidated_cost: float = 0.0
    consensus_score: float = 0.0
    max_length_mm: float = Field(0.0, alias="physical_max_dimension_mm")
    source_issue_ids: List[str] = Field(default_factory=list)


class CaseFinancials(_Model):
    total_labor_cost: float = Field(0.0, alias="totalLaborCost")
    total_parts_cost: float = Field(0.0, alias="totalPartsCost")
    grand_total: float = Field(0.0, alias="grandTotal")
    currency: str = "USD"
    repair_duration_days: int = Field(0, alias="repairDurationDays")
    total_labor_hours: float = 0.0
    total_refinish_hours: float = 0.0


class ConsolidationResult(_Model):
    consolidated_issues: List[ConsolidatedIssue] = Field(default_factory=list, alias="consolidatedIssues")
    financials: CaseFinancials = Field(default_factory=CaseFinancials)
    condition_score: float = Field(1.0, alias="conditionScore")


# ---------------------------------------------------------------------------
# Benchmark
# ---------------------------------------------------------------------------

class GroundTruthIssue(_Frozen):
    part: str
    issue_type: str = Field(..., alias="issueType")
    polygon: List[PointT]
    length_mm: Optional[float] = None


class GroundTruthSet(_Frozen):
    id: str
    image_url: str = Field("", alias="imageUrl")
    issues: List[GroundTruthIssue] = Field(default_factory=list)


class EvaluationMetrics(_Frozen):
    precision: float
    recall: float
    f1: float
    mean_iou: float = Field(..., alias="meanIoU")
    dimension_error_percent: float = Field(0.0, alias="dimensionErrorPercent")


class ImageBenchmarkResult(_Frozen):
    image_id: str = Field(..., alias="imageId")
    metrics: EvaluationMetrics
    false_positives: int = Field(..., alias="falsePositives")
    false_negatives: int = Field(..., alias="falseNegatives")
    compliance_id: str


class BenchmarkReport(_Frozen):
    timestamp: str
    model_version: str = Field(..., alias="modelVersion")
    overall_metrics: EvaluationMetrics = Field(..., alias="overallMetrics")
    per_image_results: List[ImageBenchmarkResult] = Field(default_factory=list, alias="perImageResults")


class CaseReport(_Model):
    vehicle_id: Optional[str] = Field(None, alias="vehicleId")
    model_version: str
    images: List[ImageAnalysis] = Field(default_factory=list)
    consolidated_issues: List[ConsolidatedIssue] = Field(default_factory=list, alias="consolidatedIssues")
    financials: CaseFinancials = Field(default_factory=CaseFinancials)
    condition_score: float = Field(1.0, alias="conditionScore")
    failed_image_indices: List[int] = Field(default_factory=list)
    skipped_image_indices: List[int] = Field(default_factory=list)
    benchmark: Optional[BenchmarkReport] = None
    inference_time_ms: int = 0
