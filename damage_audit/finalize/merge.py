from __future__ import annotations
import logging
import math
from typing import Callable, List, Optional, Sequence

from ..schema import (
    SEVERITY_PRIORITY,
    CaseFinancials,
    ConsolidatedIssue,
    ConsolidationResult,
    ImageAnalysis,
    ValidatedIssue,
)
from .ontology import canonical_part_key

logger = logging.getLogger(__name__)

# Decides whether `issue` belongs to an already consolidated record.
IssueMatcher = Callable[[ConsolidatedIssue, ValidatedIssue], bool]

WORK_HOURS_PER_DAY = 8.0
CONDITION_COST_SCALE = 80000.0


def exact_key_match(existing: ConsolidatedIssue, issue: ValidatedIssue) -> bool:
    """Default: ``(part, issueType)`` compared verbatim, case-sensitive.

    Near-duplicate part names ("Left Quarter Panel" / "Rear Left Fender") stay
    separate records.
    """
    return existing.part == issue.part and existing.issue_type == issue.issue_type


def ontology_matcher(ontology: Optional[dict] = None) -> IssueMatcher:
    """Looser matcher: canonical part label and side from ``ontology``.

    Falls back to the built-in part ontology when none is given.
    """
    def match(existing: ConsolidatedIssue, issue: ValidatedIssue) -> bool:
        if existing.issue_type.strip().lower() != issue.issue_type.strip().lower():
            return False
        return canonical_part_key(existing.part, ontology) == canonical_part_key(issue.part, ontology)

    return match


ontology_match = ontology_matcher()


def _seed(issue: ValidatedIssue, image_index: int, n: int) -> ConsolidatedIssue:
    r = issue.repair_suggestion
    return ConsolidatedIssue(
        id=f"C-{n}",
        part=issue.part,
        issue_type=issue.issue_type,
        severity=issue.severity,
        total_instances=1,
        evidence_indices=[image_index],
        max_confidence=issue.confidence,
        total_labor_hours=r.labor_hours,
        total_refinish_hours=r.refinish_hours,
        consolidated_cost=r.estimated_cost,
        max_length_mm=issue.measured_length_mm,
        source_issue_ids=[issue.id],
    )


def _absorb(base: ConsolidatedIssue, issue: ValidatedIssue, image_index: int) -> None:
    r = issue.repair_suggestion
    base.total_instances += 1
    base.evidence_indices.append(image_index)
    base.max_confidence = max(base.max_confidence, issue.confidence)
    base.total_labor_hours += r.labor_hours
    base.total_refinish_hours += r.refinish_hours
    base.consolidated_cost += r.estimated_cost
    base.max_length_mm = max(base.max_length_mm, issue.measured_length_mm)
    base.source_issue_ids.append(issue.id)
    # severity: take max
    if SEVERITY_PRIORITY[issue.severity] > SEVERITY_PRIORITY[base.severity]:
        base.severity = issue.severity


def case_financials(issues: Sequence[ConsolidatedIssue], labor_share: float = 0.40) -> CaseFinancials:
    total = sum(c.consolidated_cost for c in issues)
    labor_h = sum(c.total_labor_hours for c in issues)
    refinish_h = sum(c.total_refinish_hours for c in issues)
    return CaseFinancials(
        total_labor_cost=total * labor_share,
        total_parts_cost=total * (1.0 - labor_share),
        grand_total=total,
        repair_duration_days=int(math.ceil((labor_h + refinish_h) / WORK_HOURS_PER_DAY)),
        total_labor_hours=labor_h,
        total_refinish_hours=refinish_h,
    )


def consolidate_issues(
    analyses: Sequence[ImageAnalysis],
    matcher: Optional[IssueMatcher] = None,
    labor_share: float = 0.40,
) -> ConsolidationResult:
    """Single streaming pass over a case's images.

    Every validated issue either joins the first consolidated record the
    ``matcher`` accepts or starts a new one. Records come out in first-seen
    order; there is no clustering and no re-ordering.
    """
    matcher = matcher or exact_key_match
    consolidated: List[ConsolidatedIssue] = []

    for analysis in analyses:
        for issue in analysis.detected_issues:
            found = next((c for c in consolidated if matcher(c, issue)), None)
            if found is None:
                consolidated.append(_seed(issue, analysis.image_index, len(consolidated)))
            else:
                _absorb(found, issue, analysis.image_index)

    n_images = len(analyses)
    for c in consolidated:
        c.consensus_score = len(set(c.evidence_indices)) / n_images if n_images else 0.0

    financials = case_financials(consolidated, labor_share)
    condition = max(0.01, 1.0 - financials.grand_total / CONDITION_COST_SCALE)
    logger.info("consolidated %d issues from %d images into %d records (total %.2f %s)",
                sum(c.total_instances for c in consolidated), n_images, len(consolidated),
                financials.grand_total, financials.currency)
    return ConsolidationResult(
        consolidated_issues=consolidated,
        financials=financials,
        condition_score=condition,
    )
