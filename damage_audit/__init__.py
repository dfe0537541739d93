"""Vehicle damage photo auditing: inference gateway, gating, consolidation, benchmark."""
from .benchmark import GOLDEN_DATASET, run_full_benchmark
from .config import AuditSettings
from .finalize.merge import consolidate_issues, exact_key_match, ontology_match, ontology_matcher
from .gateway import InferenceGateway, VisionBatchProvider
from .pipeline import audit_case
from .postprocess import process_image_response
from .scheduler import BatchScheduler, PolledQuotaStatus
from .vin import extract_vin

__all__ = [
    "AuditSettings",
    "BatchScheduler",
    "GOLDEN_DATASET",
    "InferenceGateway",
    "PolledQuotaStatus",
    "VisionBatchProvider",
    "audit_case",
    "consolidate_issues",
    "exact_key_match",
    "extract_vin",
    "ontology_match",
    "ontology_matcher",
    "process_image_response",
    "run_full_benchmark",
]
