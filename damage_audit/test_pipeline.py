import pytest

from damage_audit.benchmark import GOLDEN_DATASET
from damage_audit.config import AuditSettings
from damage_audit.errors import NoImagesProcessed, ProviderError
from damage_audit.llm_clients.base import ImageInput
from damage_audit.pipeline import audit_case
from damage_audit.scheduler import PolledQuotaStatus

HULL = [[0, 0], [1000, 0], [1000, 1000], [0, 1000]]
SCRATCH = [[100, 100], [200, 100], [200, 200], [100, 200]]


class ScriptedProvider:
    model_version = "fake-1"

    def __init__(self, per_image, errors=()):
        self.per_image = per_image
        self.errors = list(errors)
        self.calls = 0

    def analyze_batch(self, images):
        self.calls += 1
        error = self.errors.pop(0) if self.errors else None
        if error is not None:
            raise error
        return [self.per_image[img.name] for img in images]


def _images(*names):
    return [ImageInput(data=b"x", name=n) for n in names]


def _detection(part, issue_type, polygon, confidence=0.95):
    return {"part": part, "issueType": issue_type, "severity": "Moderate",
            "polygon_points": polygon, "confidence": confidence}


def _settings(**kw):
    base = dict(batch_size=2, quota_cooldown_s=1.0, quota_jitter_s=0.0)
    base.update(kw)
    return AuditSettings(**base)


def test_case_report_end_to_end():
    provider = ScriptedProvider({
        "front": {"vehicle_hull": HULL, "detectedIssues": [
            _detection("Rear Bumper", "Scratch", SCRATCH),
            _detection("Rear Bumper", "Scratch", [[10, 10], [20, 20]]),  # too few points
        ]},
        "rear": {"vehicle_hull": [[0, 0], [500, 0], [500, 500], [0, 500]], "detectedIssues": [
            _detection("Rear Bumper", "Scratch", SCRATCH, confidence=0.7),
            _detection("Parked Car Door", "Dent", [[800, 800], [900, 800], [900, 900], [800, 900]]),
        ]},
    })

    report = audit_case(_images("front", "rear"), provider, settings=_settings(),
                        ground_truth=GOLDEN_DATASET, vehicle_id="VIN123", sleep=lambda s: None)

    assert [img.image_index for img in report.images] == [0, 1]
    assert len(report.consolidated_issues) == 1
    c = report.consolidated_issues[0]
    assert (c.part, c.issue_type, c.total_instances) == ("Rear Bumper", "Scratch", 2)
    assert c.evidence_indices == [0, 1]
    assert c.max_confidence == pytest.approx(0.95)
    assert report.financials.grand_total == pytest.approx(1300.0)  # 2 x Moderate default
    assert report.model_version == "fake-1"
    assert report.benchmark is not None
    assert report.benchmark.overall_metrics.f1 == pytest.approx(1.0)
    wire = report.to_json_dict()
    assert wire["vehicleId"] == "VIN123"
    assert wire["consolidatedIssues"][0]["issueType"] == "Scratch"


def test_partial_case_is_reported_not_raised():
    provider = ScriptedProvider(
        {"a": {"detectedIssues": []}, "b": {"detectedIssues": []}},
        errors=[RuntimeError("429 quota")] * 2,
    )
    status = PolledQuotaStatus()
    report = audit_case(_images("a", "b"), provider, settings=_settings(max_attempts=2),
                        observer=status, sleep=lambda s: None)

    # 2 -> 1 after the first quota error, second attempt exhausts image "a"
    assert report.failed_image_indices == [0]
    assert [img.image_index for img in report.images] == [1]
    assert report.benchmark is None
    assert status.history == [1.0, 0.0]


def test_no_image_processed_is_an_error():
    provider = ScriptedProvider({"a": {"detectedIssues": [{"part": "Hood"}]}})
    with pytest.raises(NoImagesProcessed):
        audit_case(_images("a"), provider, settings=_settings(), sleep=lambda s: None)


def test_provider_failure_mid_case_keeps_earlier_images():
    per_image = {n: {"vehicle_hull": HULL, "detectedIssues": [_detection("Hood", "Dent", SCRATCH)]}
                 for n in ("a", "b", "c", "d")}
    provider = ScriptedProvider(per_image, errors=[None, RuntimeError("500 Internal Server Error")])

    report = audit_case(_images("a", "b", "c", "d"), provider, settings=_settings(), sleep=lambda s: None)

    assert provider.calls == 2
    assert [img.image_index for img in report.images] == [0, 1]
    assert report.failed_image_indices == [2, 3]
    assert report.consolidated_issues[0].total_instances == 2


def test_provider_failure_on_every_image_is_raised():
    provider = ScriptedProvider({}, errors=[RuntimeError("401 invalid api key")])
    with pytest.raises(ProviderError):
        audit_case(_images("a"), provider, settings=_settings(), sleep=lambda s: None)


def test_declared_hull_discards_detection_outside_it():
    provider = ScriptedProvider({
        "front": {"vehicle_hull": HULL, "detectedIssues": [_detection("Hood", "Dent", SCRATCH)]},
        "rear": {"vehicle_hull": HULL, "detectedIssues": [_detection("Hood", "Dent", SCRATCH)]},
    })
    corner = [[500, 500], [1000, 500], [1000, 1000], [500, 1000]]

    report = audit_case(_images("front", "rear"), provider, settings=_settings(),
                        declared_hulls={1: corner}, sleep=lambda s: None)

    assert len(report.images[0].detected_issues) == 1
    assert report.images[1].detected_issues == []
    assert report.images[1].vehicle_hull == [(500, 500), (1000, 500), (1000, 1000), (500, 1000)]
    assert report.consolidated_issues[0].evidence_indices == [0]
