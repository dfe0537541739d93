import json

import pytest

from damage_audit.finalize.merge import consolidate_issues, exact_key_match, ontology_match, ontology_matcher
from damage_audit.finalize.ontology import canonical_part_key, load_ontology
from damage_audit.schema import Calibration, ImageAnalysis, RepairEstimate, ValidatedIssue

CAL = Calibration(reference_object_detected=False, mm_per_unit=2.0, method="AI_Estimation", confidence_scale=0.5)


def _issue(image_index, n, part="Hood", issue_type="Dent", severity="Moderate",
           confidence=0.8, cost=500.0, labor=2.0, refinish=1.0, length=100.0):
    return ValidatedIssue(
        id=f"F{image_index}-I{n}",
        part=part,
        issue_type=issue_type,
        severity=severity,
        polygon=[(0, 0), (10, 0), (10, 10)],
        confidence=confidence,
        source_image_index=image_index,
        inside_hull=True,
        measured_length_mm=length,
        calibration_method="AI_Estimation",
        status="provisional",
        repair_suggestion=RepairEstimate(method="Repair", labor_hours=labor, refinish_hours=refinish, estimated_cost=cost),
    )


def _image(index, issues):
    return ImageAnalysis(image_index=index, vehicle_hull=[], detected_issues=issues, calibration=CAL)


def test_identical_keys_collapse_into_one_record():
    images = [
        _image(0, [_issue(0, 0, confidence=0.7), _issue(0, 1, confidence=0.6)]),
        _image(1, []),
        _image(2, [_issue(2, 0, confidence=0.93, length=140.0)]),
    ]
    out = consolidate_issues(images)

    assert len(out.consolidated_issues) == 1
    c = out.consolidated_issues[0]
    assert c.total_instances == 3
    assert c.evidence_indices == [0, 0, 2]
    assert c.max_confidence == pytest.approx(0.93)
    assert c.consolidated_cost == pytest.approx(1500.0)
    assert c.total_labor_hours == pytest.approx(6.0)
    assert c.total_refinish_hours == pytest.approx(3.0)
    assert c.max_length_mm == pytest.approx(140.0)
    assert c.source_issue_ids == ["F0-I0", "F0-I1", "F2-I0"]
    assert c.consensus_score == pytest.approx(2 / 3)


def test_exact_matching_keeps_near_duplicates_apart():
    images = [
        _image(0, [_issue(0, 0, part="Left Quarter Panel")]),
        _image(1, [_issue(1, 0, part="Rear Left Fender"), _issue(1, 1, part="hood"), _issue(1, 2, part="Hood")]),
    ]
    out = consolidate_issues(images)
    assert [c.part for c in out.consolidated_issues] == ["Left Quarter Panel", "Rear Left Fender", "hood", "Hood"]


def test_issue_type_is_part_of_the_key():
    out = consolidate_issues([_image(0, [_issue(0, 0, issue_type="Dent"), _issue(0, 1, issue_type="Scratch")])])
    assert [(c.part, c.issue_type) for c in out.consolidated_issues] == [("Hood", "Dent"), ("Hood", "Scratch")]


def test_records_keep_first_seen_order_and_seed_values():
    images = [
        _image(0, [_issue(0, 0, part="Roof", cost=100.0)]),
        _image(1, [_issue(1, 0, part="Door", cost=250.0), _issue(1, 1, part="Roof", cost=50.0)]),
    ]
    out = consolidate_issues(images)

    roof, door = out.consolidated_issues
    assert (roof.part, door.part) == ("Roof", "Door")
    assert (roof.id, door.id) == ("C-0", "C-1")
    assert door.total_instances == 1 and door.consolidated_cost == 250.0
    assert roof.consolidated_cost == pytest.approx(150.0)


def test_severity_is_promoted_to_maximum():
    images = [_image(0, [_issue(0, 0, severity="Minor")]), _image(1, [_issue(1, 0, severity="Severe")])]
    assert consolidate_issues(images).consolidated_issues[0].severity == "Severe"


def test_case_financials():
    images = [_image(0, [_issue(0, 0, cost=1000.0, labor=6.0, refinish=4.0)]),
              _image(1, [_issue(1, 0, part="Door", cost=1000.0, labor=3.0, refinish=0.0)])]
    out = consolidate_issues(images, labor_share=0.40)

    f = out.financials
    assert f.grand_total == pytest.approx(2000.0)
    assert f.total_labor_cost == pytest.approx(800.0)
    assert f.total_parts_cost == pytest.approx(1200.0)
    assert f.repair_duration_days == 2  # 13 h at 8 h/day
    assert out.condition_score == pytest.approx(1 - 2000.0 / 80000.0)


def test_empty_case():
    out = consolidate_issues([])
    assert out.consolidated_issues == []
    assert out.financials.grand_total == 0.0
    assert out.condition_score == 1.0


def test_ontology_matcher_merges_synonymous_parts():
    images = [
        _image(0, [_issue(0, 0, part="Left Quarter Panel")]),
        _image(1, [_issue(1, 0, part="Rear Left Fender"), _issue(1, 1, part="Right Quarter Panel")]),
    ]
    out = consolidate_issues(images, matcher=ontology_match)

    assert [c.total_instances for c in out.consolidated_issues] == [2, 1]
    assert out.consolidated_issues[0].part == "Left Quarter Panel"


def test_custom_matcher_is_pluggable():
    images = [_image(0, [_issue(0, 0, part="Hood"), _issue(0, 1, part="Roof")])]
    out = consolidate_issues(images, matcher=lambda existing, issue: existing.issue_type == issue.issue_type)
    assert len(out.consolidated_issues) == 1
    assert out.consolidated_issues[0].total_instances == 2


def test_exact_key_match_is_case_sensitive():
    a = consolidate_issues([_image(0, [_issue(0, 0, part="Hood")])]).consolidated_issues[0]
    assert exact_key_match(a, _issue(1, 0, part="Hood"))
    assert not exact_key_match(a, _issue(1, 0, part="HOOD"))


@pytest.mark.parametrize("name,expected", [
    ("Left Quarter Panel", ("quarter panel", "left")),
    ("Rear Left Fender", ("quarter panel", "left")),
    ("Bonnet", ("hood", None)),
    ("Right Tail Lamp", ("taillight", "right")),
    ("Front Bumper", ("front bumper", None)),
])
def test_canonical_part_key(name, expected):
    assert canonical_part_key(name) == expected


def test_ontology_loaded_from_file_drives_matching(tmp_path):
    path = tmp_path / "parts.json"
    path.write_text(json.dumps({"labels": ["liftgate"], "synonyms": {"hatch": "liftgate", "tailgate": "liftgate"}}))
    images = [_image(0, [_issue(0, 0, part="Hatch")]), _image(1, [_issue(1, 0, part="Tailgate")])]

    out = consolidate_issues(images, matcher=ontology_matcher(load_ontology(str(path))))

    assert len(out.consolidated_issues) == 1
    assert out.consolidated_issues[0].evidence_indices == [0, 1]


def test_load_ontology_defaults_and_missing_file(tmp_path):
    assert "hood" in load_ontology(None)["labels"]
    with pytest.raises(FileNotFoundError):
        load_ontology(str(tmp_path / "nope.json"))
