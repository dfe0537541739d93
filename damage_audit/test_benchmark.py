import pytest

from damage_audit.benchmark import GOLDEN_DATASET, run_full_benchmark
from damage_audit.postprocess import process_image_response
from damage_audit.schema import GroundTruthIssue, GroundTruthSet, ProviderImageOutput

BOX = [[100, 100], [200, 100], [200, 200], [100, 200]]
FAR = [[600, 600], [700, 600], [700, 700], [600, 700]]


def _analysis(index, issues):
    raw = ProviderImageOutput.model_validate({"vehicle_hull": [], "detectedIssues": [
        {"part": "bumper", "issueType": t, "polygon_points": p, "confidence": 0.95} for t, p in issues
    ]})
    return process_image_response(raw, index)


def _truth(id_, issues):
    return GroundTruthSet(id=id_, issues=[GroundTruthIssue(part="bumper", issue_type=t, polygon=p) for t, p in issues])


def test_vacuous_image_scores_perfect_precision_and_recall():
    report = run_full_benchmark([_analysis(0, [])], [_truth("T0", [])], "v1")

    m = report.per_image_results[0].metrics
    assert (m.precision, m.recall, m.f1, m.mean_iou) == (1.0, 1.0, 1.0, 0.0)


def test_exact_polygon_match_is_true_positive():
    report = run_full_benchmark([_analysis(0, [("Scratch", BOX)])], [_truth("T0", [("Scratch", BOX)])], "v1")

    r = report.per_image_results[0]
    assert r.false_positives == 0 and r.false_negatives == 0
    assert r.metrics.mean_iou == pytest.approx(1.0)
    assert r.image_id == "T0"


def test_macro_average_across_images():
    results = [_analysis(0, [("Scratch", BOX)]), _analysis(1, [])]
    truths = [_truth("A", [("Scratch", BOX)]), _truth("B", [])]

    overall = run_full_benchmark(results, truths, "v1").overall_metrics

    assert overall.precision == pytest.approx(1.0)
    assert overall.recall == pytest.approx(1.0)
    assert overall.f1 == pytest.approx(1.0)
    assert overall.mean_iou == pytest.approx(0.5)


def test_macro_average_differs_from_pooled_counts():
    # image A: 1 TP of 1; image B: 0 TP of 3 detections, 1 truth
    results = [
        _analysis(0, [("Scratch", BOX)]),
        _analysis(1, [("Dent", FAR), ("Dent", FAR), ("Dent", FAR)]),
    ]
    truths = [_truth("A", [("Scratch", BOX)]), _truth("B", [("Dent", BOX)])]

    overall = run_full_benchmark(results, truths, "v1").overall_metrics

    assert overall.precision == pytest.approx(0.5)  # pooled would be 0.25
    assert overall.recall == pytest.approx(0.5)


def test_issue_type_must_agree():
    report = run_full_benchmark([_analysis(0, [("Dent", BOX)])], [_truth("T0", [("Scratch", BOX)])], "v1")

    r = report.per_image_results[0]
    assert (r.metrics.precision, r.metrics.recall, r.metrics.f1) == (0.0, 0.0, 0.0)
    assert r.false_positives == 1 and r.false_negatives == 1


def test_iou_must_exceed_threshold():
    # 100x100 truth vs 100x30 detection inside it: IoU 0.3 exactly, not a match
    thin = [[100, 100], [200, 100], [200, 130], [100, 130]]
    report = run_full_benchmark([_analysis(0, [("Scratch", thin)])], [_truth("T0", [("Scratch", BOX)])], "v1")
    assert report.per_image_results[0].false_positives == 1


def test_out_of_range_results_fall_back_to_first_truth():
    results = [_analysis(i, [("Scratch", BOX)]) for i in range(3)]
    report = run_full_benchmark(results, GOLDEN_DATASET, "v1")

    assert [r.image_id for r in report.per_image_results] == ["GOLD-01"] * 3
    assert report.overall_metrics.f1 == pytest.approx(1.0)


def test_raw_provider_output_can_be_benchmarked():
    raw = ProviderImageOutput.model_validate({"detectedIssues": [{"issueType": "Scratch", "polygon_points": BOX}]})
    report = run_full_benchmark([raw], GOLDEN_DATASET, "raw")

    r = report.per_image_results[0]
    assert r.false_positives == 0
    assert r.compliance_id == "COMPLY-0"


def test_compliance_id_comes_from_audit_trail():
    report = run_full_benchmark([_analysis(4, [])], GOLDEN_DATASET, "v1")
    assert report.per_image_results[0].compliance_id == "F4-G0"


def test_polygon_mode_is_stricter_for_non_rectangles():
    triangle = [[100, 100], [200, 100], [100, 200]]
    truths = [_truth("T0", [("Dent", BOX)])]

    bbox_report = run_full_benchmark([_analysis(0, [("Dent", triangle)])], truths, "v1")
    poly_report = run_full_benchmark([_analysis(0, [("Dent", triangle)])], truths, "v1", iou_mode="polygon")

    assert bbox_report.overall_metrics.mean_iou == pytest.approx(1.0)
    assert poly_report.overall_metrics.mean_iou == pytest.approx(0.5)


def test_dimension_error_from_labelled_lengths():
    # uncalibrated: 100 units * 2.0 mm/unit = 200 mm measured
    truth = GroundTruthSet(id="T0", issues=[GroundTruthIssue(part="bumper", issue_type="Scratch", polygon=BOX, length_mm=250.0)])
    report = run_full_benchmark([_analysis(0, [("Scratch", BOX)])], [truth], "v1")
    assert report.per_image_results[0].metrics.dimension_error_percent == pytest.approx(20.0)


def test_report_metadata_and_wire_shape():
    report = run_full_benchmark([_analysis(0, [])], GOLDEN_DATASET, "V29.0-Final", timestamp="2026-01-01T00:00:00Z")
    wire = report.to_json_dict()

    assert wire["modelVersion"] == "V29.0-Final"
    assert wire["timestamp"] == "2026-01-01T00:00:00Z"
    assert set(wire["overallMetrics"]) == {"precision", "recall", "f1", "meanIoU", "dimensionErrorPercent"}
    assert wire["perImageResults"][0]["falseNegatives"] == 1


def test_empty_inputs():
    with pytest.raises(ValueError):
        run_full_benchmark([_analysis(0, [])], [], "v1")
    report = run_full_benchmark([], GOLDEN_DATASET, "v1")
    assert report.per_image_results == []
    assert report.overall_metrics.f1 == 0.0


def test_raw_detection_with_two_points_is_not_scored():
    raw = ProviderImageOutput.model_validate({"detectedIssues": [
        {"issueType": "Scratch", "polygon_points": [[100, 100], [200, 200]]},
    ]})
    report = run_full_benchmark([raw], GOLDEN_DATASET, "raw")

    r = report.per_image_results[0]
    assert r.false_positives == 0 and r.false_negatives == 1
    assert (r.metrics.precision, r.metrics.recall) == (1.0, 0.0)
