import logging
import uuid

import pytest

from waferalign.logs.context import PatchContext, clear_patch_context, set_patch_context
from waferalign.logs.spans import (
    AlgorithmSpan,
    PipelineSpan,
    TestSessionSpan,
    create_debug_span,
    create_info_span,
)

SPANS_LOGGER = "waferalign.logs.spans"


@pytest.fixture
def records(caplog):
    caplog.set_level(logging.DEBUG, logger=SPANS_LOGGER)
    return caplog


def _messages(caplog):
    return [r.getMessage() for r in caplog.records if r.name == SPANS_LOGGER]


def test_algorithm_span(records):
    correlation_id = uuid.uuid4()
    span = AlgorithmSpan("ORB", (100, 200), (64, 64), correlation_id)
    with span:
        span.record_feature_detection(150, 128)
        span.record_matching(75, 45, 0.85)
        span.record_ransac(100, 35, 0.25)
        span.record_result(True, 0.89, "aligned")

    assert span.fields["algorithm"] == "ORB"
    assert (span.fields["patch_x"], span.fields["patch_y"]) == (100, 200)
    assert (span.fields["patch_width"], span.fields["patch_height"]) == (64, 64)
    assert span.fields["correlation_id"] == str(correlation_id)
    assert span.fields["keypoints_detected"] == 150
    assert span.fields["filtered_matches"] == 45
    assert span.fields["ransac_inliers"] == 35
    assert span.fields["success"] is True
    assert span.fields["result_description"] == "aligned"
    assert _messages(records) == [
        "Feature detection completed",
        "Feature matching completed",
        "RANSAC estimation completed",
        "Algorithm execution completed",
    ]


def test_algorithm_span_uses_patch_context():
    set_patch_context(PatchContext((30, 40), (32, 32), (512, 512), 200.0))
    try:
        span = AlgorithmSpan("SIFT")
        explicit = AlgorithmSpan("SIFT", patch_location=(1, 2))
    finally:
        clear_patch_context()
    assert span.patch_location == (30, 40)
    assert span.patch_size == (32, 32)
    assert explicit.patch_location == (1, 2)
    assert explicit.patch_size == (32, 32)


def test_algorithm_span_without_location_has_no_patch_fields():
    span = AlgorithmSpan("AKAZE")
    assert span.patch_location is None
    assert "patch_x" not in span.fields
    assert "correlation_id" not in span.fields


def test_detailed_result_with_location(records):
    span = AlgorithmSpan("ORB", (100, 200), (64, 64))
    span.record_detailed_result((3.0, 4.0), 1.5, 1.02, 0.9, (103, 204))
    assert span.fields["patch_to_match_distance"] == pytest.approx(5.0)
    assert span.fields["translation_error"] == pytest.approx(5.0)
    assert span.fields["found_x"] == 103
    record = [r for r in records.records if r.name == SPANS_LOGGER][-1]
    assert record.getMessage() == "Detailed spatial alignment result recorded"
    assert record.fields["spatial_distance"] == "5.00px"
    assert record.fields["rotation"] == "1.50°"
    assert record.fields["scale"] == "1.020x"


def test_detailed_result_without_location(records):
    span = AlgorithmSpan("NCC")
    span.record_detailed_result((1.0, 2.0), 0.0, 1.0, 0.5, (10, 10))
    assert "patch_to_match_distance" not in span.fields
    assert _messages(records)[-1] == "Alignment result recorded (patch origin unknown)"


def test_record_patch_context(records):
    span = AlgorithmSpan("ORB")
    span.record_patch_context((5, 6), 123.45, (800, 600))
    assert span.fields["patch_extracted_x"] == 5
    assert span.fields["source_height"] == 600
    record = [r for r in records.records if r.name == SPANS_LOGGER][-1]
    assert record.fields["patch_variance"] == "123.5"
    assert record.fields["source_image_size"] == "800x600"


def test_pipeline_span(records):
    correlation_id = uuid.uuid4()
    span = PipelineSpan("preprocessing", correlation_id)
    with span:
        span.record_input("raw_image", (1024, 768))
        span.record_completion("processed_image", True)
    assert span.fields["stage"] == "preprocessing"
    assert span.fields["input_width"] == 1024
    assert span.fields["input_height"] == 768
    assert span.fields["output_type"] == "processed_image"
    assert span.fields["success"] is True
    assert _messages(records) == [
        "Pipeline stage input recorded",
        "Pipeline stage completed",
    ]


def test_pipeline_input_without_size():
    span = PipelineSpan("load")
    span.record_input("file")
    assert span.fields["input_type"] == "file"
    assert "input_width" not in span.fields


def test_nested_spans_are_attached_to_events(records):
    outer = PipelineSpan("alignment")
    with outer as entered:
        inner = AlgorithmSpan("ORB")
        inner.record_feature_detection(10, 10)
    after = AlgorithmSpan("ORB")
    after.record_feature_detection(1, 1)

    assert entered.fields["stage"] == "alignment"
    assert inner.fields["keypoints_detected"] == 10
    assert after.fields["keypoints_detected"] == 1
    tagged = [r.spans for r in records.records if r.name == SPANS_LOGGER]
    assert tagged == [
        ["pipeline_stage", "algorithm_execution"],
        ["algorithm_execution"],
    ]


def test_session_span(records):
    session_id = uuid.uuid4()
    span = TestSessionSpan("visual_test", session_id)
    with span:
        span.record_config("default", {"algorithm": "ORB", "patch_size": 64, "iterations": 10})
        span.record_iteration(1, "ORB", True)
        span.record_iteration(2, "SIFT", False)
        span.record_completion(10, 8)
    assert span.session_id == session_id
    assert span.fields["test_config"] == "default"
    assert span.fields["success_rate"] == pytest.approx(80.0)
    assert span.fields["total_tests"] == 10
    config_record = [r for r in records.records if r.name == SPANS_LOGGER][0]
    assert config_record.fields["parameters"] == '{"algorithm":"ORB","patch_size":64,"iterations":10}'
    assert len(_messages(records)) == 4


def test_session_completion_with_no_tests():
    span = TestSessionSpan("empty", uuid.uuid4())
    span.record_completion(0, 0)
    assert span.fields["success_rate"] == 0.0


def test_dynamic_spans():
    correlation_id = uuid.UUID(int=9)
    info = create_info_span("load_images", correlation_id)
    debug = create_debug_span("inner_loop")
    assert info.name == "dynamic_span"
    assert info.fields == {"name": "load_images", "correlation_id": str(correlation_id)}
    assert info.level == logging.INFO
    assert debug.fields == {"name": "inner_loop"}
    assert debug.level == logging.DEBUG