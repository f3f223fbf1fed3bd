from __future__ import annotations

import json
import logging
from typing import Any

import pytest

from parkwatch.errors import MalformedResponseError
from parkwatch.vision.normalize import (
    _BoxShape,
    decode_box,
    locate_predictions,
    normalize_response,
)
from parkwatch.vision.types import CenterBox, format_confidence


def _pred(cls: str = "car", confidence: float = 0.9, **box: float) -> dict[str, Any]:
    shape = box or {"x": 50.0, "y": 40.0, "width": 20.0, "height": 10.0}
    return {"class": cls, "confidence": confidence, **shape}


def test_workflow_output_nested_predictions_win() -> None:
    response = {
        "outputs": [
            {
                "count_objects": 2,
                "predictions": {
                    "image": {"width": 640, "height": 480},
                    "predictions": [_pred("car"), _pred("truck", 0.8)],
                },
                "detections": [_pred("bus")],
            }
        ]
    }
    result = normalize_response(response, id_prefix="r1-0")
    assert [d.class_label for d in result.detections] == ["car", "truck"]
    assert result.count == 2
    assert [d.detection_id for d in result.detections] == ["r1-0-0", "r1-0-1"]
    assert result.detections[0].box == CenterBox(x=50.0, y=40.0, width=20.0, height=10.0)


def test_precedence_table_order() -> None:
    assert locate_predictions({"predictions": {"predictions": []}})[0] == "predictions.predictions"
    assert locate_predictions({"predictions": [_pred()], "detections": [_pred()]})[0] == "predictions"
    assert locate_predictions([_pred()])[0] == "outputs"
    assert locate_predictions({"detections": [_pred()], "other": [_pred()]})[0] == "detections"
    assert locate_predictions({"vehicles": [{"bbox": [0, 0, 1, 1]}]})[0] == "scan:vehicles"
    assert locate_predictions({"vehicles": [{"foo": 1}]}) == (None, [])


def test_bare_array_response() -> None:
    result = normalize_response([_pred("car"), _pred("bus")])
    assert [d.class_label for d in result.detections] == ["car", "bus"]
    assert result.count == 2


def test_detections_key_with_minmax_box_and_score() -> None:
    response = {
        "detections": [
            {"label": "truck", "score": 0.8, "box": {"xmin": 10, "ymin": 20, "xmax": 30, "ymax": 60}}
        ]
    }
    (det,) = normalize_response(response).detections
    assert det.class_label == "truck"
    assert det.confidence == pytest.approx(0.8)
    assert det.box == CenterBox(x=20.0, y=40.0, width=20.0, height=40.0)


def test_heuristic_scan_with_bbox_percent_confidence() -> None:
    response = {"meta": {"v": 1}, "vehicles": [{"bbox": [0, 0, 10, 20], "name": "bus", "confidence": 91}]}
    (det,) = normalize_response(response).detections
    assert det.class_label == "bus"
    assert det.confidence == pytest.approx(0.91)
    # bbox is top-left origin
    assert det.box == CenterBox(x=5.0, y=10.0, width=10.0, height=20.0)


def test_box_x1y1x2y2_form() -> None:
    assert decode_box({"box": {"x1": 0, "y1": 0, "x2": 4, "y2": 2}}) == CenterBox(
        x=2.0, y=1.0, width=4.0, height=2.0
    )
    assert decode_box({"box": {"left": 0}}) is None
    assert decode_box({"bbox": [1, 2, 3]}) is None


def test_unrecognized_elements_are_skipped() -> None:
    response = {
        "predictions": [
            _pred("car"),
            {"class": "car", "foo": 1},
            "not-an-object",
            _pred("bus"),
        ]
    }
    result = normalize_response(response, id_prefix="p")
    assert [d.class_label for d in result.detections] == ["car", "bus"]
    # ids follow the element position in the response
    assert [d.detection_id for d in result.detections] == ["p-0", "p-3"]
    assert result.count == 2


def test_missing_label_and_confidence_defaults() -> None:
    response = {"predictions": [{"x": 1, "y": 1, "width": 2, "height": 2}]}
    (det,) = normalize_response(response).detections
    assert det.class_label == "Object 1"
    assert det.confidence == 0.0


def test_confidence_fraction_and_percentage_display_the_same() -> None:
    a = normalize_response({"predictions": [_pred(confidence=0.87)]}).detections[0]
    b = normalize_response({"predictions": [_pred(confidence=87)]}).detections[0]
    assert a.display_confidence == b.display_confidence == "87.0%"
    assert format_confidence(0.87) == format_confidence(87) == "87.0%"


def test_count_objects_at_root_is_authoritative() -> None:
    response = {"count_objects": 5, "outputs": {"predictions": [_pred()]}}
    result = normalize_response(response)
    assert len(result.detections) == 1
    assert result.count == 5


@pytest.mark.parametrize("raw_count", ["Infinity", "-Infinity", "NaN", '"many"'])
def test_unusable_count_falls_back_to_detections(raw_count: str) -> None:
    text = f'{{"count_objects": {raw_count}, "predictions": [{json.dumps(_pred())}]}}'
    result = normalize_response(text)
    assert len(result.detections) == 1
    assert result.count == 1


def test_box_shape_base_cannot_be_instantiated() -> None:
    with pytest.raises(TypeError):
        _BoxShape()


def test_unknown_shape_is_empty_with_warning(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="parkwatch.vision.normalize"):
        result = normalize_response({"status": "ok"})
    assert result.detections == ()
    assert result.count == 0
    assert "No prediction array" in caplog.text


def test_json_text_is_parsed() -> None:
    result = normalize_response(json.dumps({"predictions": [_pred("car")]}))
    assert [d.class_label for d in result.detections] == ["car"]


@pytest.mark.parametrize("response", ["<html>oops</html>", b"\x00\x01", 42, None])
def test_unparseable_response_raises(response: Any) -> None:
    with pytest.raises(MalformedResponseError):
        normalize_response(response)
