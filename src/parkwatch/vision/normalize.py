"""Normalization of shape-varying detector responses into canonical detections.

Producers disagree on where predictions live and how boxes are spelled. Both
questions are answered by explicit, ordered tables:

- `PREDICTION_PATHS` lists where to look for the prediction array (first match
  wins), with a heuristic scan of top-level arrays as the last resort.
- `BOX_DECODERS` lists the box schemas tried on each prediction element.
"""

from __future__ import annotations

import json
import logging
from abc import abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from parkwatch.errors import MalformedResponseError
from parkwatch.vision.types import CenterBox, Detection, normalize_confidence

LOG = logging.getLogger(__name__)

LABEL_FIELDS: Final[tuple[str, ...]] = ("class", "label", "name")
CONFIDENCE_FIELDS: Final[tuple[str, ...]] = ("confidence", "score")
COUNT_FIELD: Final[str] = "count_objects"

# (rule name, key path from the outputs object). An empty path is the outputs itself.
PREDICTION_PATHS: Final[tuple[tuple[str, tuple[str, ...]], ...]] = (
    ("predictions.predictions", ("predictions", "predictions")),
    ("predictions", ("predictions",)),
    ("outputs", ()),
    ("detections", ("detections",)),
)


# ---------------------------------------------------------------------------
# Box schema variants
# ---------------------------------------------------------------------------


class _BoxShape(BaseModel):
    model_config = ConfigDict(extra="ignore")

    @abstractmethod
    def to_center_box(self) -> CenterBox: ...


class _CenterForm(_BoxShape):
    """``{"x", "y", "width", "height"}`` with x/y at the box center."""

    x: float
    y: float
    width: float = Field(ge=0.0)
    height: float = Field(ge=0.0)

    def to_center_box(self) -> CenterBox:
        return CenterBox(x=self.x, y=self.y, width=self.width, height=self.height)


class _BboxForm(_BoxShape):
    """``{"bbox": [x, y, width, height]}`` with x/y at the top-left corner."""

    bbox: list[float] = Field(min_length=4, max_length=4)

    def to_center_box(self) -> CenterBox:
        x, y, w, h = self.bbox
        return CenterBox(x=x + w / 2.0, y=y + h / 2.0, width=w, height=h)


class _X1Y1X2Y2(BaseModel):
    model_config = ConfigDict(extra="ignore")

    x1: float
    y1: float
    x2: float
    y2: float


class _MinMax(BaseModel):
    model_config = ConfigDict(extra="ignore")

    xmin: float
    ymin: float
    xmax: float
    ymax: float


class _BoxX1Y1X2Y2Form(_BoxShape):
    """``{"box": {"x1", "y1", "x2", "y2"}}``."""

    box: _X1Y1X2Y2

    def to_center_box(self) -> CenterBox:
        b = self.box
        return _corners_to_center(b.x1, b.y1, b.x2, b.y2)


class _BoxMinMaxForm(_BoxShape):
    """``{"box": {"xmin", "ymin", "xmax", "ymax"}}``."""

    box: _MinMax

    def to_center_box(self) -> CenterBox:
        b = self.box
        return _corners_to_center(b.xmin, b.ymin, b.xmax, b.ymax)


def _corners_to_center(x1: float, y1: float, x2: float, y2: float) -> CenterBox:
    w = x2 - x1
    h = y2 - y1
    return CenterBox(x=x1 + w / 2.0, y=y1 + h / 2.0, width=w, height=h)


BOX_DECODERS: Final[tuple[tuple[str, type[_BoxShape]], ...]] = (
    ("center", _CenterForm),
    ("bbox", _BboxForm),
    ("box_x1y1x2y2", _BoxX1Y1X2Y2Form),
    ("box_minmax", _BoxMinMaxForm),
)


def decode_box(element: Mapping[str, Any]) -> CenterBox | None:
    """Decode the box of one prediction element, trying `BOX_DECODERS` in order."""
    for _name, schema in BOX_DECODERS:
        try:
            shape = schema.model_validate(element)
        except ValidationError:
            continue
        return shape.to_center_box()
    return None


# ---------------------------------------------------------------------------
# Prediction array location
# ---------------------------------------------------------------------------


def _has_signature(element: Any) -> bool:
    if not isinstance(element, Mapping):
        return False
    return "class" in element or element.get("x") is not None or "bbox" in element


def _looks_like_prediction(element: Mapping[str, Any]) -> bool:
    return _has_signature(element) or "box" in element or any(f in element for f in LABEL_FIELDS)


def _get_path(obj: Any, path: tuple[str, ...]) -> Any:
    for key in path:
        if not isinstance(obj, Mapping):
            return None
        obj = obj.get(key)
    return obj


def locate_predictions(outputs: Any) -> tuple[str | None, list[Any]]:
    """Find the prediction array inside `outputs`.

    Returns:
        (rule, predictions) where `rule` names the matching entry of
        `PREDICTION_PATHS`, "scan:<key>" for the heuristic scan, or None when
        nothing matched (predictions is then empty).
    """
    for rule, path in PREDICTION_PATHS:
        candidate = _get_path(outputs, path)
        if isinstance(candidate, list):
            return rule, candidate

    if isinstance(outputs, Mapping):
        for key, value in outputs.items():
            if isinstance(value, list) and value and _has_signature(value[0]):
                return f"scan:{key}", value

    return None, []


def _resolve_outputs(response: Any) -> Any:
    outputs = response.get("outputs", response) if isinstance(response, Mapping) else response
    # Workflow endpoints wrap the per-image output object in a one-element list.
    if (
        isinstance(outputs, list)
        and len(outputs) == 1
        and isinstance(outputs[0], Mapping)
        and not _looks_like_prediction(outputs[0])
    ):
        outputs = outputs[0]
    return outputs


def _parse(response: Any) -> Any:
    if isinstance(response, bytes | bytearray):
        response = response.decode("utf-8", errors="replace")
    if isinstance(response, str):
        try:
            response = json.loads(response)
        except json.JSONDecodeError as e:
            raise MalformedResponseError(f"Detector response is not valid JSON: {e}") from e
    if not isinstance(response, Mapping | list):
        raise MalformedResponseError(
            f"Unsupported detector response type: {type(response).__name__}"
        )
    return response


# ---------------------------------------------------------------------------
# Field extraction
# ---------------------------------------------------------------------------


def _first_present(element: Mapping[str, Any], fields: Sequence[str]) -> Any:
    for f in fields:
        value = element.get(f)
        if value is not None:
            return value
    return None


def _extract_confidence(element: Mapping[str, Any]) -> float | None:
    raw = _first_present(element, CONFIDENCE_FIELDS)
    if raw is None:
        return 0.0
    try:
        value = normalize_confidence(float(raw))
    except (TypeError, ValueError):
        return None
    return min(1.0, max(0.0, value))


def _extract_count(outputs: Any, response: Any) -> int | None:
    for container in (outputs, response):
        if isinstance(container, Mapping) and container.get(COUNT_FIELD) is not None:
            try:
                return int(container[COUNT_FIELD])
            except (TypeError, ValueError, OverflowError):
                LOG.warning("Ignoring non-integer %s=%r", COUNT_FIELD, container[COUNT_FIELD])
    return None


@dataclass(frozen=True)
class NormalizedPredictions:
    """Canonical detections plus the count shown to the user."""

    detections: tuple[Detection, ...]
    count: int


def normalize_response(response: Any, *, id_prefix: str = "det") -> NormalizedPredictions:
    """Normalize a raw detector/workflow response.

    Args:
        response: Parsed JSON (mapping or list), or a JSON string/bytes.
        id_prefix: Run-scoped prefix used to build detection ids.

    Returns:
        A :class:`NormalizedPredictions`. Unrecognized shapes yield no detections.

    Raises:
        MalformedResponseError: If the response cannot be parsed at all.
    """
    response = _parse(response)
    LOG.debug("Detector response received: type=%s", type(response).__name__)

    outputs = _resolve_outputs(response)
    rule, predictions = locate_predictions(outputs)
    if rule is None:
        LOG.warning("No prediction array found in detector response; assuming no detections")
    else:
        LOG.debug("Prediction array located via %s (%d elements)", rule, len(predictions))

    detections: list[Detection] = []
    skipped = 0
    for i, element in enumerate(predictions):
        if not isinstance(element, Mapping):
            skipped += 1
            continue
        box = decode_box(element)
        confidence = _extract_confidence(element)
        if box is None or confidence is None:
            LOG.debug("Skipping prediction %d with unrecognized shape: %r", i, element)
            skipped += 1
            continue
        label = _first_present(element, LABEL_FIELDS)
        detections.append(
            Detection(
                class_label=str(label) if label is not None else f"Object {i + 1}",
                confidence=confidence,
                box=box,
                detection_id=f"{id_prefix}-{i}",
            )
        )

    if skipped:
        LOG.info("Skipped %d of %d predictions with unrecognized shape", skipped, len(predictions))

    count = _extract_count(outputs, response)
    return NormalizedPredictions(
        detections=tuple(detections),
        count=len(detections) if count is None else count,
    )
