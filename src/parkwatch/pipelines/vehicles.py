"""Vehicle post-processing for in-process detectors.

Raw detections → vehicle filter → confidence gate → class-scoped NMS → a
workflow-compatible payload, so that local and remote producers feed the same
normalizer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Final

from parkwatch.vision.filters import DEFAULT_MIN_SCORE, select_candidates
from parkwatch.vision.geometry import nms
from parkwatch.vision.labels import VEHICLE_CLASSES
from parkwatch.vision.types import RawDetection, as_corners

LOG = logging.getLogger(__name__)

DEFAULT_NMS_IOU: Final[float] = 0.50


@dataclass(frozen=True, slots=True, kw_only=True)
class VehicleFilterParams:
    """Post-processing parameters for in-process detectors."""

    min_score: float = DEFAULT_MIN_SCORE
    iou_threshold: float = DEFAULT_NMS_IOU
    classes: tuple[str, ...] = VEHICLE_CLASSES


def postprocess(
    detections: list[RawDetection],
    params: VehicleFilterParams | None = None,
) -> list[RawDetection]:
    """Filter raw detections to confident vehicles and de-duplicate them."""
    params = params or VehicleFilterParams()
    candidates = select_candidates(
        detections,
        min_score=float(params.min_score),
        classes=tuple(params.classes),
    )
    kept = nms(candidates, iou_threshold=float(params.iou_threshold))
    LOG.info(
        "Vehicle post-processing: %d raw -> %d candidates -> %d after NMS",
        len(detections),
        len(candidates),
        len(kept),
    )
    return kept


def to_prediction_payload(
    detections: list[RawDetection],
    *,
    image_w: int,
    image_h: int,
    source: str,
) -> dict[str, Any]:
    """Build a workflow-style payload from post-processed detections.

    Shape::

        {"count_objects": N,
         "predictions": {"image": {"width", "height"},
                         "predictions": [{"x", "y", "width", "height",
                                          "confidence", "class_id", "class",
                                          "detection_id"}, ...]}}
    """
    predictions: list[dict[str, Any]] = []
    for i, d in enumerate(detections):
        c = as_corners(d.box).to_center()
        predictions.append(
            {
                "x": float(c.x),
                "y": float(c.y),
                "width": float(c.width),
                "height": float(c.height),
                "confidence": float(d.score),
                "class_id": i,
                "class": d.label,
                "detection_id": f"{source}-{i}",
            }
        )
    return {
        "count_objects": len(predictions),
        "predictions": {
            "image": {"width": int(image_w), "height": int(image_h)},
            "predictions": predictions,
        },
    }
