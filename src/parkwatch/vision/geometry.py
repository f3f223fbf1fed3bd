"""Geometry helpers (area, IoU, NMS) for detection boxes."""

from __future__ import annotations

import logging

from .types import Box, RawDetection, as_corners

LOG = logging.getLogger(__name__)


def area(box: Box) -> float:
    """Return the area of a corner-form box (0 if degenerate)."""
    return box.area()


def intersection_area(a: Box, b: Box) -> float:
    """Return the overlap area of two corner-form boxes (0 if disjoint)."""
    ix1 = max(a.xmin, b.xmin)
    iy1 = max(a.ymin, b.ymin)
    ix2 = min(a.xmax, b.xmax)
    iy2 = min(a.ymax, b.ymax)
    iw = max(0.0, ix2 - ix1)
    ih = max(0.0, iy2 - iy1)
    return iw * ih


def iou(a: Box, b: Box) -> float:
    """Compute intersection-over-union (IoU) between two corner-form boxes."""
    inter = intersection_area(a, b)
    union = area(a) + area(b) - inter
    return float(inter / union) if union > 0 else 0.0


def nms(detections: list[RawDetection], iou_threshold: float = 0.5) -> list[RawDetection]:
    """Class-scoped non-maximum suppression, keeping highest-score detections.

    Detections are visited in descending score order (ties keep input order). Each
    kept detection suppresses every later detection with the same label whose IoU
    with it exceeds `iou_threshold`.

    Returns:
        Kept detections in descending score order.
    """
    if not detections:
        return []

    ordered = sorted(detections, key=lambda d: d.score, reverse=True)
    corners = [as_corners(d.box) for d in ordered]
    suppressed: set[int] = set()
    kept: list[RawDetection] = []

    for i, current in enumerate(ordered):
        if i in suppressed:
            continue
        kept.append(current)
        for j in range(i + 1, len(ordered)):
            if j in suppressed:
                continue
            if ordered[j].label == current.label and iou(corners[i], corners[j]) > iou_threshold:
                suppressed.add(j)

    LOG.debug(
        "NMS: reduced %d -> %d detections (%d suppressed)",
        len(detections),
        len(kept),
        len(suppressed),
    )
    return kept
