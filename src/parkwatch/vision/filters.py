"""Candidate selection: vehicle filter followed by the confidence gate."""

from __future__ import annotations

import logging
from typing import Final

from .labels import VEHICLE_CLASSES, is_vehicle_class
from .types import RawDetection

LOG = logging.getLogger(__name__)

DEFAULT_MIN_SCORE: Final[float] = 0.90


def meets_threshold(detection: RawDetection, min_score: float = DEFAULT_MIN_SCORE) -> bool:
    """Return True iff the detection score is at least `min_score`."""
    return detection.score >= min_score


def select_candidates(
    detections: list[RawDetection],
    *,
    min_score: float = DEFAULT_MIN_SCORE,
    classes: tuple[str, ...] = VEHICLE_CLASSES,
) -> list[RawDetection]:
    """Keep vehicle detections that pass the confidence gate.

    The class filter runs first so non-vehicle labels never show up in the
    low-confidence count.
    """
    vehicles = [d for d in detections if is_vehicle_class(d.label, classes)]
    confident = [d for d in vehicles if meets_threshold(d, min_score)]
    LOG.debug(
        "Candidates: %d raw -> %d vehicles -> %d with score >= %.2f (%d low confidence)",
        len(detections),
        len(vehicles),
        len(confident),
        min_score,
        len(vehicles) - len(confident),
    )
    return confident
