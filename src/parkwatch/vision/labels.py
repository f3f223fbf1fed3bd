"""Label utilities (normalization, vehicle taxonomy matching)."""

from __future__ import annotations

from typing import Final

# COCO class names treated as vehicles.
VEHICLE_CLASSES: Final[tuple[str, ...]] = (
    "car",
    "motorcycle",
    "airplane",
    "bus",
    "train",
    "truck",
    "boat",
    "bicycle",
)


def _norm(s: str) -> str:
    return s.strip().lower()


def is_vehicle_class(label: str, classes: tuple[str, ...] = VEHICLE_CLASSES) -> bool:
    """Return True if `label` names a vehicle.

    Matching is a case-insensitive substring test after trimming, so compound
    labels such as "Police Car" or "pickup_truck" still match.
    """
    raw = _norm(label)
    if not raw:
        return False
    return any(c in raw for c in classes)
