"""Rendering and formatting of canonical detections."""

from __future__ import annotations

from pathlib import Path

from PIL import Image, ImageDraw, ImageFont

from .types import Detection

_COLOR_BY_CLASS: dict[str, tuple[int, int, int]] = {
    "car": (66, 135, 245),  # blue
    "truck": (60, 179, 113),  # green
    "bus": (220, 20, 60),  # crimson
    "motorcycle": (186, 85, 211),  # orchid
}
_DEFAULT_COLOR = (255, 165, 0)


def format_detection(det: Detection) -> str:
    """One-line description, e.g. ``car 95.0%``."""
    return f"{det.class_label} {det.display_confidence}"


def draw_detections(img: Image.Image, detections: list[Detection], out_path: Path) -> None:
    """Draw labeled detection boxes on a copy of `img` and save it to `out_path`."""
    vis = img.copy()
    dr = ImageDraw.Draw(vis)
    w, h = vis.size
    thickness = max(2, round(min(w, h) / 300))
    font_size = max(12, round(min(w, h) / 60))
    try:
        font = ImageFont.truetype("DejaVuSans.ttf", font_size)
    except OSError:  # pragma: no cover
        font = ImageFont.load_default()
    for det in detections:
        color = _COLOR_BY_CLASS.get(det.class_label.strip().lower(), _DEFAULT_COLOR)
        b = det.box.to_corners()
        x1, y1, x2, y2 = (round(b.xmin), round(b.ymin), round(b.xmax), round(b.ymax))
        dr.rectangle([x1, y1, x2, y2], width=thickness, outline=color)
        txt = format_detection(det)
        tx, ty = x1 + thickness, y1 + thickness
        bbox = dr.textbbox((tx, ty), txt, font=font)
        dr.rectangle(bbox, fill=(0, 0, 0))
        dr.text((tx, ty), txt, fill=(255, 255, 255), font=font)
    vis.save(out_path)
