#!/usr/bin/env python3
"""Batch runner: detect vehicles in a folder of images and write a summary.

Core logic lives in `parkwatch.pipelines.analyze`. This script only wires the
chosen detection producer from CLI flags and environment variables.
"""

import argparse
import logging
import os
import sys
from pathlib import Path

from parkwatch.detectors.base import LazyDetector, SupportsDetection
from parkwatch.detectors.detr_hf import DEFAULT_DETR_MODEL, DetrVehicleDetector
from parkwatch.detectors.roboflow import RoboflowWorkflowClient
from parkwatch.detectors.yolo import YoloVehicleDetector
from parkwatch.pipelines.analyze import analyze_batch, write_batch_outputs
from parkwatch.pipelines.vehicles import DEFAULT_NMS_IOU, VehicleFilterParams
from parkwatch.vision.filters import DEFAULT_MIN_SCORE

LOG = logging.getLogger("analyze_images")

DEFAULT_WORKSPACE = "cpe"
DEFAULT_WORKFLOW = "detect-count-and-visualize-3"


def _iter_images(images_dir: Path) -> list[Path]:
    exts = {".jpg", ".jpeg", ".png"}
    return sorted(p for p in images_dir.iterdir() if p.is_file() and p.suffix.lower() in exts)


def _build_producer(backend: str) -> SupportsDetection:
    params = VehicleFilterParams(
        min_score=float(os.environ.get("MIN_SCORE", str(DEFAULT_MIN_SCORE))),
        iou_threshold=float(os.environ.get("NMS_IOU", str(DEFAULT_NMS_IOU))),
    )
    if backend == "roboflow":
        return RoboflowWorkflowClient(
            workspace=os.environ.get("ROBOFLOW_WORKSPACE", DEFAULT_WORKSPACE),
            workflow_id=os.environ.get("ROBOFLOW_WORKFLOW", DEFAULT_WORKFLOW),
        )
    if backend == "detr":
        model_id = os.environ.get("DETR_MODEL", DEFAULT_DETR_MODEL)
        device = os.environ.get("DETR_DEVICE", "auto")
        return LazyDetector(
            lambda: DetrVehicleDetector(model_id=model_id, device=device, params=params),
            name=model_id,
        )
    if backend == "yolo":
        weights = os.environ.get("YOLO_WEIGHTS", "yolov8s.pt")
        return LazyDetector(
            lambda: YoloVehicleDetector(weights=Path(weights), params=params),
            name=weights,
        )
    raise SystemExit(f"Unknown backend: {backend!r}")


def main(argv: list[str]) -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--images_dir", type=str, default="assets/images")
    ap.add_argument("--out_root", type=str, default="outputs/analysis")
    ap.add_argument("--backend", choices=("roboflow", "detr", "yolo"), default="roboflow")
    ap.add_argument("--no_draw", action="store_true")
    ap.add_argument("--verbose", action="store_true")
    args = ap.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(message)s")

    images_dir = Path(args.images_dir).expanduser().resolve()
    if not images_dir.is_dir():
        raise SystemExit(f"--images_dir is not a directory: {images_dir}")

    images = _iter_images(images_dir)
    if not images:
        raise SystemExit(f"No JPG/PNG images found under: {images_dir}")

    timeout_env = os.environ.get("IMAGE_TIMEOUT_S")
    workers_env = os.environ.get("MAX_WORKERS")

    batch = analyze_batch(
        images,
        _build_producer(args.backend),
        max_workers=int(workers_env) if workers_env else None,
        timeout_s=float(timeout_env) if timeout_env else None,
    )
    summary_path = write_batch_outputs(
        batch,
        images,
        Path(args.out_root).expanduser().resolve(),
        draw=not args.no_draw,
    )

    summary = batch.summary()
    LOG.info("%s", summary.headline)
    for line in summary.lines:
        LOG.info("  %s", line)
    LOG.info("Summary written to: %s", summary_path)
    return 1 if summary.failed else 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
