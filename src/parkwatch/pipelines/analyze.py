"""Batch analysis: run a detection producer over images and normalize the results.

Every image is analyzed concurrently and in isolation. A failure in one image
becomes a failed :class:`AnalysisResult` for that image and never affects the
others. Results come back in input order.
"""

from __future__ import annotations

import itertools
import json
import logging
import time
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Any

import yaml

from parkwatch.detectors.base import SupportsDetection
from parkwatch.errors import PerImageFailure
from parkwatch.vision.image import ImageSource, ensure_dir
from parkwatch.vision.normalize import normalize_response
from parkwatch.vision.types import AnalysisResult, BatchResult, Detection
from parkwatch.vision.vis import draw_detections

LOG = logging.getLogger(__name__)

ImageInput = ImageSource | Path | str

_RUN_COUNTER = itertools.count(1)


def _new_run_id() -> str:
    return f"run{next(_RUN_COUNTER)}-{int(time.time() * 1000)}"


def _source_name(image: ImageInput) -> str:
    if isinstance(image, ImageSource):
        return image.name
    return Path(image).name


def _as_source(image: ImageInput) -> ImageSource:
    if isinstance(image, ImageSource):
        return image
    return ImageSource.from_path(image)


def analyze_image(
    image: ImageInput,
    producer: SupportsDetection,
    *,
    id_prefix: str = "det",
) -> AnalysisResult:
    """Analyze a single image; errors propagate to the caller."""
    source = _as_source(image)
    response = producer.detect(source)
    normalized = normalize_response(response, id_prefix=id_prefix)
    LOG.info(
        "Analyzed image=%s: %d detections (count=%d)",
        source.name,
        len(normalized.detections),
        normalized.count,
    )
    return AnalysisResult.success(source.name, normalized.detections, count=normalized.count)


def _failure_result(source_name: str, exc: BaseException) -> AnalysisResult:
    failure = PerImageFailure(source_name, exc)
    return AnalysisResult.failure(source_name, failure.user_message, failure_kind=failure.kind)


def analyze_batch(
    images: Sequence[ImageInput],
    producer: SupportsDetection,
    *,
    max_workers: int | None = None,
    timeout_s: float | None = None,
) -> BatchResult:
    """Analyze `images` concurrently with `producer`.

    Args:
        images: Image handles or paths. Paths are read inside each analysis, so an
            unreadable file only fails its own entry.
        producer: Detection producer shared by all analyses.
        max_workers: Thread pool size; defaults to one thread per image.
        timeout_s: Optional per-image time limit, counted from batch start. An
            analysis that exceeds it is reported as a "timeout" failure.

    Returns:
        A :class:`BatchResult` index-aligned with `images`. Never raises for
        per-image failures.
    """
    if not images:
        return BatchResult()

    run_id = _new_run_id()
    names = [_source_name(im) for im in images]
    results: list[AnalysisResult | None] = [None] * len(images)
    deadline = None if timeout_s is None else time.monotonic() + float(timeout_s)
    timed_out = False

    LOG.info("Batch %s: analyzing %d images", run_id, len(images))
    executor = ThreadPoolExecutor(
        max_workers=max_workers or len(images),
        thread_name_prefix="parkwatch-analyze",
    )
    try:
        futures: list[Future[AnalysisResult]] = [
            executor.submit(analyze_image, im, producer, id_prefix=f"{run_id}-{i}")
            for i, im in enumerate(images)
        ]
        for i, fut in enumerate(futures):
            if deadline is not None:
                wait([fut], timeout=max(0.0, deadline - time.monotonic()))
                # A TimeoutError raised by the producer itself leaves the future done.
                if not fut.done():
                    timed_out = True
                    fut.cancel()
                    LOG.warning("Analysis timed out for image=%s", names[i])
                    results[i] = _failure_result(
                        names[i], TimeoutError(f"Analysis timed out after {timeout_s:.1f}s")
                    )
                    continue
            try:
                results[i] = fut.result()
            except Exception as e:
                LOG.exception("Analysis failed for image=%s", names[i])
                results[i] = _failure_result(names[i], e)
    finally:
        # Do not block on analyses that already exceeded their deadline.
        executor.shutdown(wait=not timed_out, cancel_futures=True)

    batch = BatchResult(results=tuple(r for r in results if r is not None))
    LOG.info("Batch %s: %s", run_id, batch.summary().headline)
    return batch


def _detection_to_dict(det: Detection) -> dict[str, Any]:
    return {
        "detection_id": det.detection_id,
        "class": det.class_label,
        "confidence": float(det.confidence),
        "display_confidence": det.display_confidence,
        "x": float(det.box.x),
        "y": float(det.box.y),
        "width": float(det.box.width),
        "height": float(det.box.height),
    }


def write_batch_outputs(
    batch: BatchResult,
    images: Sequence[ImageInput],
    out_root: Path,
    *,
    draw: bool = True,
) -> Path:
    """Write per-image JSON, annotated images and `summary.yaml` under `out_root`.

    Returns:
        Path to the written `summary.yaml`.
    """
    if len(batch) != len(images):
        raise ValueError(f"batch has {len(batch)} results for {len(images)} images")

    ensure_dir(out_root)
    entries: list[dict[str, object]] = []
    for i, (result, image) in enumerate(zip(batch, images, strict=True)):
        stem = f"{i:03d}_{Path(result.source_name).stem}"
        if not result.succeeded:
            entries.append(
                {
                    "image": result.source_name,
                    "succeeded": False,
                    "failure_kind": result.failure_kind,
                    "error": result.error_message,
                }
            )
            continue

        detections = list(result.detections or ())
        payload = {
            "image": result.source_name,
            "count": result.count,
            "detections": [_detection_to_dict(d) for d in detections],
        }
        (out_root / f"{stem}.json").write_text(json.dumps(payload, indent=2), encoding="utf-8")

        annotated: str | None = None
        if draw:
            out_path = out_root / f"{stem}.annotated.jpg"
            try:
                draw_detections(_as_source(image).to_pil(), detections, out_path)
            except OSError:
                LOG.warning("Could not render detections for image=%s", result.source_name)
            else:
                annotated = str(out_path)

        entries.append(
            {
                "image": result.source_name,
                "succeeded": True,
                "count": result.count,
                "detections": payload["detections"],
                "annotated": annotated,
            }
        )

    summary = batch.summary()
    dumped = yaml.safe_dump(
        {
            "summary": {
                "succeeded": summary.succeeded,
                "failed": summary.failed,
                "headline": summary.headline,
                "details": list(summary.lines),
            },
            "images": entries,
        },
        sort_keys=False,
    )
    summary_path = out_root / "summary.yaml"
    summary_path.write_text(dumped, encoding="utf-8")
    return summary_path
