"""Core vision data types shared across producers and pipelines."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Box:
    """Axis-aligned bounding box in corner form.

    Attributes:
        xmin, ymin, xmax, ymax: Absolute pixel coordinates in the source image frame.
    """

    xmin: float
    ymin: float
    xmax: float
    ymax: float

    def area(self) -> float:
        """Return the box area in pixels squared (0 for degenerate boxes)."""
        return max(0.0, self.xmax - self.xmin) * max(0.0, self.ymax - self.ymin)

    def to_center(self) -> CenterBox:
        """Convert to center form."""
        width = self.xmax - self.xmin
        height = self.ymax - self.ymin
        return CenterBox(
            x=self.xmin + width / 2.0,
            y=self.ymin + height / 2.0,
            width=width,
            height=height,
        )


@dataclass(frozen=True)
class CenterBox:
    """Axis-aligned bounding box in center form (x, y is the box center)."""

    x: float
    y: float
    width: float
    height: float

    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    def to_corners(self) -> Box:
        """Convert to corner form."""
        half_w = self.width / 2.0
        half_h = self.height / 2.0
        return Box(
            xmin=self.x - half_w,
            ymin=self.y - half_h,
            xmax=self.x + half_w,
            ymax=self.y + half_h,
        )


BoundingBox = Box | CenterBox


def as_corners(box: BoundingBox) -> Box:
    """Return `box` in corner form."""
    if isinstance(box, CenterBox):
        return box.to_corners()
    return box


def normalize_confidence(value: float) -> float:
    """Map a fraction or a percentage to a fraction in [0, 1].

    Values above 1 are taken to be percentages already.
    """
    value = float(value)
    if value > 1.0:
        return value / 100.0
    return value


def format_confidence(value: float) -> str:
    """Format a confidence (fraction or percentage) for display, e.g. ``87.0%``."""
    return f"{normalize_confidence(value) * 100.0:.1f}%"


@dataclass(frozen=True)
class RawDetection:
    """Producer output before normalization.

    Attributes:
        label: Class label as emitted by the detector.
        score: Confidence, either a fraction in [0, 1] or a percentage in [0, 100].
        box: Bounding box in either corner or center form.
    """

    label: str
    score: float
    box: BoundingBox


@dataclass(frozen=True)
class Detection:
    """Canonical detection produced by the normalizer.

    Attributes:
        class_label: Detector class label.
        confidence: Confidence as a fraction in [0, 1].
        box: Center-form box in pixels.
        detection_id: Identifier unique within one analysis run.
    """

    class_label: str
    confidence: float
    box: CenterBox
    detection_id: str

    @property
    def display_confidence(self) -> str:
        return format_confidence(self.confidence)


@dataclass(frozen=True)
class AnalysisResult:
    """Outcome of analyzing one image.

    Exactly one of `detections` / `error_message` is set, depending on `succeeded`.
    """

    source_name: str
    succeeded: bool
    detections: tuple[Detection, ...] | None = None
    error_message: str | None = None
    count: int | None = None
    failure_kind: str | None = None

    def __post_init__(self) -> None:
        if self.succeeded and (self.detections is None or self.error_message is not None):
            raise ValueError("A successful result carries detections and no error message.")
        if not self.succeeded and (self.detections is not None or self.error_message is None):
            raise ValueError("A failed result carries an error message and no detections.")

    @classmethod
    def success(
        cls,
        source_name: str,
        detections: list[Detection] | tuple[Detection, ...],
        *,
        count: int | None = None,
    ) -> AnalysisResult:
        dets = tuple(detections)
        return cls(
            source_name=source_name,
            succeeded=True,
            detections=dets,
            count=len(dets) if count is None else int(count),
        )

    @classmethod
    def failure(
        cls,
        source_name: str,
        error_message: str,
        *,
        failure_kind: str = "processing",
    ) -> AnalysisResult:
        return cls(
            source_name=source_name,
            succeeded=False,
            error_message=error_message,
            failure_kind=failure_kind,
        )


MAX_INLINE_FAILURES = 3


@dataclass(frozen=True)
class BatchSummary:
    """User-facing batch summary: headline counts plus capped failure detail."""

    succeeded: int
    failed: int
    lines: tuple[str, ...]

    @property
    def headline(self) -> str:
        return f"{self.succeeded} succeeded / {self.failed} failed"


@dataclass(frozen=True)
class BatchResult:
    """Per-image results, index-aligned with the analyzed inputs."""

    results: tuple[AnalysisResult, ...] = ()

    def __len__(self) -> int:
        return len(self.results)

    def __iter__(self):
        return iter(self.results)

    def __getitem__(self, index: int) -> AnalysisResult:
        return self.results[index]

    @property
    def succeeded(self) -> list[AnalysisResult]:
        return [r for r in self.results if r.succeeded]

    @property
    def failed(self) -> list[AnalysisResult]:
        return [r for r in self.results if not r.succeeded]

    def summary(self) -> BatchSummary:
        """Summarize the batch; failure detail is inlined for up to three images."""
        failed = self.failed
        if not failed:
            lines: tuple[str, ...] = ()
        elif len(failed) <= MAX_INLINE_FAILURES:
            lines = tuple(f"{r.source_name}: {r.error_message}" for r in failed)
        else:
            lines = (f"{len(failed)} images failed to analyze",)
        return BatchSummary(succeeded=len(self.succeeded), failed=len(failed), lines=lines)
