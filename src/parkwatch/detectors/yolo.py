import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from PIL import Image

from parkwatch.pipelines.vehicles import VehicleFilterParams, postprocess, to_prediction_payload
from parkwatch.vision.image import ImageSource
from parkwatch.vision.types import Box, RawDetection

LOG = logging.getLogger(__name__)


def _load_yolo(weights: str) -> Any:
    from ultralytics import YOLO

    return YOLO(weights)  # type: ignore[no-untyped-call]


@dataclass
class YoloVehicleDetector:
    """Wrapper around Ultralytics YOLO used as an in-process vehicle detector.

    Attributes:
        weights: Path to a checkpoint, such as ``yolov8s.pt`` or a fine-tuned ``best.pt``.
        device: Device selector understood by Ultralytics, for example:
            "0" for first GPU, "cpu" for CPU only, or None for auto.
        img_size: Optional input image size (square). If None, Ultralytics
            will use its default.
        params: Vehicle filter / NMS parameters. ``params.min_score`` is also
            passed to Ultralytics as its confidence threshold.
        model_factory: Builds the model from the weights path.
    """

    weights: Path
    device: str | None = None
    img_size: int | None = None
    params: VehicleFilterParams = field(default_factory=VehicleFilterParams)
    model_factory: Callable[[str], Any] = _load_yolo

    def __post_init__(self) -> None:
        self.weights = Path(self.weights).expanduser().resolve()
        if not self.weights.is_file():
            raise FileNotFoundError(f"weights file not found: {self.weights}")

        LOG.info("Loading YOLO model for inference: %s", self.weights)
        self._model = self.model_factory(str(self.weights))
        self._lock = threading.Lock()

    def detect_raw(self, img: Image.Image) -> list[RawDetection]:
        """Run YOLO on `img` and return detections above the score threshold."""
        predict_args: dict[str, Any] = {
            "source": img,
            "conf": float(self.params.min_score),
            "device": self.device,
            "verbose": False,
        }
        if self.img_size is not None:
            predict_args["imgsz"] = self.img_size

        with self._lock:
            results = self._model.predict(**predict_args)  # type: ignore[no-untyped-call]

        out: list[RawDetection] = []
        if not results:
            return out
        r0 = results[0]
        names = r0.names
        boxes = r0.boxes
        for (x1, y1, x2, y2), sc, cls in zip(
            boxes.xyxy.tolist(), boxes.conf.tolist(), boxes.cls.tolist(), strict=False
        ):
            out.append(
                RawDetection(
                    label=str(names.get(int(cls), cls)),
                    score=float(sc),
                    box=Box(xmin=float(x1), ymin=float(y1), xmax=float(x2), ymax=float(y2)),
                )
            )
        return out

    def detect(self, image: ImageSource) -> dict[str, Any]:
        """Detect vehicles in `image` and return a workflow-style payload."""
        img = image.to_pil()
        kept = postprocess(self.detect_raw(img), self.params)
        w, h = img.size
        return to_prediction_payload(kept, image_w=w, image_h=h, source="yolo")
