"""HuggingFace DETR wrapper used as an in-process vehicle detector."""

import threading
from collections.abc import Callable
from typing import Any, Final

from PIL import Image

from parkwatch.pipelines.vehicles import VehicleFilterParams, postprocess, to_prediction_payload
from parkwatch.vision.image import ImageSource
from parkwatch.vision.types import Box, RawDetection

DEFAULT_DETR_MODEL: Final[str] = "facebook/detr-resnet-50"


class DetrVehicleDetector:
    """Thin wrapper around HF DETR that emits post-processed vehicle payloads."""

    def __init__(
        self,
        model_id: str = DEFAULT_DETR_MODEL,
        device: str = "auto",
        *,
        params: VehicleFilterParams | None = None,
        torch_module: Any | None = None,
        processor: Any | None = None,
        model: Any | None = None,
        processor_factory: Callable[[str], Any] | None = None,
        model_factory: Callable[[str], Any] | None = None,
    ) -> None:
        """Initialize the detector.

        Args:
            model_id: HuggingFace model id.
            device: "auto", "cpu", or "cuda".
            params: Vehicle filter / NMS parameters.
            torch_module: Optional torch-like module for dependency injection.
            processor: Optional pre-built image processor.
            model: Optional pre-built model.
            processor_factory: Factory to build the processor from `model_id`.
            model_factory: Factory to build the model from `model_id`.
        """
        if torch_module is None:
            import torch as torch_module  # local import to keep module import lightweight

        if device == "auto":
            device = "cuda" if torch_module.cuda.is_available() else "cpu"

        if processor is None and processor_factory is None:
            from transformers import AutoImageProcessor

            processor_factory = AutoImageProcessor.from_pretrained
        if model is None and model_factory is None:
            from transformers import AutoModelForObjectDetection

            model_factory = AutoModelForObjectDetection.from_pretrained

        self.torch = torch_module
        self.device = device
        self.params = params or VehicleFilterParams()
        self.processor: Any = processor if processor is not None else processor_factory(model_id)
        self.model = model if model is not None else model_factory(model_id)
        self.model.to(device)
        self.model.eval()
        self._lock = threading.Lock()

    def _label_name(self, label_id: Any) -> str:
        id2label = getattr(getattr(self.model, "config", None), "id2label", None) or {}
        return str(id2label.get(int(label_id), label_id))

    def detect_raw(self, img: Image.Image) -> list[RawDetection]:
        """Run DETR on `img` and return detections above the score threshold."""
        w, h = img.size
        inputs = self.processor(images=img, return_tensors="pt")
        inputs = {k: v.to(self.device) for k, v in inputs.items()}

        # Inference is serialized; one model instance serves all concurrent analyses.
        with self._lock, self.torch.inference_mode():
            outputs = self.model(**inputs)

        target_sizes = self.torch.tensor([[h, w]], device=self.device)
        results = self.processor.post_process_object_detection(
            outputs,
            threshold=float(self.params.min_score),
            target_sizes=target_sizes,
        )

        r0 = results[0]
        out: list[RawDetection] = []
        for (x1, y1, x2, y2), sc, lab in zip(
            r0["boxes"].tolist(), r0["scores"].tolist(), r0["labels"].tolist(), strict=False
        ):
            out.append(
                RawDetection(
                    label=self._label_name(lab),
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
        return to_prediction_payload(kept, image_w=w, image_h=h, source="detr")
