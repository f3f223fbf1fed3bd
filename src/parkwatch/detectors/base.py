"""Detection producer protocol and the lazily-built detector handle."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any, Protocol

from parkwatch.errors import DetectionError, ProducerUnavailableError, describe_error
from parkwatch.vision.image import ImageSource

LOG = logging.getLogger(__name__)


class SupportsDetection(Protocol):
    """Protocol for a detection producer (remote API or in-process model)."""

    def detect(self, image: ImageSource) -> Any:
        """Return a raw, shape-varying detection payload for `image`."""
        ...


class LazyDetector:
    """Owns an expensive detector that is built on first use and then reused.

    Construction runs under a lock so concurrent first calls build it once. A
    failed construction is not cached: it is raised to the caller that needed
    the detector, and the next call tries again.
    """

    def __init__(self, factory: Callable[[], SupportsDetection], *, name: str = "detector") -> None:
        self._factory = factory
        self._name = name
        self._instance: SupportsDetection | None = None
        self._lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self._instance is not None

    def get(self) -> SupportsDetection:
        """Return the detector, building it if needed.

        Raises:
            ProducerUnavailableError: If the detector cannot be constructed.
        """
        with self._lock:
            if self._instance is None:
                LOG.info("Initializing %s (first use)", self._name)
                try:
                    self._instance = self._factory()
                except DetectionError:
                    raise
                except Exception as e:
                    raise ProducerUnavailableError(
                        f"Failed to load detection model {self._name!r}. "
                        f"Error: {describe_error(e)}"
                    ) from e
                LOG.info("%s initialized", self._name)
            return self._instance

    def detect(self, image: ImageSource) -> Any:
        return self.get().detect(image)
