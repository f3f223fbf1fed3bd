"""Error taxonomy for detection producers and batch analysis."""

from __future__ import annotations

from typing import Final

AUTH_HINT: Final[str] = (
    "Check that the ROBOFLOW_API_KEY environment variable holds a valid API key."
)

_AUTH_MARKERS: Final[tuple[str, ...]] = ("unauthorized", "api key")


class DetectionError(Exception):
    """Base class for detection failures."""


class AuthenticationError(DetectionError):
    """The producer credential is missing or was rejected."""


class ProducerUnavailableError(DetectionError):
    """The producer could not be reached or its model could not be loaded."""


class MalformedResponseError(DetectionError):
    """The producer response could not be parsed at all."""


class PerImageFailure(DetectionError):
    """A failure scoped to the analysis of a single image.

    Attributes:
        source_name: Name of the image whose analysis failed.
        cause: Underlying exception.
    """

    def __init__(self, source_name: str, cause: BaseException) -> None:
        self.source_name = source_name
        self.cause = cause
        super().__init__(f"{source_name}: {describe_error(cause)}")

    @property
    def kind(self) -> str:
        return classify_error(self.cause)

    @property
    def user_message(self) -> str:
        """Message shown to the user; authentication failures carry a credential hint."""
        message = describe_error(self.cause)
        if self.kind == "authentication":
            return f"{message} {AUTH_HINT}"
        return message


def describe_error(exc: BaseException) -> str:
    """Return the exception text, falling back to its type name."""
    text = str(exc).strip()
    return text or type(exc).__name__


def is_authentication_error(exc: BaseException) -> bool:
    """Return True if `exc` signals a missing or rejected credential."""
    if isinstance(exc, AuthenticationError):
        return True
    text = str(exc).lower()
    return any(marker in text for marker in _AUTH_MARKERS)


def classify_error(exc: BaseException) -> str:
    """Classify `exc` into a failure kind for per-image reporting.

    Returns one of "authentication", "timeout", "unavailable", "malformed" or
    "processing".
    """
    if is_authentication_error(exc):
        return "authentication"
    if isinstance(exc, TimeoutError):
        return "timeout"
    if isinstance(exc, ProducerUnavailableError):
        return "unavailable"
    if isinstance(exc, MalformedResponseError):
        return "malformed"
    return "processing"
