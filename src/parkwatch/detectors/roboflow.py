"""Roboflow serverless workflow client used as a remote detection producer."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Final

import httpx

from parkwatch.errors import AuthenticationError, MalformedResponseError, ProducerUnavailableError
from parkwatch.vision.image import ImageSource

LOG = logging.getLogger(__name__)
DEFAULT_API_BASE: Final[str] = "https://serverless.roboflow.com"
DEFAULT_API_KEY_ENV: Final[str] = "ROBOFLOW_API_KEY"
DEFAULT_TIMEOUT_S: Final[float] = 60.0

_STATUS_MESSAGES: Final[dict[int, tuple[type[Exception], str]]] = {
    401: (
        AuthenticationError,
        "Unauthorized: Invalid or missing API key. Please check your Roboflow API key.",
    ),
    403: (
        AuthenticationError,
        "Forbidden: API key does not have permission to access this workflow.",
    ),
    404: (
        ProducerUnavailableError,
        "Not Found: The specified workflow does not exist or is not accessible.",
    ),
    405: (
        ProducerUnavailableError,
        "Method Not Allowed: The endpoint URL may be incorrect. "
        "Please verify the workflow URL format.",
    ),
}


@dataclass(slots=True)
class RoboflowWorkflowClient:
    """Run images through a Roboflow serverless workflow.

    Attributes:
        workspace: Roboflow workspace name (for example, "cpe").
        workflow_id: Workflow slug (for example, "detect-count-and-visualize-3").
        api_base: Base URL for the serverless API.
        api_key_env: Name of the environment variable holding the API key.
        api_key: Explicit API key; takes precedence over the environment.
        timeout_s: HTTP timeout for a single workflow run.
    """

    workspace: str
    workflow_id: str
    api_base: str = DEFAULT_API_BASE
    api_key_env: str = DEFAULT_API_KEY_ENV
    api_key: str | None = None
    timeout_s: float = DEFAULT_TIMEOUT_S
    client_factory: Callable[..., httpx.Client] = httpx.Client

    def get_api_key(self) -> str:
        """Return the API key, from the field or the configured environment variable.

        Raises:
            AuthenticationError: If no key is configured.
        """
        api_key = self.api_key or os.getenv(self.api_key_env)
        if not api_key:
            raise AuthenticationError(
                f"Unauthorized: missing API key ({self.api_key_env} is not set)"
            )
        return api_key

    def build_workflow_url(self) -> str:
        """Build the workflow endpoint URL."""
        return f"{self.api_base.rstrip('/')}/{self.workspace}/workflows/{self.workflow_id}"

    @staticmethod
    def build_payload(image: ImageSource, api_key: str) -> dict[str, Any]:
        """Build the workflow request body; the image travels as a data URL."""
        return {
            "api_key": api_key,
            "inputs": {"image": {"type": "url", "value": image.to_data_url()}},
        }

    @staticmethod
    def _error_detail(resp: httpx.Response) -> str:
        try:
            body = resp.json()
        except ValueError:
            return resp.reason_phrase
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        return resp.reason_phrase

    def _raise_for_status(self, resp: httpx.Response) -> None:
        if resp.is_success:
            return
        LOG.error("Workflow request failed: status=%s body=%s", resp.status_code, resp.text[:500])
        known = _STATUS_MESSAGES.get(resp.status_code)
        if known is not None:
            exc_type, message = known
            raise exc_type(message)
        raise ProducerUnavailableError(f"HTTP {resp.status_code}: {self._error_detail(resp)}")

    def detect(self, image: ImageSource) -> Any:
        """Run the workflow on `image` and return its JSON output.

        A top-level array response is unwrapped to its first element.

        Raises:
            AuthenticationError: If the key is missing or rejected (401/403).
            ProducerUnavailableError: On transport errors or other HTTP failures.
            MalformedResponseError: If the body is not JSON.
        """
        api_key = self.get_api_key()
        url = self.build_workflow_url()
        payload = self.build_payload(image, api_key)
        LOG.info(
            "Running workflow %s on image=%s (%d bytes)", url, image.name, len(image.data)
        )

        try:
            with self.client_factory(timeout=self.timeout_s) as client:
                resp = client.post(url, json=payload)
        except httpx.TransportError as e:
            raise ProducerUnavailableError(f"Could not reach workflow endpoint {url}: {e}") from e

        self._raise_for_status(resp)
        try:
            result = resp.json()
        except ValueError as e:
            raise MalformedResponseError(f"Workflow returned a non-JSON body: {e}") from e

        LOG.debug("Workflow response for image=%s: %s", image.name, result)
        if isinstance(result, list) and result:
            LOG.debug("Workflow returned an array, unwrapping first element")
            result = result[0]
        return result
