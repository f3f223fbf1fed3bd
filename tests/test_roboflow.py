from __future__ import annotations

import json
from collections.abc import Callable

import httpx
import pytest
from PIL import Image

from parkwatch.detectors.roboflow import RoboflowWorkflowClient
from parkwatch.errors import (
    AuthenticationError,
    MalformedResponseError,
    ProducerUnavailableError,
    classify_error,
)
from parkwatch.pipelines.analyze import analyze_batch
from parkwatch.vision.image import ImageSource

WORKFLOW_URL = "https://serverless.roboflow.com/cpe/workflows/detect-count"


def _image(name: str = "lot.jpg") -> ImageSource:
    return ImageSource.from_pil(name, Image.new("RGB", (32, 24)))


def _client(
    handler: Callable[[httpx.Request], httpx.Response], **kwargs: object
) -> RoboflowWorkflowClient:
    transport = httpx.MockTransport(handler)
    return RoboflowWorkflowClient(
        workspace="cpe",
        workflow_id="detect-count",
        client_factory=lambda **kw: httpx.Client(transport=transport, **kw),
        **kwargs,  # type: ignore[arg-type]
    )


def test_detect_posts_data_url_and_unwraps_array(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ROBOFLOW_API_KEY", "KEY")
    seen: list[dict[str, object]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        assert str(request.url) == WORKFLOW_URL
        body = json.loads(request.content)
        seen.append(body)
        return httpx.Response(
            200,
            json=[{"count_objects": 1, "predictions": {"predictions": [{"class": "car"}]}}],
        )

    out = _client(handler).detect(_image())
    assert out == {"count_objects": 1, "predictions": {"predictions": [{"class": "car"}]}}

    (body,) = seen
    assert body["api_key"] == "KEY"
    image = body["inputs"]["image"]  # type: ignore[index]
    assert image["type"] == "url"
    assert image["value"].startswith("data:image/jpeg;base64,")


def test_explicit_api_key_overrides_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ROBOFLOW_API_KEY", "ENV")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"api_key_seen": json.loads(request.content)["api_key"]})

    assert _client(handler, api_key="EXPLICIT").detect(_image()) == {"api_key_seen": "EXPLICIT"}


def test_missing_api_key_is_authentication_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("ROBOFLOW_API_KEY", raising=False)

    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover
        raise AssertionError("no request expected without an API key")

    with pytest.raises(AuthenticationError) as excinfo:
        _client(handler).detect(_image())
    assert classify_error(excinfo.value) == "authentication"


@pytest.mark.parametrize(
    ("status", "exc_type", "fragment"),
    [
        (401, AuthenticationError, "Unauthorized"),
        (403, AuthenticationError, "Forbidden"),
        (404, ProducerUnavailableError, "Not Found"),
        (405, ProducerUnavailableError, "Method Not Allowed"),
    ],
)
def test_known_http_errors_are_mapped(
    monkeypatch: pytest.MonkeyPatch, status: int, exc_type: type[Exception], fragment: str
) -> None:
    monkeypatch.setenv("ROBOFLOW_API_KEY", "KEY")
    client = _client(lambda request: httpx.Response(status, json={}))
    with pytest.raises(exc_type, match=fragment):
        client.detect(_image())


def test_other_http_errors_use_server_message(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ROBOFLOW_API_KEY", "KEY")
    client = _client(lambda request: httpx.Response(500, json={"message": "workflow crashed"}))
    with pytest.raises(ProducerUnavailableError, match="HTTP 500: workflow crashed"):
        client.detect(_image())


def test_transport_error_is_producer_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ROBOFLOW_API_KEY", "KEY")

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ProducerUnavailableError, match="Could not reach"):
        _client(handler).detect(_image())


def test_non_json_body_is_malformed(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ROBOFLOW_API_KEY", "KEY")
    client = _client(lambda request: httpx.Response(200, content=b"<html>gateway</html>"))
    with pytest.raises(MalformedResponseError):
        client.detect(_image())


def test_analyze_batch_with_workflow_client(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ROBOFLOW_API_KEY", "KEY")
    workflow_output = {
        "outputs": [
            {
                "count_objects": 3,
                "predictions": {
                    "image": {"width": 32, "height": 24},
                    "predictions": [
                        {
                            "x": 10,
                            "y": 12,
                            "width": 8,
                            "height": 6,
                            "confidence": 0.91,
                            "class": "car",
                            "detection_id": "abc",
                        }
                    ],
                },
            }
        ]
    }

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=workflow_output)

    batch = analyze_batch([_image("a.jpg"), _image("b.jpg")], _client(handler))
    assert [r.succeeded for r in batch] == [True, True]
    assert batch[0].count == 3
    (det,) = batch[0].detections or ()
    assert det.class_label == "car"
    assert det.display_confidence == "91.0%"


def test_analyze_batch_rejected_key_is_reported(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ROBOFLOW_API_KEY", "WRONG")
    batch = analyze_batch([_image()], _client(lambda request: httpx.Response(401, json={})))
    (result,) = batch
    assert not result.succeeded
    assert result.failure_kind == "authentication"
    assert "ROBOFLOW_API_KEY" in (result.error_message or "")
