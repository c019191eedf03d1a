from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

import logo_eraser.detectors.vlm_litellm as vlm
from logo_eraser.detectors.http_api import DETECT_ROUTE, TRACK_ROUTE, HttpDetectionClient
from logo_eraser.detectors.vlm_litellm import VlmDetector, parse_entry_list
from logo_eraser.errors import DetectionServiceError
from logo_eraser.vision.types import PixelBox, VideoInfo

INFO = VideoInfo(width=1920, height=1080, duration=10.0)
REF = PixelBox(x=1700, y=980, w=200, h=80)


def _completion(text: str) -> dict[str, Any]:
    return {
        "choices": [{"message": {"content": text}, "finish_reason": "stop"}],
        "usage": {"total_tokens": 10},
    }


def test_parse_entry_list_variants() -> None:
    body = '[{"ts": "00:00", "boxes": []}]'
    assert parse_entry_list(body, what="Detection") == [{"ts": "00:00", "boxes": []}]
    fenced = f"Here you go:\n```json\n{body}\n```\nDone."
    assert parse_entry_list(fenced, what="Detection") == [{"ts": "00:00", "boxes": []}]
    noisy = f"Result: {body} (end)"
    assert parse_entry_list(noisy, what="Detection") == [{"ts": "00:00", "boxes": []}]


@pytest.mark.parametrize("bad", ["", "not json", '{"ts": "00:00"}', "[1, 2]"])
def test_parse_entry_list_rejects_malformed(bad: str) -> None:
    with pytest.raises(DetectionServiceError):
        parse_entry_list(bad, what="Detection")


def test_vlm_detect_sends_video_and_parses_answer(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[dict[str, Any]] = []

    def _fake_completion(**kwargs: Any) -> dict[str, Any]:
        calls.append(kwargs)
        return _completion(
            '```json\n[{"ts": "00:00", "boxes": [{"label": "watermark", '
            '"box_2d": [100, 100, 200, 300], "score": 0.9}]}]\n```'
        )

    monkeypatch.setattr(vlm.litellm, "completion", _fake_completion)
    out = VlmDetector(model="gemini/test").detect(b"video-bytes", "video/mp4", 2.0)

    assert out[0]["boxes"][0]["box_2d"] == [100, 100, 200, 300]
    assert calls[0]["model"] == "gemini/test"
    content = calls[0]["messages"][0]["content"]
    assert "2.0 FPS" in content[0]["text"]
    assert content[1]["file"]["file_data"].startswith("data:video/mp4;base64,")


def test_vlm_track_prompt_carries_reference(monkeypatch: pytest.MonkeyPatch) -> None:
    prompts: list[str] = []

    def _fake_completion(**kwargs: Any) -> dict[str, Any]:
        prompts.append(kwargs["messages"][0]["content"][0]["text"])
        return _completion(
            '[{"ts": "00:01", "box": {"x": 1, "y": 2, "w": 3, "h": 4}, "confidence": 0.5}]'
        )

    monkeypatch.setattr(vlm.litellm, "completion", _fake_completion)
    out = VlmDetector().track(b"v", "video/webm", REF, INFO, 1.0)

    assert out == [{"ts": "00:01", "box": {"x": 1, "y": 2, "w": 3, "h": 4}, "confidence": 0.5}]
    assert "Position: (1700, 980)" in prompts[0]
    assert "Size: 200 x 80" in prompts[0]
    assert "1920x1080" in prompts[0]


def test_vlm_provider_failure_is_a_detection_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def _boom(**kwargs: Any) -> dict[str, Any]:
        raise RuntimeError("quota exceeded")

    monkeypatch.setattr(vlm.litellm, "completion", _boom)
    with pytest.raises(DetectionServiceError, match="quota exceeded"):
        VlmDetector().detect(b"v", "video/mp4", 1.0)


def test_vlm_malformed_answer_is_a_detection_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(vlm.litellm, "completion", lambda **kw: _completion("I could not see it."))
    with pytest.raises(DetectionServiceError):
        VlmDetector().detect(b"v", "video/mp4", 1.0)


def _client(handler: Any) -> HttpDetectionClient:
    transport = httpx.MockTransport(handler)
    return HttpDetectionClient(
        api_base="http://svc/",
        client_factory=lambda **kw: httpx.Client(transport=transport, **kw),
    )


def test_http_detect_posts_multipart() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"detections": [{"ts": "00:00", "boxes": []}]})

    out = _client(handler).detect(b"video-bytes", "video/mp4", 2.0)
    assert out == [{"ts": "00:00", "boxes": []}]
    req = seen[0]
    assert req.url == httpx.URL("http://svc" + DETECT_ROUTE)
    body = req.content
    assert b'name="samplingFps"' in body
    assert b"video-bytes" in body


def test_http_track_sends_reference_box() -> None:
    seen: list[bytes] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == TRACK_ROUTE
        seen.append(request.content)
        return httpx.Response(200, json={"trackingData": []})

    assert _client(handler).track(b"v", "video/mp4", REF, INFO, 1.0) == []
    assert json.dumps({"x": 1700, "y": 980, "w": 200, "h": 80}).encode() in seen[0]


def test_http_error_body_is_surfaced() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": "Failed to detect watermark"})

    with pytest.raises(DetectionServiceError, match="Failed to detect watermark"):
        _client(handler).detect(b"v", "video/mp4", 1.0)


def test_http_transport_error_is_a_detection_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(DetectionServiceError, match="connection refused"):
        _client(handler).detect(b"v", "video/mp4", 1.0)


def test_http_malformed_body_is_a_detection_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>oops</html>")

    with pytest.raises(DetectionServiceError):
        _client(handler).detect(b"v", "video/mp4", 1.0)
