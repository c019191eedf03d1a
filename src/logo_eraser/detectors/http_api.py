"""Client for a remote detection endpoint exposing the watermark-detection routes."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Final

import httpx
import pydantic
from pydantic import BaseModel, ConfigDict, Field

from logo_eraser.errors import DetectionServiceError
from logo_eraser.vision.types import PixelBox, VideoInfo

LOG = logging.getLogger(__name__)
DEFAULT_API_BASE: Final[str] = "http://localhost:3000"
DETECT_ROUTE: Final[str] = "/api/detect-watermark"
TRACK_ROUTE: Final[str] = "/api/track-watermark"


class _DetectBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    detections: list[dict[str, Any]] = Field(default_factory=list)


class _TrackBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    trackingData: list[dict[str, Any]] = Field(default_factory=list)  # noqa: N815


def _error_message(resp: httpx.Response) -> str:
    """Pull the `{"error": ...}` message out of a failed response, if any."""
    try:
        data = resp.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return resp.text[:200] or resp.reason_phrase
    if isinstance(data, dict) and isinstance(data.get("error"), str):
        return data["error"]
    return resp.reason_phrase


@dataclass(slots=True)
class HttpDetectionClient:
    """Detection/tracking collaborator reached over HTTP.

    Attributes:
        api_base: Base URL of the service (routes are appended to it).
        timeout_s: Request timeout; video analysis can take a while.
        client_factory: Factory for the underlying `httpx.Client`, injectable
            for tests (e.g. with an `httpx.MockTransport`).
    """

    api_base: str = DEFAULT_API_BASE
    timeout_s: float = 300.0
    client_factory: Callable[..., httpx.Client] = httpx.Client

    def _post(
        self,
        route: str,
        video: bytes,
        mime_type: str,
        data: dict[str, str],
        what: str,
    ) -> httpx.Response:
        url = self.api_base.rstrip("/") + route
        files = {"video": ("video", video, mime_type)}
        LOG.info("POST %s (%s, %.1fMB)", url, what, len(video) / 1e6)
        try:
            with self.client_factory(timeout=self.timeout_s) as client:
                resp = client.post(url, data=data, files=files)
                resp.read()
        except httpx.HTTPError as e:
            raise DetectionServiceError(f"{what} request to {url} failed: {e}") from e
        if resp.status_code >= 400:
            raise DetectionServiceError(
                f"{what} service error (HTTP {resp.status_code}): {_error_message(resp)}"
            )
        return resp

    def detect(self, video: bytes, mime_type: str, sample_fps: float) -> list[dict[str, Any]]:
        """Return raw `{ts, boxes}` entries for the whole video."""
        resp = self._post(
            DETECT_ROUTE, video, mime_type, {"samplingFps": f"{sample_fps:g}"}, "Detection"
        )
        try:
            body = _DetectBody.model_validate_json(resp.content)
        except pydantic.ValidationError as e:
            raise DetectionServiceError(
                f"Detection service returned a malformed body: {resp.text[:200]!r}"
            ) from e
        return body.detections

    def track(
        self,
        video: bytes,
        mime_type: str,
        reference: PixelBox,
        info: VideoInfo,
        sample_fps: float,
    ) -> list[dict[str, Any]]:
        """Return raw `{ts, box, confidence}` entries following `reference`."""
        _ = info
        ref = {"x": reference.x, "y": reference.y, "w": reference.w, "h": reference.h}
        resp = self._post(
            TRACK_ROUTE,
            video,
            mime_type,
            {"samplingFps": f"{sample_fps:g}", "referenceBox": json.dumps(ref)},
            "Tracking",
        )
        try:
            body = _TrackBody.model_validate_json(resp.content)
        except pydantic.ValidationError as e:
            raise DetectionServiceError(
                f"Tracking service returned a malformed body: {resp.text[:200]!r}"
            ) from e
        return body.trackingData
