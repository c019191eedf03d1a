"""Watermark detection and tracking with a video-capable VLM via LiteLLM."""

import base64
import json
import logging
from dataclasses import dataclass
from typing import Any

import litellm
import pydantic
from pydantic import BaseModel

from logo_eraser.detectors.schema import ENTRY_LIST
from logo_eraser.errors import DetectionServiceError
from logo_eraser.vision.types import PixelBox, VideoInfo

LOG = logging.getLogger(__name__)
DEFAULT_VLM_MODEL = "gemini/gemini-2.0-flash"

_DETECT_PROMPT = """
Analyze this entire video for watermarks or logos that appear throughout the video.
Sample the video at {fps} FPS (frames per second).

Return a JSON array of detections with the following format:
[
  {{
    "ts": "MM:SS",
    "boxes": [
      {{
        "label": "watermark",
        "box_2d": [ymin, xmin, ymax, xmax],
        "score": 0.95
      }}
    ]
  }}
]

Coordinates should be normalized to 0-1000 range.
Only detect watermarks, logos, or text overlays that appear consistently across multiple frames.
""".strip()

_TRACK_PROMPT = """
You are analyzing a video to track a watermark that may move across frames.
The video resolution is {width}x{height} pixels.

Reference watermark location (pixels):
- Position: ({x}, {y})
- Size: {w} x {h}

Task:
1. Sample the video at {fps} FPS
2. In each frame, find where the watermark appears (it may have moved)
3. Return a JSON array with the watermark position for each sampled timestamp

Output format:
[
  {{
    "ts": "MM:SS",
    "box": {{"x": 100, "y": 200, "w": 150, "h": 80}},
    "confidence": 0.95
  }}
]

Important:
- Track the SAME watermark pattern across all frames
- Coordinates should be pixel values (not normalized)
- If watermark is not visible in a frame, set confidence to 0
- The watermark may move, resize, or fade
""".strip()


def _extract_json_array(text: str) -> str:
    """Extract a JSON array from a possibly noisy model response."""
    if not text:
        return text
    # Common case: fenced JSON block
    if "```" in text:
        parts = text.split("```")
        for i in range(len(parts) - 1):
            lines = parts[i].strip().splitlines()
            fence_lang = lines[-1].strip().lower() if lines else ""
            body = parts[i + 1].strip()
            if body.lower().startswith("json"):
                body = body[4:].strip()
                fence_lang = "json"
            if fence_lang in {"json", "application/json", ""} and body.startswith("["):
                return body
    try:
        json.loads(text)
    except json.JSONDecodeError:
        pass
    else:
        return text
    i = text.find("[")
    j = text.rfind("]")
    if i != -1 and j != -1 and j > i:
        return text[i : j + 1]
    return text


def _content_to_text(content: Any) -> str:
    """Best-effort normalization of provider responses to a single text string."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        chunks: list[str] = []
        for item in content:
            if isinstance(item, str):
                chunks.append(item)
            elif isinstance(item, dict):
                t = item.get("text")
                if isinstance(t, str):
                    chunks.append(t)
        return "\n".join(chunks).strip()
    if isinstance(content, dict):
        t = content.get("text")
        if isinstance(t, str):
            return t
    return str(content)


def _response_to_dict(resp: Any) -> dict[str, Any]:
    """Normalize a LiteLLM completion response object to a plain dict."""
    if isinstance(resp, dict):
        return resp
    if isinstance(resp, BaseModel):
        return resp.model_dump()
    raise DetectionServiceError(f"Unsupported completion response type: {type(resp)!r}")


def _extract_choice_text(resp: dict[str, Any]) -> tuple[str, str]:
    """Extract assistant content and finish_reason from a Chat Completions-style response."""
    choices = resp.get("choices") or []
    if not isinstance(choices, list) or not choices:
        return "", ""
    c0 = choices[0] or {}
    if not isinstance(c0, dict):
        return "", ""
    finish_reason = str(c0.get("finish_reason") or "")

    msg = c0.get("message") or {}
    if isinstance(msg, dict) and "content" in msg:
        return _content_to_text(msg.get("content")), finish_reason
    if "text" in c0:
        return _content_to_text(c0.get("text")), finish_reason
    return "", finish_reason


def parse_entry_list(text: str, *, what: str) -> list[dict[str, Any]]:
    """Parse the JSON array of a detection/tracking answer.

    Raises:
        DetectionServiceError: If no JSON array of objects can be read.
    """
    if not text.strip():
        raise DetectionServiceError(f"{what} service returned empty content")
    try:
        return ENTRY_LIST.validate_json(_extract_json_array(text))
    except pydantic.ValidationError as e:
        raise DetectionServiceError(
            f"{what} service answer is not a JSON array of objects: {text[:200]!r}"
        ) from e


@dataclass
class VlmDetector:
    """Detection/tracking collaborator backed by a LiteLLM chat completion.

    Attributes:
        model: Provider-prefixed LiteLLM model name (the provider reads its
            API key from the environment, e.g. GEMINI_API_KEY).
        temperature: Sampling temperature.
        max_tokens: Completion budget; long videos need many entries.
        timeout_s: Request timeout in seconds.
        verbose: Log the raw answer text.
    """

    model: str = DEFAULT_VLM_MODEL
    temperature: float = 0.0
    max_tokens: int = 8000
    timeout_s: float = 300.0
    verbose: bool = False

    def _ask(self, prompt: str, video: bytes, mime_type: str, what: str) -> str:
        b64 = base64.b64encode(video).decode("ascii")
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "file", "file": {"file_data": f"data:{mime_type};base64,{b64}"}},
                ],
            }
        ]
        LOG.info(
            "Requesting %s via LiteLLM: model=%s video=%.1fMB",
            what,
            self.model,
            len(video) / 1e6,
        )
        try:
            raw_resp = litellm.completion(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                timeout=self.timeout_s,
            )
        except Exception as e:
            raise DetectionServiceError(f"{what} request failed: {type(e).__name__}: {e}") from e

        resp = _response_to_dict(raw_resp)
        text, finish_reason = _extract_choice_text(resp)
        LOG.info(
            "VLM response received: finish_reason=%s usage=%s",
            finish_reason,
            resp.get("usage"),
        )
        if self.verbose:
            LOG.info("VLM response content:\n%s", text)
        return text

    def detect(self, video: bytes, mime_type: str, sample_fps: float) -> list[dict[str, Any]]:
        """Return raw `{ts, boxes}` entries for the whole video."""
        prompt = _DETECT_PROMPT.format(fps=sample_fps)
        text = self._ask(prompt, video, mime_type, "Detection")
        return parse_entry_list(text, what="Detection")

    def track(
        self,
        video: bytes,
        mime_type: str,
        reference: PixelBox,
        info: VideoInfo,
        sample_fps: float,
    ) -> list[dict[str, Any]]:
        """Return raw `{ts, box, confidence}` entries following `reference`."""
        prompt = _TRACK_PROMPT.format(
            fps=sample_fps,
            width=info.width,
            height=info.height,
            x=reference.x,
            y=reference.y,
            w=reference.w,
            h=reference.h,
        )
        text = self._ask(prompt, video, mime_type, "Tracking")
        return parse_entry_list(text, what="Tracking")
