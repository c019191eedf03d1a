"""Conversions between normalized/pixel boxes and MM:SS/seconds timestamps.

All rounding uses round-half-away-from-zero (`floor(v + 0.5)` on the
non-negative values handled here), so repeated calls are deterministic.
"""

from __future__ import annotations

import math
import re

from logo_eraser.errors import FormatError, ValidationError
from logo_eraser.vision.types import NORM_SCALE, NormalizedBox, PixelBox

_TIMESTAMP_RE = re.compile(r"^\s*(\d+):(\d{1,2})\s*$")


def round_half_up(v: float) -> int:
    """Round half up; identical to half-away-from-zero for non-negative values."""
    return int(math.floor(v + 0.5))


def _check_resolution(width: int, height: int) -> None:
    if width <= 0 or height <= 0:
        raise ValidationError(f"Resolution must be positive: {width}x{height}")


def denormalize(box: NormalizedBox, width: int, height: int) -> PixelBox:
    """Scale a 0-1000 box to pixels of a `width` x `height` frame.

    The result always fits inside the frame: an overflowing size is trimmed
    to the frame edge and a size that rounds to zero is raised to one pixel.
    """
    _check_resolution(width, height)
    x = min(round_half_up(box.x_min / NORM_SCALE * width), width - 1)
    y = min(round_half_up(box.y_min / NORM_SCALE * height), height - 1)
    w = round_half_up((box.x_max - box.x_min) / NORM_SCALE * width)
    h = round_half_up((box.y_max - box.y_min) / NORM_SCALE * height)
    w = max(1, min(w, width - x))
    h = max(1, min(h, height - y))
    return PixelBox(x=x, y=y, w=w, h=h)


def normalize(box: PixelBox, width: int, height: int) -> NormalizedBox:
    """Scale a pixel box of a `width` x `height` frame to the 0-1000 grid.

    Not an exact inverse of :func:`denormalize`; the round trip stays within
    one normalized unit (expressed in pixels) per field.
    """
    _check_resolution(width, height)
    if not box.fits(width, height):
        raise ValidationError(f"Pixel box {box} does not fit a {width}x{height} frame")
    x_min = round_half_up(box.x / width * NORM_SCALE)
    y_min = round_half_up(box.y / height * NORM_SCALE)
    x_max = round_half_up(box.x2 / width * NORM_SCALE)
    y_max = round_half_up(box.y2 / height * NORM_SCALE)
    # Sub-unit boxes on large frames collapse after rounding.
    if x_max <= x_min:
        x_min, x_max = (x_min, x_min + 1) if x_min < NORM_SCALE else (x_min - 1, x_min)
    if y_max <= y_min:
        y_min, y_max = (y_min, y_min + 1) if y_min < NORM_SCALE else (y_min - 1, y_min)
    return NormalizedBox(y_min=y_min, x_min=x_min, y_max=y_max, x_max=x_max)


def round_trip_tolerance(dim: int) -> int:
    """Max per-field pixel drift of `denormalize(normalize(p))` along an axis of `dim` px."""
    return max(1, math.ceil(dim / NORM_SCALE))


def timestamp_to_seconds(timestamp: str) -> float:
    """Parse `MM:SS` (minutes unbounded) into elapsed seconds."""
    if not isinstance(timestamp, str):
        raise FormatError(f"Timestamp must be a string, got {type(timestamp).__name__}")
    m = _TIMESTAMP_RE.match(timestamp)
    if m is None:
        raise FormatError(f"Invalid timestamp {timestamp!r}; expected MM:SS")
    mins, secs = int(m.group(1)), int(m.group(2))
    if secs >= 60:
        raise FormatError(f"Invalid timestamp {timestamp!r}; seconds must be < 60")
    return float(mins * 60 + secs)


def seconds_to_timestamp(seconds: float) -> str:
    """Format elapsed seconds as `MM:SS`, flooring to whole seconds."""
    if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
        raise FormatError(f"Seconds must be a number, got {seconds!r}")
    if not math.isfinite(seconds) or seconds < 0:
        raise FormatError(f"Seconds must be finite and non-negative, got {seconds!r}")
    total = int(math.floor(seconds))
    mins, secs = divmod(total, 60)
    return f"{mins:02d}:{secs:02d}"
