"""Geometry helpers (IoU, clipping, mask reduction) for overlay boxes."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

from logo_eraser.errors import ValidationError
from logo_eraser.vision.coordinates import round_half_up
from logo_eraser.vision.types import NormalizedBox, PixelBox

if TYPE_CHECKING:
    import numpy as np


def _corners(b: NormalizedBox | PixelBox) -> tuple[float, float, float, float]:
    if isinstance(b, NormalizedBox):
        return b.x_min, b.y_min, b.x_max, b.y_max
    return b.x, b.y, b.x2, b.y2


def iou(a: NormalizedBox | PixelBox, b: NormalizedBox | PixelBox) -> float:
    """Compute intersection-over-union (IoU) between two boxes of the same kind."""
    ax1, ay1, ax2, ay2 = _corners(a)
    bx1, by1, bx2, by2 = _corners(b)
    iw = max(0.0, min(ax2, bx2) - max(ax1, bx1))
    ih = max(0.0, min(ay2, by2) - max(ay1, by1))
    inter = iw * ih
    if inter <= 0.0:
        return 0.0
    union = (ax2 - ax1) * (ay2 - ay1) + (bx2 - bx1) * (by2 - by1) - inter
    return float(inter / union) if union > 0 else 0.0


def clip_box(x: float, y: float, w: float, h: float, width: int, height: int) -> PixelBox | None:
    """Clip a loosely-typed rectangle to the frame; None if nothing is left."""
    x1 = max(0, min(round_half_up(x), width))
    y1 = max(0, min(round_half_up(y), height))
    x2 = max(0, min(round_half_up(x + w), width))
    y2 = max(0, min(round_half_up(y + h), height))
    if x2 <= x1 or y2 <= y1:
        return None
    return PixelBox(x=x1, y=y1, w=x2 - x1, h=y2 - y1)


def scale_box(b: PixelBox, sx: float, sy: float, width: int, height: int) -> PixelBox:
    """Scale a box by (sx, sy) into a `width` x `height` frame."""
    scaled = clip_box(b.x * sx, b.y * sy, b.w * sx, b.h * sy, width, height)
    if scaled is None:
        raise ValidationError(f"Box {b} collapses when scaled into {width}x{height}")
    return scaled


def box_from_points(points: Iterable[tuple[int, int]]) -> PixelBox | None:
    """Reduce a set of (x, y) pixel coordinates to their bounding box."""
    xs: list[int] = []
    ys: list[int] = []
    for x, y in points:
        xs.append(int(x))
        ys.append(int(y))
    if not xs:
        return None
    x1, y1 = min(xs), min(ys)
    if x1 < 0 or y1 < 0:
        raise ValidationError(f"Painted coordinates must be non-negative, got min ({x1}, {y1})")
    # A painted pixel covers [x, x + 1).
    return PixelBox(x=x1, y=y1, w=max(xs) - x1 + 1, h=max(ys) - y1 + 1)


def box_from_mask(mask: np.ndarray) -> PixelBox | None:
    """Compute the tightest bounding box around non-zero mask pixels."""
    import numpy as np

    ys, xs = np.where(mask > 0)
    if xs.size == 0 or ys.size == 0:
        return None
    x1 = int(xs.min())
    y1 = int(ys.min())
    return PixelBox(x=x1, y=y1, w=int(xs.max()) + 1 - x1, h=int(ys.max()) + 1 - y1)
