"""Region producers: every way of turning user input into one PixelBox.

Dragging a rectangle, picking a quick preset and painting freehand are the
same capability behind different input modalities, so they share the
:class:`RegionSelector` protocol and the pipeline only ever sees a PixelBox.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal, Protocol

from logo_eraser.errors import ValidationError
from logo_eraser.vision.coordinates import round_half_up
from logo_eraser.vision.geometry import box_from_mask, box_from_points, clip_box, scale_box
from logo_eraser.vision.types import PixelBox, VideoInfo

if TYPE_CHECKING:
    import numpy as np

PresetPosition = Literal[
    "top-left",
    "top-right",
    "top-center",
    "bottom-left",
    "bottom-right",
    "bottom-center",
    "center",
]
PRESET_POSITIONS: tuple[str, ...] = (
    "top-left",
    "top-right",
    "top-center",
    "bottom-left",
    "bottom-right",
    "bottom-center",
    "center",
)


class RegionSelector(Protocol):
    """Anything that can produce the overlay box for the current video."""

    def select(self, info: VideoInfo) -> PixelBox:
        """Return a box in the video's pixel space."""
        ...


def _canvas_scale(canvas_size: tuple[int, int] | None, info: VideoInfo) -> tuple[float, float]:
    if canvas_size is None:
        return 1.0, 1.0
    cw, ch = canvas_size
    if cw <= 0 or ch <= 0:
        raise ValidationError(f"Canvas size must be positive: {canvas_size}")
    return info.width / cw, info.height / ch


@dataclass(frozen=True)
class DragSelection:
    """Rectangle dragged between two points on a display canvas.

    Attributes:
        start, end: Pointer positions in canvas coordinates (any corner order).
        canvas_size: (width, height) of the canvas, or None when the canvas
            already has the video's resolution.
    """

    start: tuple[float, float]
    end: tuple[float, float]
    canvas_size: tuple[int, int] | None = None

    def select(self, info: VideoInfo) -> PixelBox:
        sx, sy = _canvas_scale(self.canvas_size, info)
        x = min(self.start[0], self.end[0])
        y = min(self.start[1], self.end[1])
        w = abs(self.end[0] - self.start[0])
        h = abs(self.end[1] - self.start[1])
        box = clip_box(x * sx, y * sy, w * sx, h * sy, info.width, info.height)
        if box is None:
            raise ValidationError("Selected rectangle is empty; drag over the watermark area")
        return box


@dataclass(frozen=True)
class PresetSelection:
    """Quick preset: a box of a fixed fraction of the frame at a named position."""

    position: PresetPosition = "bottom-right"
    width_frac: float = 0.2
    height_frac: float = 0.1
    margin_frac: float = 0.02

    def __post_init__(self) -> None:
        if self.position not in PRESET_POSITIONS:
            raise ValidationError(
                f"Unknown preset position {self.position!r}. Allowed: {list(PRESET_POSITIONS)}"
            )
        if not (0.0 < self.width_frac <= 1.0 and 0.0 < self.height_frac <= 1.0):
            raise ValidationError("Preset size fractions must be in (0, 1]")
        if not 0.0 <= self.margin_frac < 0.5:
            raise ValidationError("Preset margin fraction must be in [0, 0.5)")

    def select(self, info: VideoInfo) -> PixelBox:
        w = max(1, round_half_up(info.width * self.width_frac))
        h = max(1, round_half_up(info.height * self.height_frac))
        mx = round_half_up(info.width * self.margin_frac)
        my = round_half_up(info.height * self.margin_frac)
        vert, _, horiz = self.position.partition("-")
        if self.position == "center":
            vert, horiz = "center", "center"
        x = {"left": mx, "right": info.width - w - mx, "center": (info.width - w) // 2}[horiz]
        y = {"top": my, "bottom": info.height - h - my, "center": (info.height - h) // 2}[vert]
        box = clip_box(x, y, w, h, info.width, info.height)
        if box is None:
            raise ValidationError(f"Preset {self.position!r} does not fit the frame")
        return box


@dataclass(frozen=True)
class PaintSelection:
    """Freehand painted pixels, reduced to their bounding box.

    Either `points` (canvas (x, y) pairs) or `mask` (a 2-D array whose
    non-zero cells were painted) must be given.
    """

    points: Sequence[tuple[int, int]] = field(default_factory=tuple)
    mask: np.ndarray | None = None
    canvas_size: tuple[int, int] | None = None

    def select(self, info: VideoInfo) -> PixelBox:
        if self.mask is not None:
            box = box_from_mask(self.mask)
            canvas_size = self.canvas_size or (int(self.mask.shape[1]), int(self.mask.shape[0]))
        else:
            box = box_from_points(self.points)
            canvas_size = self.canvas_size
        if box is None:
            raise ValidationError("Nothing was painted; paint over the watermark area")
        sx, sy = _canvas_scale(canvas_size, info)
        return scale_box(box, sx, sy, info.width, info.height)
