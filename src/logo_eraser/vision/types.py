"""Core data types shared across the locate, review and process stages."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

from logo_eraser.errors import ValidationError

NORM_SCALE = 1000


class RemovalMethod(str, Enum):
    """How a region is repaired in the output video."""

    INPAINT = "inpaint"
    BLUR = "blur"


@dataclass(frozen=True)
class NormalizedBox:
    """Resolution-independent box on a 0-1000 grid, in (y, x) order.

    Attributes:
        y_min, x_min, y_max, x_max: Integer coordinates in [0, 1000] with
            y_min < y_max and x_min < x_max.
    """

    y_min: int
    x_min: int
    y_max: int
    x_max: int

    def __post_init__(self) -> None:
        coords = (self.y_min, self.x_min, self.y_max, self.x_max)
        if not all(isinstance(c, int) and not isinstance(c, bool) for c in coords):
            raise ValidationError(f"Normalized box coordinates must be integers: {coords}")
        if not all(0 <= c <= NORM_SCALE for c in coords):
            raise ValidationError(f"Normalized box out of [0, {NORM_SCALE}]: {coords}")
        if not (self.y_min < self.y_max and self.x_min < self.x_max):
            raise ValidationError(f"Normalized box must satisfy min < max: {coords}")

    @classmethod
    def from_box_2d(cls, box_2d: list[float] | tuple[float, ...]) -> NormalizedBox:
        """Build from a detector `box_2d` array `[y_min, x_min, y_max, x_max]`."""
        if len(box_2d) != 4:
            raise ValidationError(f"box_2d must have 4 values, got {len(box_2d)}")
        vals: list[int] = []
        for v in box_2d:
            if isinstance(v, bool) or not isinstance(v, (int, float)) or not math.isfinite(v):
                raise ValidationError(f"box_2d values must be finite numbers: {box_2d!r}")
            vals.append(int(math.floor(v + 0.5)))
        return cls(*vals)

    def as_box_2d(self) -> list[int]:
        """Return the detector wire order `[y_min, x_min, y_max, x_max]`."""
        return [self.y_min, self.x_min, self.y_max, self.x_max]


@dataclass(frozen=True)
class PixelBox:
    """Axis-aligned box in absolute pixels of a specific frame size."""

    x: int
    y: int
    w: int
    h: int

    def __post_init__(self) -> None:
        coords = (self.x, self.y, self.w, self.h)
        if not all(isinstance(c, int) and not isinstance(c, bool) for c in coords):
            raise ValidationError(f"Pixel box values must be integers: {coords}")
        if self.x < 0 or self.y < 0:
            raise ValidationError(f"Pixel box origin must be non-negative: {coords}")
        if self.w <= 0 or self.h <= 0:
            raise ValidationError(f"Pixel box must have positive size: {coords}")

    @property
    def x2(self) -> int:
        return self.x + self.w

    @property
    def y2(self) -> int:
        return self.y + self.h

    def area(self) -> int:
        """Return the box area in pixels squared."""
        return self.w * self.h

    def fits(self, width: int, height: int) -> bool:
        """Whether the box lies entirely inside a `width` x `height` frame."""
        return self.x2 <= width and self.y2 <= height


@dataclass(frozen=True)
class VideoInfo:
    """Facts established at upload time and consumed by every later stage."""

    width: int
    height: int
    duration: float

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValidationError(f"Resolution must be positive: {self.width}x{self.height}")
        if not math.isfinite(self.duration) or self.duration <= 0:
            raise ValidationError(f"Duration must be a positive number: {self.duration!r}")


@dataclass(frozen=True)
class Region:
    """One candidate overlay region reported at a sampled instant.

    Attributes:
        box: Normalized location of the region.
        label: Free-text class reported by the detector (e.g. "watermark").
        score: Confidence score in [0, 1].
    """

    box: NormalizedBox
    label: str = "watermark"
    score: float = 1.0


@dataclass(frozen=True)
class Observation:
    """Zero or more regions seen at one sampled timestamp."""

    timestamp: str
    seconds: float
    regions: tuple[Region, ...] = ()

    def with_regions(self, regions: list[Region] | tuple[Region, ...]) -> Observation:
        """Return a copy carrying `regions` (edits replace whole entries)."""
        return Observation(timestamp=self.timestamp, seconds=self.seconds, regions=tuple(regions))
