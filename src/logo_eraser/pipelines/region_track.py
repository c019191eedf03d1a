"""Continuous-time region track built from sparse observations.

The default policy is **hold-until-next**: the region seen at sample `t_i`
stays in force until the next sample `t_{i+1}` supersedes it; before the
first sample the first region applies and after the last sample the last
one does. Linear interpolation between neighbouring samples is available as
the explicitly named :attr:`TrackPolicy.LINEAR`.
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass
from enum import Enum

from logo_eraser.errors import AmbiguousRegionError
from logo_eraser.vision.coordinates import denormalize, round_half_up
from logo_eraser.vision.detections import DetectionSet
from logo_eraser.vision.types import PixelBox, VideoInfo


class TrackPolicy(str, Enum):
    """How the track behaves between two samples."""

    HOLD = "hold"
    LINEAR = "linear"


@dataclass(frozen=True)
class RegionTrack:
    """Function from time (seconds) to the box to suppress, for one resolution.

    Build with :meth:`constant` or :meth:`from_detections`; rebuild when the
    detections or the resolution change.
    """

    info: VideoInfo
    times: tuple[float, ...]
    boxes: tuple[PixelBox, ...]
    policy: TrackPolicy = TrackPolicy.HOLD

    @classmethod
    def constant(cls, box: PixelBox, info: VideoInfo) -> RegionTrack:
        """Manual mode: one region for the whole timeline, sampled at t = 0."""
        return cls(info=info, times=(0.0,), boxes=(box,))

    @classmethod
    def from_detections(
        cls,
        detections: DetectionSet,
        info: VideoInfo,
        policy: TrackPolicy = TrackPolicy.HOLD,
    ) -> RegionTrack:
        """Build from a set whose observations carry at most one region each.

        Observations with no region are not samples. For duplicate timestamps
        the first occurrence wins.

        Raises:
            AmbiguousRegionError: If an observation still has several candidates.
        """
        times: list[float] = []
        boxes: list[PixelBox] = []
        for obs in detections:
            if len(obs.regions) > 1:
                raise AmbiguousRegionError(
                    f"Observation at {obs.timestamp} has {len(obs.regions)} candidate regions; "
                    "resolve them before building a track"
                )
        for obs in detections.unique():
            if not obs.regions:
                continue
            times.append(obs.seconds)
            boxes.append(denormalize(obs.regions[0].box, info.width, info.height))
        return cls(info=info, times=tuple(times), boxes=tuple(boxes), policy=policy)

    @property
    def is_empty(self) -> bool:
        return not self.times

    @property
    def is_constant(self) -> bool:
        return len(self.times) == 1

    def __len__(self) -> int:
        return len(self.times)

    def __call__(self, t: float) -> PixelBox | None:
        return self.at(t)

    def at(self, t: float) -> PixelBox | None:
        """Box to suppress at time `t`, or None when the track is empty."""
        if not self.times:
            return None
        if t < self.times[0]:
            return self.boxes[0]
        if t >= self.times[-1]:
            return self.boxes[-1]
        i = bisect.bisect_right(self.times, t) - 1
        if self.policy is TrackPolicy.HOLD:
            return self.boxes[i]
        return self._lerp(i, t)

    def _lerp(self, i: int, t: float) -> PixelBox:
        t0, t1 = self.times[i], self.times[i + 1]
        a, b = self.boxes[i], self.boxes[i + 1]
        f = (t - t0) / (t1 - t0)
        x1 = round_half_up(a.x + (b.x - a.x) * f)
        y1 = round_half_up(a.y + (b.y - a.y) * f)
        x2 = round_half_up(a.x2 + (b.x2 - a.x2) * f)
        y2 = round_half_up(a.y2 + (b.y2 - a.y2) * f)
        return PixelBox(x=x1, y=y1, w=max(1, x2 - x1), h=max(1, y2 - y1))

    def samples(self) -> list[tuple[float, PixelBox]]:
        """The (time, box) pairs the track was built from."""
        return list(zip(self.times, self.boxes, strict=True))
