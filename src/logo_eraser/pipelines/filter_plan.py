"""Compile a RegionTrack into an ordered list of time-gated removal operations.

The plan is transcoder-agnostic: entries are plain `{box, interval, method}`
triples. Turning them into concrete filter syntax is the job of the
transcoder adapter (see :mod:`logo_eraser.transcode.ffmpeg`).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any

from logo_eraser.errors import EmptyPlanError, ValidationError
from logo_eraser.pipelines.region_track import RegionTrack
from logo_eraser.vision.types import PixelBox, RemovalMethod

LOG = logging.getLogger(__name__)

DEFAULT_DWELL_S = 0.5
# Gaps at or below this are treated as touching intervals.
_TOUCH_EPS = 1e-6


def dwell_for_sample_rate(sample_fps: float) -> float:
    """Default dwell window: one sampling period."""
    if sample_fps <= 0:
        raise ValidationError(f"Sampling rate must be positive, got {sample_fps!r}")
    return 1.0 / sample_fps


@dataclass(frozen=True)
class PlanEntry:
    """One removal operation active on `[start, end]` seconds."""

    box: PixelBox
    start: float
    end: float
    method: RemovalMethod

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class FilterPlan:
    """Ordered removal operations for a video of `duration` seconds."""

    entries: tuple[PlanEntry, ...]
    duration: float
    width: int
    height: int

    def __len__(self) -> int:
        return len(self.entries)

    def to_dict(self) -> dict[str, Any]:
        """Plain-data view, e.g. for YAML/JSON dumps."""
        return {
            "duration": self.duration,
            "resolution": {"width": self.width, "height": self.height},
            "entries": [
                {
                    "box": {"x": e.box.x, "y": e.box.y, "w": e.box.w, "h": e.box.h},
                    "start": round(e.start, 3),
                    "end": round(e.end, 3),
                    "method": e.method.value,
                }
                for e in self.entries
            ],
        }


def build_filter_plan(
    track: RegionTrack,
    method: RemovalMethod,
    duration: float,
    *,
    dwell_s: float = DEFAULT_DWELL_S,
) -> FilterPlan:
    """Turn a region track into a filter plan.

    A constant track yields one entry over `(0, duration)`. Otherwise each
    sample `t_i` yields `(t_i, min(t_i + dwell, t_{i+1}))`, so entries never
    overlap; the dwell window bounds how long a sample is trusted. Ends are
    clamped to `duration` and samples at or past the end are skipped.

    Raises:
        EmptyPlanError: If no entry results (nothing to remove).
        ValidationError: If `duration` or `dwell_s` is not positive.
    """
    if duration <= 0:
        raise ValidationError(f"Video duration must be positive, got {duration!r}")
    if dwell_s <= 0:
        raise ValidationError(f"Dwell window must be positive, got {dwell_s!r}")

    info = track.info
    if track.is_empty:
        raise EmptyPlanError("No watermark region was found or selected; nothing to remove")

    entries: list[PlanEntry] = []
    if track.is_constant:
        entries.append(PlanEntry(box=track.boxes[0], start=0.0, end=duration, method=method))
    else:
        times = track.times
        for i, t in enumerate(times):
            if t >= duration:
                LOG.info("Skipping sample at %.2fs: past the end of the video (%.2fs)", t, duration)
                continue
            end = t + dwell_s
            if i + 1 < len(times):
                end = min(end, times[i + 1])
            end = min(end, duration)
            box = track.at(t)
            if box is None or end <= t:
                continue
            entries.append(PlanEntry(box=box, start=t, end=end, method=method))

    if not entries:
        raise EmptyPlanError("No watermark region falls inside the video; nothing to remove")
    LOG.info("Built filter plan: %s entries, method=%s", len(entries), method.value)
    return FilterPlan(entries=tuple(entries), duration=duration, width=info.width, height=info.height)


def check_overlaps(plan: FilterPlan, tolerance: float = 0.0) -> None:
    """Fail if two entries for the same box overlap by more than `tolerance` seconds."""
    last_end: dict[PixelBox, float] = {}
    for e in sorted(plan.entries, key=lambda e: e.start):
        prev = last_end.get(e.box)
        if prev is not None and prev - e.start > tolerance + _TOUCH_EPS:
            raise ValidationError(
                f"Entries for box {e.box} overlap by {prev - e.start:.3f}s "
                f"(tolerance {tolerance:.3f}s)"
            )
        last_end[e.box] = e.end if prev is None else max(prev, e.end)


def coalesce(plan: FilterPlan) -> FilterPlan:
    """Merge consecutive same-box, same-method entries whose intervals touch."""
    merged: list[PlanEntry] = []
    for e in plan.entries:
        if merged:
            last = merged[-1]
            if (
                last.box == e.box
                and last.method is e.method
                and e.start - last.end <= _TOUCH_EPS
            ):
                merged[-1] = replace(last, end=max(last.end, e.end))
                continue
        merged.append(e)
    return replace(plan, entries=tuple(merged))
