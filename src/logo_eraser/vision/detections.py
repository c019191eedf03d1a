"""Timestamped overlay observations: construction, editing and lookup."""

from __future__ import annotations

import bisect
import logging
import math
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any

import pydantic

from logo_eraser.detectors.schema import RawObservation, RawTrackEntry
from logo_eraser.errors import NotFoundError, ValidationError
from logo_eraser.vision.coordinates import normalize, seconds_to_timestamp, timestamp_to_seconds
from logo_eraser.vision.geometry import clip_box
from logo_eraser.vision.types import NormalizedBox, Observation, PixelBox, Region, VideoInfo

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class Rejection:
    """A piece of service output that was dropped during validation."""

    timestamp: str | None
    reason: str


def _as_model(entry: Any, model: type[pydantic.BaseModel]) -> Any:
    if isinstance(entry, model):
        return entry
    return model.model_validate(entry)


class DetectionSet:
    """Observations ordered by time.

    Duplicate timestamps are tolerated; lookups and :meth:`unique` keep the
    first occurrence. Observations are never mutated in place: edits replace
    whole entries.
    """

    def __init__(
        self,
        observations: Iterable[Observation] = (),
        rejected: Iterable[Rejection] = (),
    ) -> None:
        # sorted() is stable, so duplicates keep their arrival order.
        self._obs: list[Observation] = sorted(observations, key=lambda o: o.seconds)
        self.rejected: list[Rejection] = list(rejected)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_raw_observations(
        cls, raw: Iterable[RawObservation | Mapping[str, Any]]
    ) -> DetectionSet:
        """Validate a detector answer; bad entries/boxes become warnings."""
        observations: list[Observation] = []
        rejected: list[Rejection] = []

        def _reject(ts: str | None, reason: str) -> None:
            LOG.warning("Dropping detection at %s: %s", ts, reason)
            rejected.append(Rejection(timestamp=ts, reason=reason))

        for entry in raw:
            try:
                item: RawObservation = _as_model(entry, RawObservation)
            except pydantic.ValidationError as e:
                _reject(None, f"malformed entry ({e.error_count()} errors)")
                continue
            try:
                seconds = timestamp_to_seconds(item.ts)
            except ValidationError as e:
                _reject(item.ts, str(e))
                continue

            regions: list[Region] = []
            for b in item.boxes:
                if not (math.isfinite(b.score) and 0.0 <= b.score <= 1.0):
                    _reject(item.ts, f"score out of [0, 1]: {b.score!r}")
                    continue
                try:
                    box = NormalizedBox.from_box_2d(b.box_2d)
                except ValidationError as e:
                    _reject(item.ts, str(e))
                    continue
                regions.append(Region(box=box, label=b.label, score=float(b.score)))

            if item.boxes and not regions:
                # Every box was invalid; keeping the entry would read as "nothing there".
                continue
            observations.append(
                Observation(timestamp=item.ts.strip(), seconds=seconds, regions=tuple(regions))
            )
        return cls(observations, rejected)

    @classmethod
    def from_tracking(
        cls, entries: Iterable[RawTrackEntry | Mapping[str, Any]], info: VideoInfo
    ) -> DetectionSet:
        """Build a set from tracking results (pixel boxes, confidence 0 = not found)."""
        observations: list[Observation] = []
        rejected: list[Rejection] = []
        for entry in entries:
            try:
                item: RawTrackEntry = _as_model(entry, RawTrackEntry)
                seconds = timestamp_to_seconds(item.ts)
            except (pydantic.ValidationError, ValidationError) as e:
                LOG.warning("Dropping tracking entry: %s", e)
                rejected.append(Rejection(timestamp=None, reason=str(e)))
                continue
            if not (math.isfinite(item.confidence) and item.confidence > 0.0):
                continue
            b = item.box
            coords = (b.x, b.y, b.w, b.h)
            px = clip_box(*coords, info.width, info.height) if all(map(math.isfinite, coords)) else None
            if px is None:
                LOG.warning("Dropping tracking entry at %s: box outside frame %s", item.ts, coords)
                rejected.append(Rejection(timestamp=item.ts, reason="box outside frame"))
                continue
            region = Region(
                box=normalize(px, info.width, info.height),
                label="watermark",
                score=min(1.0, float(item.confidence)),
            )
            observations.append(
                Observation(timestamp=item.ts.strip(), seconds=seconds, regions=(region,))
            )
        return cls(observations, rejected)

    @classmethod
    def single(cls, box: PixelBox, info: VideoInfo, label: str = "manual") -> DetectionSet:
        """Manual-mode set: one region at t = 0."""
        region = Region(box=normalize(box, info.width, info.height), label=label, score=1.0)
        return cls([Observation(timestamp=seconds_to_timestamp(0), seconds=0.0, regions=(region,))])

    # ------------------------------------------------------------------
    # Container protocol
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._obs)

    def __iter__(self) -> Iterator[Observation]:
        return iter(self._obs)

    def __repr__(self) -> str:
        return f"DetectionSet({len(self._obs)} observations, {len(self.rejected)} rejected)"

    @property
    def observations(self) -> tuple[Observation, ...]:
        return tuple(self._obs)

    @property
    def timestamps(self) -> list[str]:
        return [o.timestamp for o in self._obs]

    def copy(self) -> DetectionSet:
        return DetectionSet(self._obs, self.rejected)

    def unique(self) -> list[Observation]:
        """Observations with duplicate timestamps collapsed to the first one."""
        out: list[Observation] = []
        seen: set[float] = set()
        for o in self._obs:
            if o.seconds in seen:
                continue
            seen.add(o.seconds)
            out.append(o)
        return out

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    def _index_of(self, timestamp: str) -> int:
        for i, o in enumerate(self._obs):
            if o.timestamp == timestamp:
                return i
        raise NotFoundError(f"No observation at {timestamp!r}")

    def get(self, timestamp: str) -> Observation:
        return self._obs[self._index_of(timestamp)]

    def add_observation(self, obs: Observation) -> None:
        """Insert after any existing entries with the same time."""
        keys = [o.seconds for o in self._obs]
        self._obs.insert(bisect.bisect_right(keys, obs.seconds), obs)

    def replace_observation(self, timestamp: str, obs: Observation) -> None:
        """Swap the entry at `timestamp` for `obs` as a whole."""
        del self._obs[self._index_of(timestamp)]
        self.add_observation(obs)

    def remove_observation(self, timestamp: str) -> Observation:
        """Remove the first entry whose timestamp matches exactly."""
        return self._obs.pop(self._index_of(timestamp))

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def nearest_before(self, t: float) -> Observation | None:
        """Latest observation at or before `t`, or None if `t` precedes all."""
        keys = [o.seconds for o in self._obs]
        i = bisect.bisect_right(keys, t)
        if i == 0:
            return None
        return self._obs[bisect.bisect_left(keys, keys[i - 1])]

    def nearest_after(self, t: float) -> Observation | None:
        """Earliest observation at or after `t`, or None if `t` follows all."""
        keys = [o.seconds for o in self._obs]
        i = bisect.bisect_left(keys, t)
        if i == len(keys):
            return None
        return self._obs[i]
