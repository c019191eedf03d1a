"""State machine sequencing Upload -> Locate -> Review -> Process.

```
upload  --load-------------------> locate
locate  --select_manual/detect/track--> review
review  --confirm----------------> process
process --process----------------> upload   (accumulated facts cleared)
any     --back-------------------> previous stage (later-stage data dropped)
```

Failures keep the current stage and data and propagate the error. Only one
detect/track/process call may be in flight; `back()` while one is running
discards its result when it comes back.
"""

from __future__ import annotations

import logging
import mimetypes
import threading
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from time import perf_counter
from typing import Any, Protocol, TypeVar

from logo_eraser.config import EraserConfig
from logo_eraser.errors import (
    DetectionServiceError,
    InvalidTransitionError,
    PipelineBusyError,
    ValidationError,
)
from logo_eraser.pipelines.filter_plan import (
    FilterPlan,
    build_filter_plan,
    check_overlaps,
    coalesce,
)
from logo_eraser.pipelines.region_track import RegionTrack
from logo_eraser.vision.detections import DetectionSet
from logo_eraser.vision.resolve import resolve_regions
from logo_eraser.vision.selection import RegionSelector
from logo_eraser.vision.types import Observation, PixelBox, RemovalMethod, VideoInfo

LOG = logging.getLogger(__name__)

T = TypeVar("T")


class Stage(str, Enum):
    UPLOAD = "upload"
    LOCATE = "locate"
    REVIEW = "review"
    PROCESS = "process"


class LocateMode(str, Enum):
    MANUAL = "manual"
    DETECT = "detect"
    TRACK = "track"


_PREVIOUS: dict[Stage, Stage] = {
    Stage.UPLOAD: Stage.UPLOAD,
    Stage.LOCATE: Stage.UPLOAD,
    Stage.REVIEW: Stage.LOCATE,
    Stage.PROCESS: Stage.REVIEW,
}


class SupportsDetection(Protocol):
    """Protocol for the detection collaborator."""

    def detect(self, video: bytes, mime_type: str, sample_fps: float) -> list[dict[str, Any]]:
        """Return raw `{ts, boxes}` entries."""
        ...


class SupportsTracking(Protocol):
    """Protocol for the tracking collaborator."""

    def track(
        self,
        video: bytes,
        mime_type: str,
        reference: PixelBox,
        info: VideoInfo,
        sample_fps: float,
    ) -> list[dict[str, Any]]:
        """Return raw `{ts, box, confidence}` entries."""
        ...


class SupportsTranscode(Protocol):
    """Protocol for the transcoder collaborator."""

    def probe(self, path: Path) -> VideoInfo:
        """Return resolution and duration of a video file."""
        ...

    def transcode(
        self,
        src: Path,
        plan: FilterPlan,
        dst: Path,
        *,
        on_progress: Callable[[int], None] | None = None,
        on_log: Callable[[str], None] | None = None,
    ) -> Path:
        """Apply `plan` to `src` and write `dst`."""
        ...


@dataclass(frozen=True)
class PipelineState:
    """Snapshot of the accumulated facts of one pipeline run."""

    stage: Stage = Stage.UPLOAD
    source: Path | None = None
    mime_type: str | None = None
    info: VideoInfo | None = None
    mode: LocateMode | None = None
    detections: DetectionSet | None = None
    manual_box: PixelBox | None = None
    method: RemovalMethod | None = None
    plan: FilterPlan | None = None


def guess_video_mime(path: Path) -> str:
    """MIME type of a video file by extension; non-video files are rejected."""
    mime, _ = mimetypes.guess_type(str(path))
    if mime is None:
        return "video/mp4"
    if not mime.startswith("video/"):
        raise ValidationError(f"Only video files can be processed, got {mime} for {path}")
    return mime


class PipelineController:
    """Owner of the pipeline state; the only component that mutates it."""

    def __init__(
        self,
        *,
        config: EraserConfig | None = None,
        detector: SupportsDetection | None = None,
        tracker: SupportsTracking | None = None,
        transcoder: SupportsTranscode | None = None,
    ) -> None:
        self.config = config or EraserConfig()
        self.detector = detector
        self.tracker = tracker
        self.transcoder = transcoder
        self._state = PipelineState()
        self._lock = threading.Lock()
        self._inflight = False
        self._generation = 0
        self.last_output: Path | None = None

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def stage(self) -> Stage:
        return self._state.stage

    @property
    def busy(self) -> bool:
        return self._inflight

    def _require(self, *stages: Stage) -> PipelineState:
        st = self._state
        if st.stage not in stages:
            allowed = ", ".join(s.value for s in stages)
            raise InvalidTransitionError(f"Not allowed in stage {st.stage.value!r} (needs {allowed})")
        return st

    def _known(self, value: T | None, what: str) -> T:
        if value is None:
            raise InvalidTransitionError(f"No {what} recorded in stage {self.stage.value!r}")
        return value

    def _run_exclusive(self, stage: Stage, call: Callable[[], T]) -> tuple[T, int]:
        """Run a slow collaborator call; returns (result, generation it started in)."""
        with self._lock:
            self._require(stage)
            if self._inflight:
                raise PipelineBusyError("Another request is still running for this video")
            self._inflight = True
            generation = self._generation
        try:
            result = call()
        finally:
            with self._lock:
                self._inflight = False
        return result, generation

    def _is_current_locked(self, generation: int, stage: Stage) -> bool:
        current = generation == self._generation and self._state.stage is stage
        if not current:
            LOG.info("Discarding result of a request cancelled by navigation")
        return current

    def _is_current(self, generation: int, stage: Stage) -> bool:
        with self._lock:
            return self._is_current_locked(generation, stage)

    def _commit(self, **changes: Any) -> None:
        with self._lock:
            self._state = replace(self._state, **changes)

    def _commit_if_current(self, generation: int, stage: Stage, /, **changes: Any) -> bool:
        """Apply `changes` only if no navigation happened since `generation` was taken."""
        with self._lock:
            if not self._is_current_locked(generation, stage):
                return False
            self._state = replace(self._state, **changes)
            return True

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def load(self, path: Path, info: VideoInfo | None = None) -> VideoInfo:
        """Register the source video and its metadata (Upload -> Locate)."""
        self._require(Stage.UPLOAD)
        path = Path(path)
        if not path.is_file():
            raise ValidationError(f"Video file not found: {path}")
        mime = guess_video_mime(path)
        if info is None:
            if self.transcoder is None:
                raise ValidationError("Video metadata unknown and no transcoder to probe it")
            info = self.transcoder.probe(path)
        LOG.info(
            "Loaded %s: %sx%s, %.2fs",
            path,
            info.width,
            info.height,
            info.duration,
        )
        self._commit(stage=Stage.LOCATE, source=path, mime_type=mime, info=info)
        return info

    # ------------------------------------------------------------------
    # Locate
    # ------------------------------------------------------------------

    def select_manual(self, selection: PixelBox | RegionSelector) -> DetectionSet:
        """Use one user-provided region for the whole video (Locate -> Review)."""
        st = self._require(Stage.LOCATE)
        info = self._known(st.info, "video metadata")
        box = selection if isinstance(selection, PixelBox) else selection.select(info)
        if not box.fits(info.width, info.height):
            raise ValidationError(
                f"Selected box {box} does not fit the {info.width}x{info.height} frame"
            )
        detections = DetectionSet.single(box, info)
        LOG.info("Manual region selected: x=%s y=%s w=%s h=%s", box.x, box.y, box.w, box.h)
        self._commit(
            stage=Stage.REVIEW, mode=LocateMode.MANUAL, manual_box=box, detections=detections
        )
        return detections

    def detect(self) -> DetectionSet | None:
        """Ask the detection collaborator for regions (Locate -> Review).

        Returns None when the request was cancelled by `back()` meanwhile.

        Raises:
            DetectionServiceError: If the service fails, answers with an empty
                array or yields no usable region. The stage stays Locate.
        """
        st = self._require(Stage.LOCATE)
        if self.detector is None:
            raise InvalidTransitionError("No detection service configured")
        detector = self.detector
        source = self._known(st.source, "source video")
        mime = self._known(st.mime_type, "MIME type")
        video = source.read_bytes()
        fps = self.config.sample_fps

        t0 = perf_counter()
        raw, generation = self._run_exclusive(
            Stage.LOCATE, lambda: detector.detect(video, mime, fps)
        )
        if not self._is_current(generation, Stage.LOCATE):
            return None
        if not raw:
            raise DetectionServiceError("Detection service returned an empty array")
        detections = self._resolve(DetectionSet.from_raw_observations(raw))
        LOG.info(
            "Detection: observations=%s rejected=%s took=%.2fs",
            len(detections),
            len(detections.rejected),
            perf_counter() - t0,
        )
        if not any(o.regions for o in detections):
            raise DetectionServiceError(
                f"Detection service found no usable watermark region "
                f"({len(raw)} entries, {len(detections.rejected)} rejected)"
            )
        committed = self._commit_if_current(
            generation,
            Stage.LOCATE,
            stage=Stage.REVIEW,
            mode=LocateMode.DETECT,
            detections=detections,
        )
        return detections if committed else None

    def track(self, reference: PixelBox | RegionSelector) -> DetectionSet | None:
        """Follow a reference region through the video (Locate -> Review).

        Returns None when the request was cancelled by `back()` meanwhile.

        Raises:
            DetectionServiceError: If the service fails or every entry is
                excluded. The stage stays Locate.
        """
        st = self._require(Stage.LOCATE)
        if self.tracker is None:
            raise InvalidTransitionError("No tracking service configured")
        tracker = self.tracker
        source = self._known(st.source, "source video")
        mime = self._known(st.mime_type, "MIME type")
        info = self._known(st.info, "video metadata")
        ref = reference if isinstance(reference, PixelBox) else reference.select(info)
        video = source.read_bytes()
        fps = self.config.sample_fps

        t0 = perf_counter()
        raw, generation = self._run_exclusive(
            Stage.LOCATE, lambda: tracker.track(video, mime, ref, info, fps)
        )
        if not self._is_current(generation, Stage.LOCATE):
            return None
        detections = DetectionSet.from_tracking(raw, info)
        LOG.info(
            "Tracking: observations=%s rejected=%s took=%.2fs",
            len(detections),
            len(detections.rejected),
            perf_counter() - t0,
        )
        if len(detections) == 0:
            raise DetectionServiceError(
                f"Tracking service did not find the region in any of {len(raw)} entries"
            )
        committed = self._commit_if_current(
            generation,
            Stage.LOCATE,
            stage=Stage.REVIEW,
            mode=LocateMode.TRACK,
            manual_box=ref,
            detections=detections,
        )
        return detections if committed else None

    def _resolve(self, detections: DetectionSet) -> DetectionSet:
        return resolve_regions(
            detections, label=self.config.region_label, min_score=self.config.min_score
        )

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def _edit(self, fn: Callable[[DetectionSet], Any]) -> Any:
        st = self._require(Stage.REVIEW)
        edited = self._known(st.detections, "detections").copy()
        out = fn(edited)
        self._commit(detections=edited)
        return out

    def remove_observation(self, timestamp: str) -> Observation:
        return self._edit(lambda ds: ds.remove_observation(timestamp))

    def replace_observation(self, timestamp: str, obs: Observation) -> None:
        self._edit(lambda ds: ds.replace_observation(timestamp, obs))

    def add_observation(self, obs: Observation) -> None:
        self._edit(lambda ds: ds.add_observation(obs))

    def build_track(self) -> RegionTrack:
        """Region track for the reviewed detections."""
        st = self._require(Stage.REVIEW, Stage.PROCESS)
        info = self._known(st.info, "video metadata")
        detections = self._known(st.detections, "detections")
        if st.mode is LocateMode.MANUAL and st.manual_box is not None:
            untouched = DetectionSet.single(st.manual_box, info).observations
            if detections.observations == untouched:
                # Exact pixels; the 0-1000 grid would shift the box slightly.
                return RegionTrack.constant(st.manual_box, info)
        return RegionTrack.from_detections(detections, info, self.config.policy)

    def confirm(self, method: RemovalMethod | None = None) -> FilterPlan:
        """Compile the reviewed detections into a filter plan (Review -> Process)."""
        st = self._require(Stage.REVIEW)
        info = self._known(st.info, "video metadata")
        method = RemovalMethod(method or self.config.method)
        track = self.build_track()
        dwell = self.config.dwell
        plan = build_filter_plan(track, method, info.duration, dwell_s=dwell)
        check_overlaps(plan, tolerance=dwell)
        if self.config.coalesce:
            plan = coalesce(plan)
        self._commit(stage=Stage.PROCESS, method=method, plan=plan)
        return plan

    # ------------------------------------------------------------------
    # Process
    # ------------------------------------------------------------------

    def process(
        self,
        output: Path,
        *,
        on_progress: Callable[[int], None] | None = None,
        on_log: Callable[[str], None] | None = None,
    ) -> Path | None:
        """Run the transcoder and reset for the next video (Process -> Upload).

        Returns the output path, or None when the run was cancelled by `back()`.
        """
        st = self._require(Stage.PROCESS)
        if self.transcoder is None:
            raise InvalidTransitionError("No transcoder configured")
        transcoder = self.transcoder
        plan = self._known(st.plan, "filter plan")
        src = self._known(st.source, "source video")
        output = Path(output)
        if output.resolve() == src.resolve():
            raise ValidationError("Output path must differ from the source video")

        t0 = perf_counter()
        out, generation = self._run_exclusive(
            Stage.PROCESS,
            lambda: transcoder.transcode(
                src, plan, output, on_progress=on_progress, on_log=on_log
            ),
        )
        with self._lock:
            current = self._is_current_locked(generation, Stage.PROCESS)
            if current:
                # Completion and reset happen under one lock hold.
                self._generation += 1
                self._state = PipelineState()
                self.last_output = out
        if not current:
            out.unlink(missing_ok=True)
            return None
        LOG.info("Process: output=%s took=%.2fs", out, perf_counter() - t0)
        return out

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def back(self) -> Stage:
        """Return to the previous stage, dropping data produced after it."""
        with self._lock:
            self._generation += 1
            st = self._state
            prev = _PREVIOUS[st.stage]
            if st.stage is Stage.LOCATE:
                self._state = PipelineState()
            elif st.stage is Stage.REVIEW:
                self._state = replace(
                    st, stage=prev, mode=None, detections=None, manual_box=None
                )
            elif st.stage is Stage.PROCESS:
                self._state = replace(st, stage=prev, method=None, plan=None)
            return self._state.stage

    def reset(self) -> None:
        """Forget the current video; ready for the next one."""
        with self._lock:
            self._generation += 1
            self._state = PipelineState()
