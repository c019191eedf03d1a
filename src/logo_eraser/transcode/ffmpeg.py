"""ffmpeg/ffprobe adapter: probing, filter-graph rendering and transcoding."""

from __future__ import annotations

import io
import logging
import os
import subprocess
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any, Protocol

import pydantic
from PIL import Image
from pydantic import BaseModel, ConfigDict, Field

from logo_eraser.errors import TranscodeServiceError, ValidationError
from logo_eraser.pipelines.filter_plan import FilterPlan, PlanEntry
from logo_eraser.vision.types import PixelBox, RemovalMethod, VideoInfo

LOG = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]
LogCallback = Callable[[str], None]
Runner = Callable[[list[str]], subprocess.CompletedProcess[bytes]]

_LOG_TAIL = 20


class _Process(Protocol):
    stdout: IO[str] | None

    def wait(self) -> int: ...

    def kill(self) -> None: ...


PopenFactory = Callable[..., _Process]


class _ProbeStream(BaseModel):
    model_config = ConfigDict(extra="ignore")

    width: int
    height: int


class _ProbeFormat(BaseModel):
    model_config = ConfigDict(extra="ignore")

    duration: float


class _ProbeOut(BaseModel):
    model_config = ConfigDict(extra="ignore")

    streams: list[_ProbeStream] = Field(default_factory=list)
    format: _ProbeFormat


def _run(cmd: list[str]) -> subprocess.CompletedProcess[bytes]:
    return subprocess.run(cmd, capture_output=True, check=False)


def _popen(cmd: list[str], **kwargs: Any) -> _Process:
    return subprocess.Popen(cmd, **kwargs)


def _notify(callback: Callable[[Any], None] | None, value: Any) -> None:
    """Call an advisory callback; its failure never stops the transcode."""
    if callback is None:
        return
    try:
        callback(value)
    except Exception as e:
        LOG.warning("Ignoring failed transcode callback %r: %s", callback, e)


def _enable(e: PlanEntry) -> str:
    return f"enable='between(t,{e.start:.3f},{e.end:.3f})'"


def _delogo_box(b: PixelBox, width: int, height: int) -> PixelBox:
    """Keep the delogo rectangle one pixel inside the frame (it samples the border)."""
    x = max(1, b.x) if width > 2 else b.x
    y = max(1, b.y) if height > 2 else b.y
    x2 = min(b.x2, width - 1) if width > 2 else b.x2
    y2 = min(b.y2, height - 1) if height > 2 else b.y2
    if x2 <= x or y2 <= y:
        return b
    return PixelBox(x=x, y=y, w=x2 - x, h=y2 - y)


def render_filter_graph(
    plan: FilterPlan,
    *,
    blur_radius: int = 10,
    input_label: str = "0:v",
    output_label: str = "vout",
) -> str:
    """Render a plan as an ffmpeg `-filter_complex` string.

    Every entry becomes one time-gated stage chained onto the previous one:
    inpaint uses `delogo`; blur crops the box, applies `boxblur` and overlays
    it back. The final stage is labelled `[output_label]`.
    """
    if not plan.entries:
        raise ValidationError("Cannot render an empty filter plan")
    stages: list[str] = []
    cur = f"[{input_label}]"
    last = len(plan.entries) - 1
    for i, e in enumerate(plan.entries):
        out = f"[{output_label}]" if i == last else f"[v{i + 1}]"
        if e.method is RemovalMethod.INPAINT:
            b = _delogo_box(e.box, plan.width, plan.height)
            stages.append(f"{cur}delogo=x={b.x}:y={b.y}:w={b.w}:h={b.h}:{_enable(e)}{out}")
        else:
            b = e.box
            # boxblur radius is bounded by the (chroma-subsampled) crop size.
            r = max(0, min(blur_radius, min(b.w, b.h) // 4))
            stages.append(
                f"{cur}split=2[m{i}][c{i}];"
                f"[c{i}]crop={b.w}:{b.h}:{b.x}:{b.y},"
                f"boxblur=luma_radius={r}:luma_power=2[k{i}];"
                f"[m{i}][k{i}]overlay={b.x}:{b.y}:{_enable(e)}{out}"
            )
        cur = out
    return ";".join(stages)


def _parse_progress_us(line: str) -> int | None:
    key, _, value = line.partition("=")
    if key not in {"out_time_us", "out_time_ms"}:
        return None
    try:
        # Both keys carry microseconds (out_time_ms is misnamed upstream).
        return int(value)
    except ValueError:
        return None


@dataclass
class FfmpegTranscoder:
    """Transcoder collaborator driving the ffmpeg/ffprobe binaries.

    Attributes:
        ffmpeg_bin, ffprobe_bin: Executables to run.
        blur_radius: Maximum `boxblur` radius for the blur method.
        preset: libx264 preset.
        runner: Runs short commands (probe, frame grab); injectable for tests.
        popen_factory: Starts the long-running transcode; injectable for tests.
    """

    ffmpeg_bin: str = "ffmpeg"
    ffprobe_bin: str = "ffprobe"
    blur_radius: int = 10
    preset: str = "fast"
    runner: Runner = _run
    popen_factory: PopenFactory = _popen

    def probe(self, path: Path) -> VideoInfo:
        """Read resolution and duration of `path`."""
        cmd = [
            self.ffprobe_bin,
            "-v",
            "error",
            "-select_streams",
            "v:0",
            "-show_entries",
            "stream=width,height:format=duration",
            "-of",
            "json",
            str(path),
        ]
        try:
            proc = self.runner(cmd)
        except OSError as e:
            raise TranscodeServiceError(f"Could not run {self.ffprobe_bin}: {e}") from e
        if proc.returncode != 0:
            err = proc.stderr.decode("utf-8", errors="replace").strip()
            raise ValidationError(f"Not a readable video: {path} ({err})")
        try:
            out = _ProbeOut.model_validate_json(proc.stdout)
        except pydantic.ValidationError as e:
            raise ValidationError(f"Could not read video metadata for {path}") from e
        if not out.streams:
            raise ValidationError(f"No video stream in {path}")
        s = out.streams[0]
        return VideoInfo(width=s.width, height=s.height, duration=out.format.duration)

    def grab_frame(self, path: Path, seconds: float) -> Image.Image:
        """Decode the frame shown at `seconds` as an RGB image."""
        cmd = [
            self.ffmpeg_bin,
            "-v",
            "error",
            "-ss",
            f"{max(0.0, seconds):.3f}",
            "-i",
            str(path),
            "-frames:v",
            "1",
            "-f",
            "image2pipe",
            "-vcodec",
            "png",
            "-",
        ]
        try:
            proc = self.runner(cmd)
        except OSError as e:
            raise TranscodeServiceError(f"Could not run {self.ffmpeg_bin}: {e}") from e
        if proc.returncode != 0 or not proc.stdout:
            err = proc.stderr.decode("utf-8", errors="replace").strip()
            raise TranscodeServiceError(f"Frame grab at {seconds:.2f}s failed: {err}")
        return Image.open(io.BytesIO(proc.stdout)).convert("RGB")

    def build_command(self, src: Path, plan: FilterPlan, dst: Path) -> list[str]:
        """ffmpeg argv applying `plan` to `src` and writing `dst`."""
        graph = render_filter_graph(plan, blur_radius=self.blur_radius)
        return [
            self.ffmpeg_bin,
            "-y",
            "-nostats",
            "-loglevel",
            "error",
            "-progress",
            "pipe:1",
            "-i",
            str(src),
            "-filter_complex",
            graph,
            "-map",
            "[vout]",
            "-map",
            "0:a?",
            "-c:v",
            "libx264",
            "-preset",
            self.preset,
            "-c:a",
            "copy",
            str(dst),
        ]

    def transcode(
        self,
        src: Path,
        plan: FilterPlan,
        dst: Path,
        *,
        on_progress: ProgressCallback | None = None,
        on_log: LogCallback | None = None,
    ) -> Path:
        """Apply `plan` to `src`, writing `dst` only if ffmpeg succeeds.

        Output goes to a hidden temporary file next to `dst` and is renamed at
        the end, so a failed run never leaves a partial `dst` behind.
        Progress (0-100) and log lines are advisory.

        Raises:
            TranscodeServiceError: If ffmpeg cannot start or exits non-zero.
        """
        dst = Path(dst)
        dst.parent.mkdir(parents=True, exist_ok=True)
        tmp = dst.with_name(f".{dst.stem}.partial{dst.suffix}")
        cmd = self.build_command(src, plan, tmp)
        LOG.info("Running ffmpeg: %s entries -> %s", len(plan.entries), dst)
        LOG.debug("ffmpeg argv: %s", cmd)

        tail: deque[str] = deque(maxlen=_LOG_TAIL)
        total_us = plan.duration * 1e6
        last_pct = -1
        try:
            proc = self.popen_factory(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
            )
        except OSError as e:
            raise TranscodeServiceError(f"Could not run {self.ffmpeg_bin}: {e}") from e

        try:
            for raw in proc.stdout or ():
                line = raw.strip()
                if not line:
                    continue
                us = _parse_progress_us(line)
                if us is not None:
                    pct = max(0, min(100, int(us / total_us * 100))) if total_us > 0 else 0
                    if pct != last_pct:
                        _notify(on_progress, pct)
                    last_pct = pct
                    continue
                if line.startswith("progress="):
                    if line == "progress=end" and last_pct != 100:
                        _notify(on_progress, 100)
                        last_pct = 100
                    continue
                if "=" in line and " " not in line:
                    # Remaining -progress keys (frame=, fps=, bitrate=, ...).
                    continue
                tail.append(line)
                _notify(on_log, line)
            code = proc.wait()
        except BaseException:
            proc.kill()
            proc.wait()
            tmp.unlink(missing_ok=True)
            raise

        if code != 0 or not tmp.is_file():
            tmp.unlink(missing_ok=True)
            detail = "\n".join(tail) or f"exit code {code}"
            raise TranscodeServiceError(f"ffmpeg failed (exit code {code}):\n{detail}")
        os.replace(tmp, dst)
        LOG.info("Transcode finished: %s", dst)
        return dst
