"""Command-line entry point: `logo-eraser remove-watermark VIDEO ...`."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import yaml

from logo_eraser.config import EraserConfig
from logo_eraser.detectors.http_api import HttpDetectionClient
from logo_eraser.detectors.vlm_litellm import VlmDetector
from logo_eraser.errors import (
    DetectionServiceError,
    EmptyPlanError,
    LogoEraserError,
    TranscodeServiceError,
    ValidationError,
)
from logo_eraser.pipelines.controller import LocateMode, PipelineController
from logo_eraser.pipelines.filter_plan import FilterPlan
from logo_eraser.transcode.ffmpeg import FfmpegTranscoder
from logo_eraser.vision.coordinates import seconds_to_timestamp
from logo_eraser.vision.selection import PRESET_POSITIONS, PresetSelection
from logo_eraser.vision.types import PixelBox, RemovalMethod
from logo_eraser.vision.vis import draw_observation

LOG = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_OTHER = 1
EXIT_VALIDATION = 2
EXIT_DETECTION = 3
EXIT_TRANSCODE = 4
EXIT_EMPTY_PLAN = 5

_EXIT_CODES: list[tuple[type[LogoEraserError], int]] = [
    (ValidationError, EXIT_VALIDATION),
    (DetectionServiceError, EXIT_DETECTION),
    (TranscodeServiceError, EXIT_TRANSCODE),
    (EmptyPlanError, EXIT_EMPTY_PLAN),
]


def exit_code_for(err: LogoEraserError) -> int:
    """Process exit code for an error category."""
    for cls, code in _EXIT_CODES:
        if isinstance(err, cls):
            return code
    return EXIT_OTHER


def parse_box(raw: str) -> PixelBox:
    """Parse `x,y,w,h` pixel coordinates."""
    parts = [p.strip() for p in raw.split(",")]
    if len(parts) != 4:
        raise ValidationError(f"--box expects x,y,w,h, got {raw!r}")
    try:
        x, y, w, h = (int(p) for p in parts)
    except ValueError as e:
        raise ValidationError(f"--box values must be integers, got {raw!r}") from e
    return PixelBox(x=x, y=y, w=w, h=h)


def yaml_dump(data: object) -> str:
    """`yaml.safe_dump` as text, keeping key order."""
    dumped = yaml.safe_dump(data, sort_keys=False)
    if dumped is None:
        return ""
    if isinstance(dumped, bytes):
        return dumped.decode("utf-8")
    return dumped


def write_plan(plan: FilterPlan, path: Path) -> None:
    """Dump a filter plan as YAML."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml_dump(plan.to_dict()), encoding="utf-8")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="logo-eraser")
    sub = ap.add_subparsers(dest="command", required=True)
    rm = sub.add_parser("remove-watermark", help="Locate a watermark and remove it from a video")
    rm.add_argument("video", type=str)
    rm.add_argument("--mode", choices=[m.value for m in LocateMode], default="detect")
    rm.add_argument("--box", type=str, default=None, help="x,y,w,h in video pixels")
    rm.add_argument("--preset", choices=list(PRESET_POSITIONS), default=None)
    rm.add_argument("--fps", type=float, default=None, help="Sampling rate for detect/track")
    rm.add_argument("--method", choices=[m.value for m in RemovalMethod], default=None)
    rm.add_argument("--policy", choices=["hold", "linear"], default=None)
    rm.add_argument("--dwell", type=float, default=None, help="Dwell window in seconds")
    rm.add_argument("--backend", choices=["litellm", "http"], default=None)
    rm.add_argument("--model", type=str, default=None, help="LiteLLM model name")
    rm.add_argument("--api-base", type=str, default=None, help="Detection endpoint base URL")
    rm.add_argument("--label", type=str, default=None, help="Only keep regions with this label")
    rm.add_argument("--min-score", type=float, default=None)
    rm.add_argument("--drop", action="append", default=[], metavar="MM:SS",
                    help="Drop the observation at this timestamp before processing")
    rm.add_argument("--review-dir", type=str, default=None,
                    help="Write one preview image per observation here")
    rm.add_argument("--plan-out", type=str, default=None, help="Write the filter plan as YAML")
    rm.add_argument("--output", "-o", type=str, default=None)
    rm.add_argument("--verbose", action="store_true")
    return ap


def _write_reviews(ctl: PipelineController, transcoder: FfmpegTranscoder, outdir: Path) -> None:
    st = ctl.state
    if st.detections is None or st.source is None:
        return
    for obs in st.detections.unique():
        if not obs.regions:
            continue
        img = transcoder.grab_frame(st.source, obs.seconds)
        stem = obs.timestamp.replace(":", "m")
        draw_observation(img, obs, outdir / f"review_{stem}s.jpg")
    LOG.info("Review previews written to %s", outdir)


def run(args: argparse.Namespace) -> Path:
    """Run one remove-watermark job and return the output path."""
    cfg = EraserConfig.from_env(
        sample_fps=args.fps,
        method=args.method,
        policy=args.policy,
        dwell_s=args.dwell,
        backend=args.backend,
        vlm_model=args.model,
        api_base=args.api_base,
        region_label=args.label,
        min_score=args.min_score,
        verbose=True if args.verbose else None,
    )
    if cfg.verbose:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(message)s")

    src = Path(args.video).expanduser().resolve()
    output = (
        Path(args.output).expanduser().resolve()
        if args.output
        else src.with_name(f"removed_{src.name}")
    )
    transcoder = FfmpegTranscoder(
        ffmpeg_bin=cfg.ffmpeg_bin,
        ffprobe_bin=cfg.ffprobe_bin,
        blur_radius=cfg.blur_radius,
        preset=cfg.x264_preset,
    )
    if cfg.backend == "http":
        service: VlmDetector | HttpDetectionClient = HttpDetectionClient(
            api_base=cfg.api_base, timeout_s=cfg.vlm_timeout_s
        )
    else:
        service = VlmDetector(
            model=cfg.vlm_model,
            temperature=cfg.vlm_temperature,
            max_tokens=cfg.vlm_max_tokens,
            timeout_s=cfg.vlm_timeout_s,
            verbose=cfg.verbose,
        )
    ctl = PipelineController(
        config=cfg, detector=service, tracker=service, transcoder=transcoder
    )

    ctl.load(src)
    mode = LocateMode(args.mode)
    region = None
    if args.box:
        region = parse_box(args.box)
    elif args.preset:
        region = PresetSelection(position=args.preset)
    if mode is LocateMode.DETECT:
        detections = ctl.detect()
    elif region is None:
        raise ValidationError(f"--mode {mode.value} needs --box or --preset")
    elif mode is LocateMode.MANUAL:
        detections = ctl.select_manual(region)
    else:
        detections = ctl.track(region)
    if detections is None:
        raise LogoEraserError("Locating the watermark was cancelled")

    for ts in args.drop:
        ctl.remove_observation(ts)
    for obs in ctl.state.detections or ():
        LOG.info(
            "%s: %s",
            obs.timestamp,
            ", ".join(f"{r.label} {r.score:.2f}" for r in obs.regions) or "nothing",
        )
    if args.review_dir:
        _write_reviews(ctl, transcoder, Path(args.review_dir))

    plan = ctl.confirm()
    if args.plan_out:
        write_plan(plan, Path(args.plan_out))

    def _progress(pct: int) -> None:
        print(f"\rprocessing {pct:3d}%", end="", file=sys.stderr, flush=True)

    out = ctl.process(output, on_progress=_progress, on_log=LOG.info)
    print(file=sys.stderr)
    if out is None:
        raise LogoEraserError("Processing was cancelled before the output was kept")
    LOG.info(
        "Removed watermark over %s (%s plan entries)",
        seconds_to_timestamp(plan.duration),
        len(plan.entries),
    )
    return out


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(sys.argv[1:] if argv is None else argv)
    try:
        out = run(args)
    except LogoEraserError as e:
        print(f"[ERROR] {type(e).__name__}: {e}", file=sys.stderr)
        return exit_code_for(e)
    print(out)
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
