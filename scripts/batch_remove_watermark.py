#!/usr/bin/env python3
"""Batch runner: remove the watermark from every video in a directory.

- Scans MP4/MOV/WEBM/MKV videos under `assets/videos/` (or `--videos-dir`).
- Locates the watermark with the detection service (or a fixed `--box`).
- Writes `outputs/removed/<video name>` and `outputs/removed/<video stem>.plan.yaml`.
- Produces `outputs/removed/summary.yaml`: plan entries and status per video.

Tuning is via the `LOGO_ERASER_*` environment variables (see `EraserConfig`),
e.g. `LOGO_ERASER_VLM_MODEL`, `LOGO_ERASER_SAMPLE_FPS`, `LOGO_ERASER_METHOD`.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Any

from logo_eraser.cli import parse_box, write_plan, yaml_dump
from logo_eraser.config import EraserConfig
from logo_eraser.detectors.http_api import HttpDetectionClient
from logo_eraser.detectors.vlm_litellm import VlmDetector
from logo_eraser.errors import LogoEraserError
from logo_eraser.pipelines.controller import PipelineController
from logo_eraser.transcode.ffmpeg import FfmpegTranscoder


def _iter_videos(videos_dir: Path) -> list[Path]:
    exts = {".mp4", ".mov", ".webm", ".mkv"}
    return sorted(p for p in videos_dir.iterdir() if p.is_file() and p.suffix.lower() in exts)


def main(argv: list[str]) -> int:
    ap = argparse.ArgumentParser(description="Remove watermarks from a folder of videos.")
    ap.add_argument("--videos-dir", type=str, default="assets/videos")
    ap.add_argument("--out-dir", type=str, default="outputs/removed")
    ap.add_argument("--box", type=str, default=None, help="Fixed x,y,w,h region for every video")
    ap.add_argument("--verbose", action="store_true")
    args = ap.parse_args(argv)

    cfg = EraserConfig.from_env(verbose=True if args.verbose else None)
    if cfg.verbose:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(message)s")

    videos_dir = Path(args.videos_dir).expanduser().resolve()
    out_root = Path(args.out_dir).expanduser().resolve()
    out_root.mkdir(parents=True, exist_ok=True)
    if not videos_dir.is_dir():
        print(f"[ERROR] Not a directory: {videos_dir}", file=sys.stderr)
        return 2
    videos = _iter_videos(videos_dir)
    if not videos:
        print(f"No videos found under {videos_dir}", file=sys.stderr)
        return 1

    transcoder = FfmpegTranscoder(
        ffmpeg_bin=cfg.ffmpeg_bin,
        ffprobe_bin=cfg.ffprobe_bin,
        blur_radius=cfg.blur_radius,
        preset=cfg.x264_preset,
    )
    service: VlmDetector | HttpDetectionClient
    if cfg.backend == "http":
        service = HttpDetectionClient(api_base=cfg.api_base, timeout_s=cfg.vlm_timeout_s)
    else:
        service = VlmDetector(
            model=cfg.vlm_model,
            max_tokens=cfg.vlm_max_tokens,
            timeout_s=cfg.vlm_timeout_s,
            verbose=cfg.verbose,
        )

    summary: list[dict[str, Any]] = []
    failures = 0
    for video in videos:
        ctl = PipelineController(
            config=cfg, detector=service, tracker=service, transcoder=transcoder
        )
        try:
            ctl.load(video)
            if args.box:
                ctl.select_manual(parse_box(args.box))
            else:
                ctl.detect()
            plan = ctl.confirm()
            write_plan(plan, out_root / f"{video.stem}.plan.yaml")
            out = ctl.process(out_root / video.name)
            summary.append(
                {
                    "video": video.name,
                    "status": "ok",
                    "output": str(out),
                    "entries": len(plan.entries),
                }
            )
            print(f"{video.name}: {len(plan.entries)} plan entries -> {out}")
        except LogoEraserError as e:
            failures += 1
            summary.append({"video": video.name, "status": "error", "error": str(e)})
            print(f"[ERROR] {video}: {type(e).__name__}: {e}", file=sys.stderr)

    (out_root / "summary.yaml").write_text(
        yaml_dump({"videos": summary}),
        encoding="utf-8",
    )

    if failures:
        print(f"Completed with {failures} failures.", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
