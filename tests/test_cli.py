from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
import yaml
from PIL import Image

import logo_eraser.cli as cli
from logo_eraser.errors import (
    DetectionServiceError,
    EmptyPlanError,
    LogoEraserError,
    TranscodeServiceError,
    ValidationError,
)
from logo_eraser.pipelines.filter_plan import FilterPlan
from logo_eraser.vision.types import PixelBox, VideoInfo

INFO = VideoInfo(width=640, height=360, duration=4.0)


class _FakeTranscoder:
    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs

    def probe(self, path: Path) -> VideoInfo:
        _ = path
        return INFO

    def grab_frame(self, path: Path, seconds: float) -> Image.Image:
        _ = path, seconds
        return Image.new("RGB", (INFO.width, INFO.height))

    def transcode(self, src: Path, plan: FilterPlan, dst: Path, **kwargs: Any) -> Path:
        _ = src, plan, kwargs
        dst.write_bytes(b"out")
        return dst


class _FakeVlm:
    answer: Any = [
        {"ts": "00:00", "boxes": [{"label": "watermark", "box_2d": [0, 0, 100, 200]}]},
        {"ts": "00:02", "boxes": [{"label": "watermark", "box_2d": [0, 0, 100, 200]}]},
    ]

    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs

    def detect(self, video: bytes, mime_type: str, sample_fps: float) -> list[dict[str, Any]]:
        _ = video, mime_type, sample_fps
        if isinstance(self.answer, Exception):
            raise self.answer
        return self.answer

    def track(
        self,
        video: bytes,
        mime_type: str,
        reference: PixelBox,
        info: VideoInfo,
        sample_fps: float,
    ) -> list[dict[str, Any]]:
        _ = video, mime_type, info, sample_fps
        box = {"x": reference.x, "y": reference.y, "w": reference.w, "h": reference.h}
        return [{"ts": "00:00", "box": box, "confidence": 0.9}]


@pytest.fixture
def video(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setattr(cli, "FfmpegTranscoder", _FakeTranscoder)
    monkeypatch.setattr(cli, "VlmDetector", _FakeVlm)
    for name in ("LOGO_ERASER_BACKEND", "LOGO_ERASER_VLM_MODEL", "LOGO_ERASER_METHOD"):
        monkeypatch.delenv(name, raising=False)
    p = tmp_path / "clip.mp4"
    p.write_bytes(b"fake-video")
    return p


def test_parse_box() -> None:
    assert cli.parse_box("1, 2,3 ,4") == PixelBox(x=1, y=2, w=3, h=4)
    with pytest.raises(ValidationError):
        cli.parse_box("1,2,3")
    with pytest.raises(ValidationError):
        cli.parse_box("a,b,c,d")


def test_exit_codes_by_category() -> None:
    assert cli.exit_code_for(ValidationError("x")) == 2
    assert cli.exit_code_for(DetectionServiceError("x")) == 3
    assert cli.exit_code_for(TranscodeServiceError("x")) == 4
    assert cli.exit_code_for(EmptyPlanError("x")) == 5
    assert cli.exit_code_for(LogoEraserError("x")) == 1


def test_manual_mode_writes_output_and_plan(
    video: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    plan_out = tmp_path / "plan.yaml"
    code = cli.main(
        [
            "remove-watermark",
            str(video),
            "--mode",
            "manual",
            "--box",
            "10,20,100,40",
            "--method",
            "blur",
            "--plan-out",
            str(plan_out),
        ]
    )
    assert code == 0
    out = (tmp_path / "removed_clip.mp4").resolve()
    assert capsys.readouterr().out.strip() == str(out)
    assert out.read_bytes() == b"out"
    plan = yaml.safe_load(plan_out.read_text(encoding="utf-8"))
    assert plan["entries"] == [
        {"box": {"x": 10, "y": 20, "w": 100, "h": 40}, "start": 0.0, "end": 4.0, "method": "blur"}
    ]


def test_detect_mode_with_review_previews(video: Path, tmp_path: Path) -> None:
    review = tmp_path / "review"
    code = cli.main(
        [
            "remove-watermark",
            str(video),
            "--review-dir",
            str(review),
            "--output",
            str(tmp_path / "clean.mp4"),
        ]
    )
    assert code == 0
    assert (tmp_path / "clean.mp4").is_file()
    assert sorted(p.name for p in review.iterdir()) == ["review_00m00s.jpg", "review_00m02s.jpg"]


def test_track_mode_with_preset(video: Path, tmp_path: Path) -> None:
    out = tmp_path / "t.mp4"
    argv = ["remove-watermark", str(video), "--mode", "track", "--preset", "top-left"]
    assert cli.main([*argv, "-o", str(out)]) == 0
    assert out.is_file()


def test_dropping_every_observation_is_an_empty_plan(
    video: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code = cli.main(["remove-watermark", str(video), "--drop", "00:00", "--drop", "00:02"])
    assert code == 5
    assert "[ERROR] EmptyPlanError:" in capsys.readouterr().err


def test_manual_mode_needs_a_region(video: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["remove-watermark", str(video), "--mode", "manual"]) == 2
    assert "[ERROR] ValidationError:" in capsys.readouterr().err


def test_detection_failure_exit_code(
    video: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setattr(_FakeVlm, "answer", DetectionServiceError("HTTP 500: quota"))
    assert cli.main(["remove-watermark", str(video)]) == 3
    assert "quota" in capsys.readouterr().err


def test_missing_video_is_a_validation_error(tmp_path: Path) -> None:
    assert cli.main(["remove-watermark", str(tmp_path / "nope.mp4"), "--box", "0,0,1,1"]) == 2
