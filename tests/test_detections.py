from __future__ import annotations

import logging

import pytest

from logo_eraser.errors import NotFoundError, ValidationError
from logo_eraser.vision.detections import DetectionSet
from logo_eraser.vision.types import NormalizedBox, Observation, PixelBox, Region, VideoInfo

INFO = VideoInfo(width=1920, height=1080, duration=10.0)


def _obs(ts: str, seconds: float, *boxes: NormalizedBox) -> Observation:
    return Observation(timestamp=ts, seconds=seconds, regions=tuple(Region(box=b) for b in boxes))


def test_from_raw_observations_sorts_and_converts() -> None:
    raw = [
        {"ts": "00:05", "boxes": [{"label": "logo", "box_2d": [10, 20, 30, 40], "score": 0.8}]},
        {"ts": "00:00", "boxes": [{"label": "watermark", "box_2d": [100, 100, 200, 300]}]},
    ]
    ds = DetectionSet.from_raw_observations(raw)
    assert ds.timestamps == ["00:00", "00:05"]
    first = ds.observations[0]
    assert first.seconds == 0.0
    assert first.regions[0].box == NormalizedBox(y_min=100, x_min=100, y_max=200, x_max=300)
    assert first.regions[0].score == 1.0
    assert ds.observations[1].regions[0].label == "logo"
    assert ds.rejected == []


def test_invalid_boxes_are_dropped_with_a_warning(caplog: pytest.LogCaptureFixture) -> None:
    raw = [
        {
            "ts": "00:01",
            "boxes": [
                {"label": "watermark", "box_2d": [200, 100, 100, 300]},
                {"label": "watermark", "box_2d": [0, 0, 50, 50], "score": 0.9},
            ],
        },
        {"ts": "00:02", "boxes": [{"label": "watermark", "box_2d": [0, 0, 1200, 10]}]},
        {"ts": "bad", "boxes": []},
        {"ts": "00:03", "boxes": []},
        {"boxes": []},
    ]
    with caplog.at_level(logging.WARNING):
        ds = DetectionSet.from_raw_observations(raw)

    # 00:01 keeps its valid box; 00:02 had only an invalid one and is dropped.
    assert ds.timestamps == ["00:01", "00:03"]
    assert len(ds.get("00:01").regions) == 1
    assert ds.get("00:03").regions == ()
    assert len(ds.rejected) == 4
    assert "Dropping detection" in caplog.text


def test_score_out_of_range_is_rejected() -> None:
    ds = DetectionSet.from_raw_observations(
        [{"ts": "00:00", "boxes": [{"box_2d": [0, 0, 10, 10], "score": 1.5}]}]
    )
    assert len(ds) == 0
    assert ds.rejected[0].timestamp == "00:00"


def test_remove_missing_timestamp_raises_not_found() -> None:
    ds = DetectionSet([_obs("00:00", 0.0, NormalizedBox(0, 0, 10, 10))])
    with pytest.raises(NotFoundError):
        ds.remove_observation("00:07")
    assert len(ds) == 1


def test_edits_replace_whole_entries() -> None:
    a = NormalizedBox(0, 0, 10, 10)
    b = NormalizedBox(20, 20, 40, 40)
    ds = DetectionSet([_obs("00:00", 0.0, a), _obs("00:04", 4.0, a)])
    original = ds.get("00:04")

    ds.replace_observation("00:04", original.with_regions((Region(box=b),)))
    assert ds.get("00:04").regions[0].box == b
    assert original.regions[0].box == a

    ds.add_observation(_obs("00:02", 2.0, b))
    assert ds.timestamps == ["00:00", "00:02", "00:04"]

    removed = ds.remove_observation("00:00")
    assert removed.seconds == 0.0
    assert ds.timestamps == ["00:02", "00:04"]


def test_copy_is_independent() -> None:
    ds = DetectionSet([_obs("00:00", 0.0, NormalizedBox(0, 0, 10, 10))])
    cp = ds.copy()
    cp.remove_observation("00:00")
    assert len(ds) == 1
    assert len(cp) == 0


def test_nearest_before_and_after() -> None:
    a = NormalizedBox(0, 0, 10, 10)
    ds = DetectionSet([_obs("00:02", 2.0, a), _obs("00:05", 5.0, a)])
    assert ds.nearest_before(1.0) is None
    assert ds.nearest_before(2.0).timestamp == "00:02"  # type: ignore[union-attr]
    assert ds.nearest_before(4.9).timestamp == "00:02"  # type: ignore[union-attr]
    assert ds.nearest_before(100.0).timestamp == "00:05"  # type: ignore[union-attr]
    assert ds.nearest_after(0.0).timestamp == "00:02"  # type: ignore[union-attr]
    assert ds.nearest_after(2.5).timestamp == "00:05"  # type: ignore[union-attr]
    assert ds.nearest_after(5.1) is None


def test_duplicate_timestamps_first_occurrence_wins() -> None:
    a = NormalizedBox(0, 0, 10, 10)
    b = NormalizedBox(50, 50, 60, 60)
    ds = DetectionSet.from_raw_observations(
        [
            {"ts": "00:03", "boxes": [{"box_2d": a.as_box_2d()}]},
            {"ts": "00:03", "boxes": [{"box_2d": b.as_box_2d()}]},
        ]
    )
    assert len(ds) == 2
    assert ds.nearest_before(3.0).regions[0].box == a  # type: ignore[union-attr]
    assert ds.nearest_after(3.0).regions[0].box == a  # type: ignore[union-attr]
    assert [o.regions[0].box for o in ds.unique()] == [a]


def test_from_tracking_excludes_not_visible_entries() -> None:
    entries = [
        {"ts": "00:00", "box": {"x": 1700, "y": 980, "w": 200, "h": 80}, "confidence": 0.9},
        {"ts": "00:01", "box": {"x": 1700, "y": 980, "w": 200, "h": 80}, "confidence": 0},
        {"ts": "00:02", "box": {"x": 1800, "y": 1000, "w": 400, "h": 200}, "confidence": 0.7},
        {"ts": "00:03", "box": {"x": 5000, "y": 5000, "w": 10, "h": 10}, "confidence": 0.7},
    ]
    ds = DetectionSet.from_tracking(entries, INFO)
    assert ds.timestamps == ["00:00", "00:02"]
    assert ds.get("00:00").regions[0].label == "watermark"
    assert ds.get("00:02").regions[0].score == 0.7
    assert [r.timestamp for r in ds.rejected] == ["00:03"]


def test_single_is_one_observation_at_zero() -> None:
    ds = DetectionSet.single(PixelBox(x=192, y=108, w=384, h=108), INFO)
    assert ds.timestamps == ["00:00"]
    assert ds.get("00:00").regions[0].box == NormalizedBox(100, 100, 200, 300)
    assert ds.get("00:00").regions[0].label == "manual"


def test_normalized_box_validation() -> None:
    with pytest.raises(ValidationError):
        NormalizedBox(0, 0, 0, 10)
    with pytest.raises(ValidationError):
        NormalizedBox(0, 0, 10, 1001)
    with pytest.raises(ValidationError):
        NormalizedBox.from_box_2d([0, 0, 10])
    with pytest.raises(ValidationError):
        NormalizedBox.from_box_2d([0, 0, float("nan"), 10])
    assert NormalizedBox.from_box_2d([0.5, 1.5, 10.4, 20.5]) == NormalizedBox(1, 2, 10, 21)
