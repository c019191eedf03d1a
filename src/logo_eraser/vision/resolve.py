"""Reduce multi-candidate observations to at most one region each."""

from __future__ import annotations

from logo_eraser.vision.detections import DetectionSet
from logo_eraser.vision.geometry import iou
from logo_eraser.vision.types import Region


def _label_matches(region: Region, label: str | None) -> bool:
    if label is None:
        return True
    return label.strip().lower() in region.label.lower()


def resolve_regions(
    detections: DetectionSet,
    *,
    label: str | None = None,
    min_score: float = 0.0,
) -> DetectionSet:
    """Keep one region per observation.

    Policy (deterministic):
      1) Drop candidates below `min_score` or whose label does not contain `label`.
      2) Highest score wins.
      3) Equal scores: the candidate overlapping the previously kept region most.
    Observations left without candidates keep an empty region tuple.
    """
    out = []
    prev: Region | None = None
    for obs in detections:
        cands = [r for r in obs.regions if r.score >= min_score and _label_matches(r, label)]
        if not cands:
            out.append(obs.with_regions(()))
            continue
        if prev is None:
            best = max(cands, key=lambda r: r.score)
        else:
            anchor = prev.box
            best = max(cands, key=lambda r: (r.score, iou(r.box, anchor)))
        out.append(obs.with_regions((best,)))
        prev = best
    return DetectionSet(out, detections.rejected)
