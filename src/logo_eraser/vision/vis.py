"""Review previews: draw detected regions onto a video frame."""

from __future__ import annotations

from pathlib import Path

from PIL import Image, ImageDraw, ImageFont

from logo_eraser.vision.coordinates import denormalize
from logo_eraser.vision.types import Observation, PixelBox

_SELECTED = (239, 68, 68)
_CANDIDATE = (59, 130, 246)


def draw_regions(
    img: Image.Image,
    boxes: list[tuple[PixelBox, str]],
    out_path: Path,
    *,
    selected: int | None = 0,
) -> None:
    """Draw labeled pixel boxes on a copy of `img` and save it to `out_path`.

    The box at index `selected` is drawn in red, the others in blue.
    """
    vis = img.copy()
    dr = ImageDraw.Draw(vis)
    w, h = vis.size
    thickness = max(2, round(min(w, h) / 300))
    font_size = max(12, round(min(w, h) / 60))
    try:
        font = ImageFont.truetype("DejaVuSans.ttf", font_size)
    except OSError:  # pragma: no cover
        font = ImageFont.load_default()
    for i, (b, caption) in enumerate(boxes):
        color = _SELECTED if i == selected else _CANDIDATE
        dr.rectangle([b.x, b.y, b.x2 - 1, b.y2 - 1], width=thickness, outline=color)
        tx, ty = b.x, max(0, b.y - font_size - thickness)
        bbox = dr.textbbox((tx, ty), caption, font=font)
        dr.rectangle(bbox, fill=(0, 0, 0))
        dr.text((tx, ty), caption, fill=color, font=font)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    vis.save(out_path)


def draw_observation(img: Image.Image, obs: Observation, out_path: Path) -> None:
    """Preview of one observation: every candidate with its label and score."""
    w, h = img.size
    boxes = [
        (denormalize(r.box, w, h), f"{r.label} ({round(r.score * 100)}%)") for r in obs.regions
    ]
    draw_regions(img, boxes, out_path)
