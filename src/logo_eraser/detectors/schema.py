"""Wire schema of the detection and tracking collaborators.

The models are deliberately lenient: they only check the JSON shape. Box
invariants are validated entry by entry when a DetectionSet is built, so one
bad box from an unreliable service does not sink the whole answer.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class RawBox(BaseModel):
    model_config = ConfigDict(extra="ignore")

    label: str = "watermark"
    box_2d: list[Any]
    score: float = 1.0

    @field_validator("label", mode="before")
    @classmethod
    def _coerce_label(cls, v: Any) -> str:
        if v is None:
            return "watermark"
        return str(v).strip() or "watermark"


class RawObservation(BaseModel):
    """One `{ts, boxes}` entry of a detection answer."""

    model_config = ConfigDict(extra="ignore")

    ts: str
    boxes: list[RawBox] = Field(default_factory=list)

    @field_validator("boxes", mode="before")
    @classmethod
    def _coerce_boxes(cls, v: Any) -> list[Any]:
        if v is None:
            return []
        if isinstance(v, dict):
            return [v]
        return v


class RawPixelBox(BaseModel):
    model_config = ConfigDict(extra="ignore")

    x: float
    y: float
    w: float
    h: float


class RawTrackEntry(BaseModel):
    """One `{ts, box, confidence}` entry of a tracking answer."""

    model_config = ConfigDict(extra="ignore")

    ts: str
    box: RawPixelBox
    confidence: float = 0.0


# Top-level shape shared by both answers: a JSON array of objects.
ENTRY_LIST: TypeAdapter[list[dict[str, Any]]] = TypeAdapter(list[dict[str, Any]])
