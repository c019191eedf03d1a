"""Runtime configuration: defaults, environment overrides and validation."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields
from typing import Any, Literal

from logo_eraser.detectors.http_api import DEFAULT_API_BASE
from logo_eraser.detectors.vlm_litellm import DEFAULT_VLM_MODEL
from logo_eraser.errors import ValidationError
from logo_eraser.pipelines.filter_plan import dwell_for_sample_rate
from logo_eraser.pipelines.region_track import TrackPolicy
from logo_eraser.vision.types import RemovalMethod

ENV_PREFIX = "LOGO_ERASER_"

Backend = Literal["litellm", "http"]


def _env_bool(name: str, raw: str) -> bool:
    v = raw.strip().lower()
    if v in {"1", "true", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "no", "n", "off"}:
        return False
    raise ValidationError(f"Invalid {name}={raw!r}; expected 0/1/true/false.")


@dataclass
class EraserConfig:
    """Configuration for one pipeline run.

    Every field can be overridden from the environment as
    `LOGO_ERASER_<FIELD_NAME_UPPER>` (e.g. `LOGO_ERASER_VLM_MODEL`); CLI flags
    take precedence over the environment.
    """

    sample_fps: float = 2.0
    method: RemovalMethod = RemovalMethod.INPAINT
    policy: TrackPolicy = TrackPolicy.HOLD
    dwell_s: float | None = None
    coalesce: bool = True
    region_label: str | None = None
    min_score: float = 0.0

    backend: Backend = "litellm"
    vlm_model: str = DEFAULT_VLM_MODEL
    vlm_temperature: float = 0.0
    vlm_max_tokens: int = 8000
    vlm_timeout_s: float = 300.0
    api_base: str = DEFAULT_API_BASE

    ffmpeg_bin: str = "ffmpeg"
    ffprobe_bin: str = "ffprobe"
    blur_radius: int = 10
    x264_preset: str = "fast"

    verbose: bool = False

    def __post_init__(self) -> None:
        try:
            self.method = RemovalMethod(self.method)
            self.policy = TrackPolicy(self.policy)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        if self.sample_fps <= 0:
            raise ValidationError(f"sample_fps must be positive, got {self.sample_fps!r}")
        if self.dwell_s is not None and self.dwell_s <= 0:
            raise ValidationError(f"dwell_s must be positive, got {self.dwell_s!r}")
        if not 0.0 <= self.min_score <= 1.0:
            raise ValidationError(f"min_score must be in [0, 1], got {self.min_score!r}")
        if self.backend not in ("litellm", "http"):
            raise ValidationError(f"Unknown backend {self.backend!r}; expected litellm or http")
        if self.backend == "litellm" and "/" not in self.vlm_model:
            raise ValidationError(
                "LiteLLM requires a provider-prefixed model name.\n"
                f"Got vlm_model={self.vlm_model!r}.\n"
                "Examples:\n"
                "  export LOGO_ERASER_VLM_MODEL='gemini/gemini-2.0-flash'\n"
                "  export GEMINI_API_KEY='...'\n"
            )

    @property
    def dwell(self) -> float:
        """Dwell window in seconds; one sampling period unless set explicitly."""
        if self.dwell_s is not None:
            return self.dwell_s
        return dwell_for_sample_rate(self.sample_fps)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: Any) -> EraserConfig:
        """Defaults, then `LOGO_ERASER_*` variables, then explicit `overrides`."""
        env = os.environ if environ is None else environ
        kwargs: dict[str, Any] = {}
        for f in fields(cls):
            name = ENV_PREFIX + f.name.upper()
            raw = env.get(name)
            if raw is None:
                continue
            default = f.default
            try:
                if isinstance(default, bool):
                    kwargs[f.name] = _env_bool(name, raw)
                elif isinstance(default, int) and not isinstance(default, bool):
                    kwargs[f.name] = int(raw)
                elif isinstance(default, float) or f.name == "dwell_s":
                    kwargs[f.name] = float(raw)
                elif f.name == "region_label":
                    kwargs[f.name] = raw.strip() or None
                else:
                    kwargs[f.name] = raw.strip()
            except ValueError as e:
                raise ValidationError(f"Invalid {name}={raw!r}: {e}") from e
        kwargs.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**kwargs)
