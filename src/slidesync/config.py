"""Pipeline settings, the frame sampling plan, and environment lookups."""
import math
import os
from enum import Enum

from pydantic import BaseModel, Field

DEFAULT_ENDPOINT = "http://127.0.0.1:8080"
DEFAULT_MODEL = "default"


class ExecutionMode(str, Enum):
    """How the slide and video extraction stages are scheduled relative to each other."""
    SEQUENTIAL = "sequential"
    CONCURRENT = "concurrent"


class PipelineSettings(BaseModel):
    """Tunable parameters of one alignment run.

    Defaults favour coverage of long recordings over per-frame fidelity: many
    small, heavily compressed frames fit the request budget better than a few
    sharp ones.
    """
    target_frame_count: int = Field(default=700, ge=1)
    min_interval_s: float = Field(default=2.0, gt=0.0, description="Floor on the sampling interval (seconds)")
    max_frame_dimension: int = Field(default=256, ge=16, description="Cap on the larger side of a sampled frame (px)")
    jpeg_quality: int = Field(default=30, ge=1, le=100)
    slide_max_width: int = Field(default=512, ge=16)
    slide_jpeg_quality: int = Field(default=70, ge=1, le=100)
    max_output_tokens: int = Field(default=8192, ge=1)
    execution_mode: ExecutionMode = ExecutionMode.CONCURRENT


class SamplingPlan(BaseModel):
    """Where to sample a video of known duration, and how to encode each frame."""
    duration_s: float = Field(ge=0.0)
    target_frame_count: int = Field(ge=1)
    min_interval_s: float = Field(gt=0.0)
    max_frame_dimension: int = Field(ge=1)
    jpeg_quality: int = Field(ge=1, le=100)

    @classmethod
    def from_settings(cls, duration_s: float, settings: PipelineSettings) -> "SamplingPlan":
        return cls(
            duration_s=duration_s,
            target_frame_count=settings.target_frame_count,
            min_interval_s=settings.min_interval_s,
            max_frame_dimension=settings.max_frame_dimension,
            jpeg_quality=settings.jpeg_quality,
        )

    @property
    def interval_s(self) -> float:
        return compute_interval(self.duration_s, self.target_frame_count, self.min_interval_s)

    def sample_offsets(self) -> list[float]:
        """Return 0, I, 2I, ... up to and including the last point <= duration."""
        interval = self.interval_s
        count = math.floor(self.duration_s / interval + 1e-9) + 1
        return [min(k * interval, self.duration_s) for k in range(count)]


def compute_interval(duration_s: float, target_frame_count: int, min_interval_s: float) -> float:
    """Spacing between sampled frames: ``max(min_interval_s, duration_s / target_frame_count)``.

    The floor keeps very short recordings from collapsing to a near-zero interval.
    """
    interval = max(min_interval_s, duration_s / target_frame_count)
    if not interval > 0:
        raise ValueError(f"Sampling interval must be positive, got {interval}")
    return interval


def get_endpoint() -> str:
    """Return the inference endpoint base URL (SLIDESYNC_ENDPOINT, else a local llama-server)."""
    return os.environ.get("SLIDESYNC_ENDPOINT", DEFAULT_ENDPOINT).rstrip("/")


def get_model_name() -> str:
    return os.environ.get("SLIDESYNC_MODEL", DEFAULT_MODEL)


def get_api_key() -> str | None:
    """Return the bearer token for hosted endpoints, or None for local servers."""
    return os.environ.get("SLIDESYNC_API_KEY") or None
