"""Uniform video frame sampling.

The recording is probed for its duration, a :class:`SamplingPlan` spreads
sample points evenly across it, and each point is decoded, downscaled and
JPEG-compressed into a :class:`SampledFrame`.

Frames are captured strictly one at a time, in time order, through a single
OpenCV capture handle: seeking is stateful and the handle is not re-entrant.

FFmpeg and OpenCV failures are translated into ``DurationUnknownError`` and
``DecodeFailureError``; callers never see raw subprocess output.
"""

from __future__ import annotations

import json
import logging
import math
import subprocess
from pathlib import Path
from typing import Callable

import cv2
import numpy as np

from slidesync.config import PipelineSettings, SamplingPlan
from slidesync.errors import DecodeFailureError, DurationUnknownError
from slidesync.models import SampledFrame
from slidesync.timecode import format_timestamp

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def probe_duration(video: Path) -> float:
    """Return the container duration of *video* in seconds via ffprobe.

    Raises
    ------
    DurationUnknownError
        If the duration is missing, ``N/A``, not finite, or not positive.
    DecodeFailureError
        If ffprobe is not installed or cannot read the file.
    """
    cmd = [
        "ffprobe",
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        str(video),
    ]
    try:
        result = subprocess.run(cmd, check=True, capture_output=True, text=True)
    except subprocess.CalledProcessError as exc:
        raise DecodeFailureError(video, f"ffprobe failed: {(exc.stderr or '').strip()}") from exc
    except FileNotFoundError as exc:
        raise DecodeFailureError(video, "ffprobe not found; is FFmpeg installed and in PATH?") from exc

    try:
        data = json.loads(result.stdout)
        raw = data["format"]["duration"]
    except (KeyError, TypeError, json.JSONDecodeError) as exc:
        raise DurationUnknownError(video, f"ffprobe reported no duration ({exc})") from exc

    try:
        duration = float(raw)
    except (TypeError, ValueError) as exc:
        raise DurationUnknownError(video, f"ffprobe reported duration {raw!r}") from exc

    if not math.isfinite(duration) or duration <= 0:
        raise DurationUnknownError(video, f"ffprobe reported duration {raw!r}")
    return duration


def realized_interval(frames: list[SampledFrame]) -> float:
    """Spacing actually used between the first two frames, or 0.0 with fewer than two.

    This can differ from ``duration / target_frame_count`` because of the
    interval floor, so correction must use the sampled sequence itself.
    """
    if len(frames) < 2:
        return 0.0
    return frames[1].offset_s - frames[0].offset_s


def downscale(image: np.ndarray, max_dimension: int) -> np.ndarray:
    """Shrink *image* so its larger side is at most *max_dimension*; never upscale."""
    height, width = image.shape[:2]
    largest = max(height, width)
    if largest <= max_dimension:
        return image
    scale = max_dimension / largest
    size = (max(1, round(width * scale)), max(1, round(height * scale)))
    return cv2.resize(image, size, interpolation=cv2.INTER_AREA)


def encode_jpeg(image: np.ndarray, quality: int) -> bytes | None:
    """JPEG-encode *image*; returns None when OpenCV refuses the frame."""
    ok, buffer = cv2.imencode(".jpg", image, [cv2.IMWRITE_JPEG_QUALITY, int(quality)])
    if not ok:
        return None
    return buffer.tobytes()


class FrameSampler:
    """Samples a recording evenly according to :class:`PipelineSettings`."""

    def __init__(self, settings: PipelineSettings | None = None) -> None:
        self.settings = settings or PipelineSettings()

    def plan(self, video: Path) -> SamplingPlan:
        """Probe *video* and build its sampling plan. Fails before any seeking."""
        duration_s = probe_duration(video)
        plan = SamplingPlan.from_settings(duration_s, self.settings)
        logger.debug(
            "sampling %s: duration=%.2fs interval=%.3fs points=%d",
            video.name, duration_s, plan.interval_s, len(plan.sample_offsets()),
        )
        return plan

    def sample(
        self,
        video: Path,
        progress_callback: Callable[[float], None] | None = None,
    ) -> list[SampledFrame]:
        """Probe *video* and capture every sample point of its plan."""
        return self.capture(video, self.plan(video), progress_callback)

    def capture(
        self,
        video: Path,
        plan: SamplingPlan,
        progress_callback: Callable[[float], None] | None = None,
    ) -> list[SampledFrame]:
        """Capture the frames of *plan* from *video*, in time order.

        Parameters
        ----------
        video:
            Path to the recording.
        plan:
            Sampling plan; its duration must match *video*.
        progress_callback:
            Optional callable receiving completion in percent (``t / D * 100``)
            after each captured frame.  Values never decrease.

        Returns
        -------
        list[SampledFrame]
            One frame per sample point, offsets strictly increasing.

        Raises
        ------
        DecodeFailureError
            If the capture cannot be opened, or a seek, read or encode fails.
        """
        capture = cv2.VideoCapture(str(video))
        try:
            if not capture.isOpened():
                raise DecodeFailureError(video, "OpenCV could not open the file")

            frames: list[SampledFrame] = []
            last_progress = 0.0
            for offset_s in plan.sample_offsets():
                frames.append(self._capture_one(capture, video, offset_s, plan))
                if progress_callback is not None:
                    last_progress = max(last_progress, _percent(offset_s, plan.duration_s))
                    progress_callback(last_progress)
            return frames
        finally:
            capture.release()

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    def _capture_one(
        self,
        capture: cv2.VideoCapture,
        video: Path,
        offset_s: float,
        plan: SamplingPlan,
    ) -> SampledFrame:
        """Seek, read and encode one frame. The seek completes before the next is issued."""
        if not capture.set(cv2.CAP_PROP_POS_MSEC, offset_s * 1000.0):
            raise DecodeFailureError(video, "seek was rejected by the decoder", offset_s)
        ok, image = capture.read()
        if not ok or image is None:
            image = None
            # Containers often end a few ms before the advertised duration.
            if offset_s > 0 and offset_s >= plan.duration_s - plan.interval_s:
                image = self._read_last_frame(capture)
            if image is None:
                raise DecodeFailureError(video, "no frame could be read", offset_s)

        data = encode_jpeg(downscale(image, plan.max_frame_dimension), plan.jpeg_quality)
        if data is None:
            raise DecodeFailureError(video, "JPEG encoding failed", offset_s)
        return SampledFrame(offset_s=offset_s, image=data, label=format_timestamp(offset_s))

    @staticmethod
    def _read_last_frame(capture: cv2.VideoCapture) -> np.ndarray | None:
        frame_count = int(capture.get(cv2.CAP_PROP_FRAME_COUNT))
        if frame_count <= 0:
            return None
        capture.set(cv2.CAP_PROP_POS_FRAMES, frame_count - 1)
        ok, image = capture.read()
        return image if ok else None


def _percent(offset_s: float, duration_s: float) -> float:
    if duration_s <= 0:
        return 100.0
    return min(100.0, max(0.0, offset_s / duration_s * 100.0))
