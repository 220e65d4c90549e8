"""Unit tests for slidesync.ingestion.frames and the sampling plan.

No real video or FFmpeg calls are made: ``subprocess.run`` (ffprobe) and
``cv2.VideoCapture`` are replaced with fakes wherever they would be invoked.
"""

from __future__ import annotations

import math
from pathlib import Path
from unittest.mock import MagicMock, patch

import cv2
import numpy as np
import pytest

from slidesync.config import PipelineSettings, SamplingPlan, compute_interval
from slidesync.errors import DecodeFailureError, DurationUnknownError
from slidesync.ingestion.frames import (
    FrameSampler,
    downscale,
    probe_duration,
    realized_interval,
)
from slidesync.models import SampledFrame

RUN_TARGET = "slidesync.ingestion.frames.subprocess.run"
CAPTURE_TARGET = "slidesync.ingestion.frames.cv2.VideoCapture"
VIDEO = Path("/tmp/talk.mp4")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def ffprobe_result(duration) -> MagicMock:
    result = MagicMock()
    result.stdout = '{"format": {"duration": %s}}' % (
        f'"{duration}"' if isinstance(duration, str) else duration
    )
    return result


class FakeCapture:
    """Stands in for cv2.VideoCapture; records every seek and read in order."""

    def __init__(
        self,
        opened: bool = True,
        fail_at: float | None = None,
        shape=(720, 1280, 3),
        frame_count: int = 0,
    ):
        self.opened = opened
        self.fail_at = fail_at
        self.frame_count = frame_count
        self.shape = shape
        self.ops: list[tuple] = []
        self.position_ms = 0.0
        self.released = False

    def isOpened(self) -> bool:
        return self.opened

    def set(self, prop, value) -> bool:
        if prop == cv2.CAP_PROP_POS_MSEC:
            self.ops.append(("seek", value / 1000.0))
            self.position_ms = value
        elif prop == cv2.CAP_PROP_POS_FRAMES:
            self.ops.append(("seek_frame", value))
            self.position_ms = -1.0
        return True

    def get(self, prop) -> float:
        if prop == cv2.CAP_PROP_FRAME_COUNT:
            return float(self.frame_count)
        return 0.0

    def read(self):
        self.ops.append(("read",))
        if self.fail_at is not None and math.isclose(self.position_ms / 1000.0, self.fail_at):
            return False, None
        return True, np.full(self.shape, 127, dtype=np.uint8)

    def release(self) -> None:
        self.released = True


def make_plan(duration_s: float, target: int = 60, floor: float = 2.0, max_dim: int = 256) -> SamplingPlan:
    return SamplingPlan(
        duration_s=duration_s,
        target_frame_count=target,
        min_interval_s=floor,
        max_frame_dimension=max_dim,
        jpeg_quality=30,
    )


# ---------------------------------------------------------------------------
# Interval and sample points
# ---------------------------------------------------------------------------

class TestComputeInterval:
    def test_uses_duration_over_target_when_above_floor(self):
        assert compute_interval(1400.0, 700, 2.0) == 2.0
        assert compute_interval(3500.0, 700, 2.0) == 5.0

    def test_floor_applies_to_short_media(self):
        """A 30s clip with 700 targets would sample every 0.04s; the floor keeps 2s."""
        assert compute_interval(30.0, 700, 2.0) == 2.0

    def test_interval_is_not_floored_to_whole_seconds(self):
        assert compute_interval(1050.0, 700, 1.0) == 1.5

    def test_non_positive_interval_rejected(self):
        with pytest.raises(ValueError):
            compute_interval(0.0, 10, 0.0)


class TestSampleOffsets:
    def test_end_to_end_example(self):
        """120s, 60 targets, 2s floor -> interval 2s, 61 points at 0, 2, ..., 120."""
        plan = make_plan(120.0, target=60, floor=2.0)
        offsets = plan.sample_offsets()
        assert plan.interval_s == 2.0
        assert len(offsets) == 61
        assert offsets[0] == 0.0
        assert offsets[-1] == 120.0
        assert offsets == [2.0 * k for k in range(61)]

    @pytest.mark.parametrize("duration, target, floor", [
        (10.0, 700, 2.0),
        (7.0, 700, 2.0),
        (125.0, 50, 2.0),
        (9.0, 4, 2.0),
        (3500.0, 700, 2.0),
    ])
    def test_count_and_range(self, duration, target, floor):
        plan = make_plan(duration, target=target, floor=floor)
        offsets = plan.sample_offsets()
        assert len(offsets) == math.floor(duration / plan.interval_s) + 1
        assert all(0.0 <= t <= duration for t in offsets)
        assert all(a < b for a, b in zip(offsets, offsets[1:]))

    def test_zero_duration_yields_single_point(self):
        assert make_plan(0.0).sample_offsets() == [0.0]

    def test_from_settings(self):
        settings = PipelineSettings(target_frame_count=100, min_interval_s=1.0)
        plan = SamplingPlan.from_settings(50.0, settings)
        assert plan.interval_s == 1.0
        assert plan.max_frame_dimension == settings.max_frame_dimension


# ---------------------------------------------------------------------------
# probe_duration
# ---------------------------------------------------------------------------

class TestProbeDuration:
    def test_parses_duration(self):
        with patch(RUN_TARGET, return_value=ffprobe_result("125.480000")):
            assert probe_duration(VIDEO) == pytest.approx(125.48)

    @pytest.mark.parametrize("raw", ["N/A", "inf", "nan", "0", "-3"])
    def test_unusable_duration_raises(self, raw):
        with patch(RUN_TARGET, return_value=ffprobe_result(raw)):
            with pytest.raises(DurationUnknownError):
                probe_duration(VIDEO)

    def test_missing_duration_raises(self):
        result = MagicMock()
        result.stdout = '{"format": {}}'
        with patch(RUN_TARGET, return_value=result):
            with pytest.raises(DurationUnknownError):
                probe_duration(VIDEO)

    def test_ffprobe_missing_is_decode_failure(self):
        with patch(RUN_TARGET, side_effect=FileNotFoundError("ffprobe")):
            with pytest.raises(DecodeFailureError, match="ffprobe not found"):
                probe_duration(VIDEO)


# ---------------------------------------------------------------------------
# FrameSampler
# ---------------------------------------------------------------------------

class TestFrameSampler:
    def test_duration_unknown_fails_before_any_seek(self):
        sampler = FrameSampler()
        with patch(RUN_TARGET, return_value=ffprobe_result("N/A")), \
                patch(CAPTURE_TARGET) as capture_cls:
            with pytest.raises(DurationUnknownError):
                sampler.sample(VIDEO)
        capture_cls.assert_not_called()

    def test_captures_every_point_sequentially(self):
        """Each seek is followed by its read before the next seek is issued."""
        fake = FakeCapture()
        with patch(CAPTURE_TARGET, return_value=fake):
            frames = FrameSampler().capture(VIDEO, make_plan(10.0, target=5, floor=2.0))

        assert [f.offset_s for f in frames] == [0.0, 2.0, 4.0, 6.0, 8.0, 10.0]
        expected_ops = []
        for t in [0.0, 2.0, 4.0, 6.0, 8.0, 10.0]:
            expected_ops += [("seek", t), ("read",)]
        assert fake.ops == expected_ops
        assert fake.released

    def test_frames_are_labelled_and_encoded(self):
        with patch(CAPTURE_TARGET, return_value=FakeCapture()):
            frames = FrameSampler().capture(VIDEO, make_plan(70.0, target=2, floor=65.0))
        assert [f.label for f in frames] == ["00:00", "01:05"]
        assert all(f.image[:2] == b"\xff\xd8" for f in frames)

    def test_frames_downscaled_to_max_dimension(self):
        with patch(CAPTURE_TARGET, return_value=FakeCapture(shape=(720, 1280, 3))):
            frames = FrameSampler().capture(VIDEO, make_plan(2.0, max_dim=256))
        decoded = cv2.imdecode(np.frombuffer(frames[0].image, dtype=np.uint8), cv2.IMREAD_COLOR)
        assert decoded.shape[:2] == (144, 256)

    def test_progress_monotonic_and_bounded(self):
        seen: list[float] = []
        with patch(CAPTURE_TARGET, return_value=FakeCapture()):
            FrameSampler().capture(VIDEO, make_plan(20.0, target=10, floor=2.0), progress_callback=seen.append)
        assert seen == sorted(seen)
        assert seen[0] == 0.0
        assert seen[-1] == 100.0

    def test_unopenable_capture_raises(self):
        fake = FakeCapture(opened=False)
        with patch(CAPTURE_TARGET, return_value=fake):
            with pytest.raises(DecodeFailureError, match="could not open"):
                FrameSampler().capture(VIDEO, make_plan(10.0))
        assert fake.released

    def test_read_failure_mid_video_raises_with_offset(self):
        fake = FakeCapture(fail_at=4.0)
        with patch(CAPTURE_TARGET, return_value=fake):
            with pytest.raises(DecodeFailureError) as info:
                FrameSampler().capture(VIDEO, make_plan(20.0, target=10, floor=2.0))
        assert info.value.offset_s == 4.0
        assert fake.released

    def test_failed_read_at_end_falls_back_to_last_frame(self):
        """The container ends before the advertised duration: the final frame stands in."""
        fake = FakeCapture(fail_at=10.0, frame_count=250)
        with patch(CAPTURE_TARGET, return_value=fake):
            frames = FrameSampler().capture(VIDEO, make_plan(10.0, target=5, floor=2.0))

        assert [f.offset_s for f in frames] == [0.0, 2.0, 4.0, 6.0, 8.0, 10.0]
        assert frames[-1].label == "00:10"
        assert frames[-1].image[:2] == b"\xff\xd8"
        assert fake.ops[-4:] == [("seek", 10.0), ("read",), ("seek_frame", 249), ("read",)]
        assert fake.released

    def test_failed_read_at_end_without_frame_count_raises(self):
        fake = FakeCapture(fail_at=10.0, frame_count=0)
        with patch(CAPTURE_TARGET, return_value=fake):
            with pytest.raises(DecodeFailureError) as info:
                FrameSampler().capture(VIDEO, make_plan(10.0, target=5, floor=2.0))
        assert info.value.offset_s == 10.0
        assert not any(op[0] == "seek_frame" for op in fake.ops)
        assert fake.released

    def test_mid_video_failure_never_falls_back(self):
        fake = FakeCapture(fail_at=4.0, frame_count=500)
        with patch(CAPTURE_TARGET, return_value=fake):
            with pytest.raises(DecodeFailureError) as info:
                FrameSampler().capture(VIDEO, make_plan(20.0, target=10, floor=2.0))
        assert info.value.offset_s == 4.0
        assert not any(op[0] == "seek_frame" for op in fake.ops)


class TestDownscale:
    def test_landscape(self):
        out = downscale(np.zeros((1080, 1920, 3), dtype=np.uint8), 256)
        assert out.shape[:2] == (144, 256)

    def test_portrait(self):
        out = downscale(np.zeros((1920, 1080, 3), dtype=np.uint8), 256)
        assert out.shape[:2] == (256, 144)

    def test_never_upscales(self):
        small = np.zeros((100, 200, 3), dtype=np.uint8)
        assert downscale(small, 256) is small


class TestRealizedInterval:
    def test_two_or_more_frames(self):
        frames = [SampledFrame(t, b"", "") for t in (0.0, 2.5, 5.0)]
        assert realized_interval(frames) == 2.5

    @pytest.mark.parametrize("count", [0, 1])
    def test_fewer_than_two_frames(self, count):
        frames = [SampledFrame(0.0, b"", "00:00")][:count]
        assert realized_interval(frames) == 0.0
