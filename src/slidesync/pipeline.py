"""Alignment run orchestration: extraction, one inference round trip, recovery, correction.

Stages and their share of the reported progress:

    slides     0-20%   render both decks           (may overlap with video)
    video     20-70%   sample frames               (may overlap with slides)
    inference 70-100%  assemble, infer, recover, correct

Any failure moves the run to the terminal ``error`` stage and re-raises.
Extracted slides and frames stay cached on the pipeline instance, so a
retry of the same inputs goes straight to inference.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable

from slidesync.config import ExecutionMode, PipelineSettings
from slidesync.correction import correct_transitions, find_ordering_issues
from slidesync.errors import RasterizeError, RecoverableParseError, RunCancelledError, SlideSyncError
from slidesync.inference.client import InferenceClient
from slidesync.inference.prompt import assemble_request
from slidesync.inference.recovery import recover_transitions
from slidesync.ingestion.frames import FrameSampler, realized_interval
from slidesync.ingestion.slides import PopplerRasterizer, SlideRasterizer
from slidesync.models import AlignmentResult, ReferenceSlide, SampledFrame

logger = logging.getLogger(__name__)

STAGE_WEIGHTS: dict[str, tuple[float, float]] = {
    "slides": (0.0, 20.0),
    "video": (20.0, 70.0),
    "inference": (70.0, 100.0),
}


class Stage(str, Enum):
    IDLE = "idle"
    EXTRACTING_SLIDES = "extracting_slides"
    EXTRACTING_VIDEO = "extracting_video"
    ANALYZING = "analyzing"
    DONE = "done"
    ERROR = "error"


_TERMINAL_STAGES = (Stage.DONE, Stage.ERROR)


@dataclass(frozen=True)
class PipelineStatus:
    stage: Stage
    message: str
    progress: float     # 0-100, never decreases within a run


class ProgressTracker:
    """Weighted sum of per-stage completion, published as one monotonic percentage.

    Extraction stages may report from worker threads, so updates are
    serialised under a lock and the published value is clamped so it never
    goes backwards.
    """

    def __init__(self, on_status: Callable[[PipelineStatus], None] | None = None) -> None:
        self._on_status = on_status
        self._lock = threading.Lock()
        self._fractions: dict[str, float] = {name: 0.0 for name in STAGE_WEIGHTS}
        self.status = PipelineStatus(Stage.IDLE, "", 0.0)

    def report(self, part: str, stage: Stage, message: str, percent: float) -> None:
        """Record *part* as *percent* complete and publish the aggregate.

        Ignored once the run has reached ``done`` or ``error``.
        """
        with self._lock:
            if self.status.stage in _TERMINAL_STAGES:
                return
            fraction = min(1.0, max(0.0, percent / 100.0))
            self._fractions[part] = max(self._fractions[part], fraction)
            total = sum(
                (end - start) * self._fractions[name]
                for name, (start, end) in STAGE_WEIGHTS.items()
            )
            self._publish(stage, message, max(self.status.progress, total))

    def callback(self, part: str, stage: Stage, message: str) -> Callable[[float], None]:
        return lambda percent: self.report(part, stage, message, percent)

    def finish(self, message: str) -> None:
        with self._lock:
            self._publish(Stage.DONE, message, 100.0)

    def fail(self, message: str) -> None:
        with self._lock:
            self._publish(Stage.ERROR, message, self.status.progress)

    def _publish(self, stage: Stage, message: str, progress: float) -> None:
        self.status = PipelineStatus(stage, message, min(100.0, progress))
        if self._on_status is not None:
            self._on_status(self.status)


class AlignmentPipeline:
    """Runs one alignment of a recording against two slide decks.

    Usage::

        pipeline = AlignmentPipeline(ChatCompletionsClient())
        result = pipeline.run(Path("talk.mp4"), Path("part1.pdf"), Path("part2.pdf"))

    """

    def __init__(
        self,
        client: InferenceClient,
        rasterizer: SlideRasterizer | None = None,
        sampler: FrameSampler | None = None,
        settings: PipelineSettings | None = None,
    ) -> None:
        self.settings = settings or PipelineSettings()
        self.client = client
        self.rasterizer = rasterizer or PopplerRasterizer(
            max_width=self.settings.slide_max_width,
            jpeg_quality=self.settings.slide_jpeg_quality,
        )
        self.sampler = sampler or FrameSampler(self.settings)
        self._cancelled = threading.Event()
        self._slide_cache: dict[tuple, list[ReferenceSlide]] = {}
        self._frame_cache: dict[tuple, list[SampledFrame]] = {}

    def cancel(self) -> None:
        """Stop at the next stage boundary or sampled frame.

        A page render or inference request already in flight runs to completion.
        """
        self._cancelled.set()

    def clear_cache(self) -> None:
        self._slide_cache.clear()
        self._frame_cache.clear()

    def run(
        self,
        video: Path,
        deck1: Path,
        deck2: Path,
        on_status: Callable[[PipelineStatus], None] | None = None,
    ) -> AlignmentResult:
        """Align *video* with *deck1* then *deck2*.

        Raises the stage's SlideSyncError after publishing the ``error`` status;
        no partial result is returned.
        """
        # Per run, so stages orphaned by an earlier failure stay cancelled.
        self._cancelled = threading.Event()
        tracker = ProgressTracker(on_status)
        try:
            slides, frames = self._extract(video, deck1, deck2, tracker)
            self._check_cancelled()

            tracker.report("inference", Stage.ANALYZING, "Analyzing frames against the reference slides...", 0.0)
            request = assemble_request(slides, frames, self.settings.max_output_tokens)
            logger.debug("request: %d images, ceiling %d tokens", request.image_count(), request.max_output_tokens)
            raw_text = self.client.infer(request)
            self._check_cancelled()

            records = recover_transitions(raw_text)
            events = correct_transitions(records, realized_interval(frames))
            for issue in find_ordering_issues(events):
                logger.info("alignment looks inconsistent: %s", issue)

            tracker.finish(f"Analysis complete: {len(events)} transitions")
            return AlignmentResult(events=events, slides=slides, frames=frames)
        except RecoverableParseError as exc:
            logger.debug("raw model output:\n%s", exc.raw_text)
            tracker.fail(str(exc))
            raise
        except SlideSyncError as exc:
            tracker.fail(str(exc))
            raise
        except Exception as exc:
            tracker.fail(f"Unexpected error: {exc}")
            raise

    # -----------------------------------------------------------------------
    # Extraction stages
    # -----------------------------------------------------------------------

    def _extract(
        self,
        video: Path,
        deck1: Path,
        deck2: Path,
        tracker: ProgressTracker,
    ) -> tuple[list[ReferenceSlide], list[SampledFrame]]:
        if self.settings.execution_mode is ExecutionMode.CONCURRENT:
            pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="slidesync")
            try:
                slides_future = pool.submit(self._load_slides, deck1, deck2, tracker)
                frames_future = pool.submit(self._load_frames, video, tracker)
                wait((slides_future, frames_future), return_when=FIRST_EXCEPTION)
                for future in (slides_future, frames_future):
                    if future.done() and future.exception() is not None:
                        # The sibling stage stops at its next cancellation check.
                        self._cancelled.set()
                        raise future.exception()
                return slides_future.result(), frames_future.result()
            finally:
                pool.shutdown(wait=False, cancel_futures=True)

        slides = self._load_slides(deck1, deck2, tracker)
        self._check_cancelled()
        return slides, self._load_frames(video, tracker)

    def _load_slides(self, deck1: Path, deck2: Path, tracker: ProgressTracker) -> list[ReferenceSlide]:
        slides: list[ReferenceSlide] = []
        for source_id, deck in ((1, deck1), (2, deck2)):
            self._check_cancelled()
            tracker.report(
                "slides", Stage.EXTRACTING_SLIDES, f"Rendering deck {source_id}...", (source_id - 1) * 50.0,
            )
            key = (*_file_key(deck), source_id, self.settings.slide_max_width, self.settings.slide_jpeg_quality)
            if key not in self._slide_cache:
                try:
                    document = deck.read_bytes()
                except OSError as exc:
                    raise RasterizeError(source_id, str(exc)) from exc
                self._slide_cache[key] = self.rasterizer.rasterize(document, source_id)
            else:
                logger.debug("deck %d: reusing %d rendered pages", source_id, len(self._slide_cache[key]))
            slides.extend(self._slide_cache[key])
        tracker.report("slides", Stage.EXTRACTING_SLIDES, f"Rendered {len(slides)} slides", 100.0)
        return slides

    def _load_frames(self, video: Path, tracker: ProgressTracker) -> list[SampledFrame]:
        key = (
            *_file_key(video),
            self.settings.target_frame_count,
            self.settings.min_interval_s,
            self.settings.max_frame_dimension,
            self.settings.jpeg_quality,
        )
        if key in self._frame_cache:
            logger.debug("%s: reusing %d sampled frames", video.name, len(self._frame_cache[key]))
        else:
            tracker.report("video", Stage.EXTRACTING_VIDEO, "Sampling video frames...", 0.0)
            cancelled = self._cancelled
            report = tracker.callback("video", Stage.EXTRACTING_VIDEO, "Sampling video frames...")

            def on_progress(percent: float) -> None:
                # Checked between frames, so a cancel stops the capture loop.
                if cancelled.is_set():
                    raise RunCancelledError()
                report(percent)

            self._frame_cache[key] = self.sampler.sample(video, progress_callback=on_progress)
        frames = self._frame_cache[key]
        tracker.report("video", Stage.EXTRACTING_VIDEO, f"Sampled {len(frames)} frames", 100.0)
        return frames

    def _check_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise RunCancelledError()


def _file_key(path: Path) -> tuple:
    """Identity of an input file for the in-memory cache: path, mtime and size."""
    try:
        stat = path.stat()
    except OSError:
        return (str(path), None, None)
    return (str(path.resolve()), stat.st_mtime, stat.st_size)
