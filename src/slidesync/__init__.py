"""SlideSync: find when each slide of two consecutive decks first appears in a talk recording."""
from slidesync.config import ExecutionMode, PipelineSettings
from slidesync.errors import SlideSyncError
from slidesync.models import AlignmentResult, Confidence, TransitionEvent
from slidesync.pipeline import AlignmentPipeline, PipelineStatus, Stage

__all__ = [
    "AlignmentPipeline",
    "AlignmentResult",
    "Confidence",
    "ExecutionMode",
    "PipelineSettings",
    "PipelineStatus",
    "SlideSyncError",
    "Stage",
    "TransitionEvent",
]
