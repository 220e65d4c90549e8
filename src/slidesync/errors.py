from pathlib import Path


class SlideSyncError(Exception):
    """Base class for all SlideSync errors."""


class DurationUnknownError(SlideSyncError):
    def __init__(self, video: Path, detail: str = "duration is not a finite number") -> None:
        super().__init__(
            f"Cannot determine the length of '{video.name}'.\n"
            f"  Cause: {detail}\n"
            f"  Check: Is the recording complete? Live or still-growing files have no duration.\n"
            f"  Tip: Remux with `ffmpeg -i '{video}' -c copy fixed.mp4` to rewrite the container index."
        )
        self.video = video
        self.detail = detail


class DecodeFailureError(SlideSyncError):
    def __init__(self, video: Path, detail: str, offset_s: float | None = None) -> None:
        where = f" at {offset_s:.2f}s" if offset_s is not None else ""
        super().__init__(
            f"Failed to decode '{video.name}'{where}.\n"
            f"  Cause: {detail}\n"
            f"  Check: Is FFmpeg installed and in PATH? Is '{video.name}' a valid MP4/MOV/WebM file?"
        )
        self.video = video
        self.detail = detail
        self.offset_s = offset_s


class RasterizeError(SlideSyncError):
    def __init__(self, source_id: int, detail: str) -> None:
        super().__init__(
            f"Failed to render the pages of deck {source_id}.\n"
            f"  Cause: {detail}\n"
            f"  Check: Is poppler-utils (pdftoppm) installed and in PATH? Is the file a valid PDF?"
        )
        self.source_id = source_id
        self.detail = detail


class InferenceError(SlideSyncError):
    def __init__(self, detail: str) -> None:
        super().__init__(
            f"The inference backend request failed.\n"
            f"  Cause: {detail}\n"
            f"  Check: Is the endpoint reachable and does the model accept image input?"
        )
        self.detail = detail


class EmptyInferenceResponseError(SlideSyncError):
    """The backend answered but produced no text (e.g. a safety filter fired).

    The message is shown to the user as-is.
    """

    def __init__(self, detail: str = "The model returned an empty response. This may be caused by a content safety filter.") -> None:
        super().__init__(detail)
        self.detail = detail


class RecoverableParseError(SlideSyncError):
    def __init__(self, raw_text: str, detail: str) -> None:
        super().__init__(
            f"Could not parse the alignment result returned by the model.\n"
            f"  Cause: {detail}\n"
            f"  Tip: Run again; re-run with --verbose to log the raw model output."
        )
        self.raw_text = raw_text
        self.detail = detail


class RunCancelledError(SlideSyncError):
    def __init__(self) -> None:
        super().__init__("Alignment run was cancelled before it finished.")
