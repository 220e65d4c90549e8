from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidatorFunctionWrapHandler,
    field_validator,
)


class Confidence(str, Enum):
    """Coarse match certainty reported by the model.

    str, Enum so the value serialises as a plain string ("High").
    """
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"
    UNKNOWN = "Unknown"

    @classmethod
    def normalize(cls, value: object) -> "Confidence":
        """Map free-form model output onto a tier; anything unrecognised is UNKNOWN."""
        if isinstance(value, str):
            text = value.strip().lower()
            for tier in (cls.HIGH, cls.MEDIUM, cls.LOW):
                if text == tier.value.lower():
                    return tier
        return cls.UNKNOWN


@dataclass(frozen=True)
class ReferenceSlide:
    """One rendered page of one of the two decks."""

    source_id: int      # 1 = first deck, 2 = second deck
    page_number: int    # 1-based, ascending within a deck
    image: bytes        # JPEG

    @property
    def label(self) -> str:
        return f"Deck {self.source_id} - Page {self.page_number}"


@dataclass(frozen=True)
class SampledFrame:
    """A decoded, downscaled video frame at a known offset."""

    offset_s: float     # seconds from the start of the video
    image: bytes        # JPEG
    label: str          # "MM:SS"


class RawTransitionRecord(BaseModel):
    """A transition as decoded from model output. Untrusted; any field may be missing.

    Validation is lenient: a field of the wrong type becomes None instead of
    failing the whole record, so the caller decides what is still usable.
    ``pdfId`` and ``reason`` are accepted as older spellings of ``sourceId``
    and ``reasoning``.
    """
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    timestamp: str | None = None
    source_id: int | None = Field(default=None, validation_alias=AliasChoices("sourceId", "pdfId", "source_id"))
    page_number: int | None = Field(default=None, validation_alias=AliasChoices("pageNumber", "page_number"))
    title: str | None = None
    reasoning: str | None = Field(default=None, validation_alias=AliasChoices("reasoning", "reason"))
    confidence: str | None = None

    @field_validator("source_id", "page_number", mode="wrap")
    @classmethod
    def _lenient_int(cls, value: Any, handler: ValidatorFunctionWrapHandler) -> int | None:
        # bool is an int subclass; true/false is never a valid id
        if isinstance(value, bool):
            return None
        try:
            return handler(value)
        except ValidationError:
            return None

    @field_validator("timestamp", "title", "reasoning", "confidence", mode="wrap")
    @classmethod
    def _lenient_str(cls, value: Any, handler: ValidatorFunctionWrapHandler) -> str | None:
        try:
            return handler(value)
        except ValidationError:
            return None


class TransitionEvent(BaseModel):
    """First appearance of a reference slide in the video, after bias correction."""
    model_config = ConfigDict(frozen=True)

    corrected_s: float = Field(ge=0.0, serialization_alias="seconds")
    timestamp: str                      # "MM:SS" rendering of corrected_s
    source_id: int = Field(serialization_alias="sourceId")
    page_number: int = Field(ge=1, serialization_alias="pageNumber")
    title: str = ""
    reasoning: str = ""
    confidence: Confidence = Confidence.UNKNOWN

    def to_dict(self) -> dict:
        """JSON-ready mapping with the camelCase keys used in model output."""
        return self.model_dump(mode="json", by_alias=True)


@dataclass
class AlignmentResult:
    """Output of one run: ordered events plus the image inventories used to produce them.

    Slides are indexed by ``(source_id, page_number)`` and frames by offset;
    the lists keep request order for display.
    """

    events: list[TransitionEvent]
    slides: list[ReferenceSlide] = field(default_factory=list)
    frames: list[SampledFrame] = field(default_factory=list)
    _slide_index: dict[tuple[int, int], ReferenceSlide] = field(init=False, repr=False, compare=False)
    _frame_index: dict[float, SampledFrame] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self._slide_index = {(s.source_id, s.page_number): s for s in self.slides}
        self._frame_index = {f.offset_s: f for f in self.frames}

    def slide_for(self, source_id: int, page_number: int) -> ReferenceSlide | None:
        return self._slide_index.get((source_id, page_number))

    def frame_at(self, offset_s: float) -> SampledFrame | None:
        return self._frame_index.get(offset_s)
