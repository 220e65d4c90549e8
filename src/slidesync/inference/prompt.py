"""Multimodal request assembly: reference slides, sampled frames, instructions and output schema."""
from dataclasses import dataclass

from slidesync.models import ReferenceSlide, SampledFrame

# Output-size ceiling sent with every request. Responses that hit it arrive
# truncated; inference.recovery salvages the complete leading records.
DEFAULT_MAX_OUTPUT_TOKENS = 8192

# JSON schema for constrained generation of the transition list.
TRANSITIONS_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "transitions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "timestamp": {"type": "string", "description": "Time format MM:SS"},
                    "sourceId": {"type": "integer", "enum": [1, 2], "description": "1 for deck 1, 2 for deck 2"},
                    "pageNumber": {"type": "integer", "minimum": 1},
                    "title": {"type": "string", "description": "Visible title of the slide"},
                    "reasoning": {"type": "string", "description": "Short visual evidence for the match"},
                    "confidence": {"type": "string", "enum": ["High", "Medium", "Low"]},
                },
                "required": ["timestamp", "sourceId", "pageNumber", "confidence"],
            },
        },
    },
    "required": ["transitions"],
}

DECK1_HEADER = (
    "Here are the reference slides from the FIRST presentation (deck 1). "
    "This content appears first in the video:"
)
DECK2_HEADER = (
    "Here are the reference slides from the SECOND presentation (deck 2). "
    "This content appears AFTER deck 1 in the video:"
)
FRAMES_HEADER = "Here are the frames extracted from the video (sampled uniformly across its duration):"

INSTRUCTIONS = """\
Analyze the video frames and determine which reference slide is visible in each frame.

Important context:
- The video is a continuous recording of two presentations.
- First, the speaker presents slides from deck 1.
- Then, the speaker switches to presenting slides from deck 2.
- The switch from deck 1 to deck 2 happens exactly once and never goes back.
- Some frames show no clear slide content (intro, speaker only, transition animation). Do not match those frames.
- Match frames to slides by visual similarity: title text, layout, charts and images.

Output a list of transition events. A transition event occurs when the visible slide changes.
Include the very first slide shown in the video.

For each transition provide:
1. timestamp: the MM:SS video timestamp where this slide FIRST appears. Record first appearances only.
2. sourceId: the deck (1 or 2).
3. pageNumber: the page number within that deck.
4. title: the slide title as shown.
5. reasoning: a short note on the visual evidence.
6. confidence: High, Medium or Low.

Analyze the ENTIRE duration of the video frames provided.
Strictly follow the JSON schema."""


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ImagePart:
    data: bytes
    mime_type: str = "image/jpeg"


@dataclass(frozen=True)
class AlignmentRequest:
    """One complete multimodal request, ready for any InferenceClient."""

    parts: tuple
    schema: dict
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS

    @property
    def instructions(self) -> str:
        return self.parts[-1].text

    def image_count(self) -> int:
        return sum(1 for part in self.parts if isinstance(part, ImagePart))


def assemble_request(
    slides: list[ReferenceSlide],
    frames: list[SampledFrame],
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
) -> AlignmentRequest:
    """Order deck 1 pages, deck 2 pages, then frames, then the instruction block.

    Inputs are sorted here, so the caller's ordering never leaks into the request.
    """
    ordered = sorted(slides, key=lambda s: (s.source_id, s.page_number))
    parts: list = []

    for source_id, header in ((1, DECK1_HEADER), (2, DECK2_HEADER)):
        parts.append(TextPart(header))
        for slide in ordered:
            if slide.source_id == source_id:
                parts.append(TextPart(slide.label))
                parts.append(ImagePart(slide.image))

    parts.append(TextPart(FRAMES_HEADER))
    for frame in sorted(frames, key=lambda f: f.offset_s):
        parts.append(TextPart(f"Video Timestamp: {frame.label}"))
        parts.append(ImagePart(frame.image))

    parts.append(TextPart(INSTRUCTIONS))
    return AlignmentRequest(parts=tuple(parts), schema=TRANSITIONS_SCHEMA, max_output_tokens=max_output_tokens)
