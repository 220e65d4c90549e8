"""SlideSync inference package: request assembly, backend client, response recovery."""
from slidesync.inference.client import ChatCompletionsClient, InferenceClient
from slidesync.inference.prompt import (
    DEFAULT_MAX_OUTPUT_TOKENS,
    TRANSITIONS_SCHEMA,
    AlignmentRequest,
    ImagePart,
    TextPart,
    assemble_request,
)
from slidesync.inference.recovery import recover_transitions, repair_json_text

__all__ = [
    "AlignmentRequest",
    "ChatCompletionsClient",
    "DEFAULT_MAX_OUTPUT_TOKENS",
    "ImagePart",
    "InferenceClient",
    "TRANSITIONS_SCHEMA",
    "TextPart",
    "assemble_request",
    "recover_transitions",
    "repair_json_text",
]
