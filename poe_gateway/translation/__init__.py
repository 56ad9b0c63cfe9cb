"""Translation between OpenAI chat completions and the Poe bot protocol."""

from .assembler import ResponseAssembler, estimate_tokens
from .markup import DEFAULT_MARKERS, MarkupScanner, ReasoningMarkers
from .normalizer import RequestNormalizer, parse_chat_request
from .transcoder import EventTranscoder

__all__ = [
    "DEFAULT_MARKERS",
    "EventTranscoder",
    "MarkupScanner",
    "ReasoningMarkers",
    "RequestNormalizer",
    "ResponseAssembler",
    "estimate_tokens",
    "parse_chat_request",
]
