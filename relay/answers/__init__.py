"""Answer backend client, response parsing and the confidence gate."""

from .citations import build_citation_blocks, confidence_tier
from .client import AnswerClient
from .gate import decide
from .sse import parse_answer_body, parse_sse_text

__all__ = [
    "AnswerClient",
    "build_citation_blocks",
    "confidence_tier",
    "decide",
    "parse_answer_body",
    "parse_sse_text",
]
