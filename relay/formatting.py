"""Render reply decisions for each channel.

Every function here is pure and performs no I/O. Text channels get plain
text with numbered citation blocks; the API channel gets the structured
citation blocks unchanged.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any

from .events.models import Answer, CitationBlock, Error, ReplyDecision, Silence

ROAM_MAX_CHARS = 4000
ROAM_TRUNCATION_MARKER = "\n\n[…response truncated]"
WHATSAPP_MAX_CHARS = 4000
EXCERPT_MAX_CHARS = 120
WHATSAPP_EXCERPT_MAX_CHARS = 80
LOW_CONFIDENCE_WARNING = 0.75

TIER_ICONS = {"green": "🟢", "amber": "🟡", "red": "🔴"}


def strip_markdown(text: str) -> str:
    """Reduce markdown to plain text for channels that do not render it."""

    text = re.sub(
        r"```[\s\S]*?```",
        lambda m: re.sub(r"```\w*\n?", "", m.group(0)),
        text,
    )
    text = re.sub(r"`([^`]+)`", r"\1", text)
    text = re.sub(r"!\[([^\]]*)\]\([^)]+\)", r"\1", text)
    text = re.sub(r"\[([^\]]+)\]\([^)]+\)", r"\1", text)
    text = re.sub(r"\*\*\*(.+?)\*\*\*", r"\1", text)
    text = re.sub(r"\*\*(.+?)\*\*", r"\1", text)
    text = re.sub(r"\*(.+?)\*", r"\1", text)
    text = re.sub(r"__(.+?)__", r"\1", text)
    text = re.sub(r"(?<!\w)_(.+?)_(?!\w)", r"\1", text)
    text = re.sub(r"^#{1,6}\s+", "", text, flags=re.MULTILINE)
    text = re.sub(r"^[-*_]{3,}$", "───", text, flags=re.MULTILINE)
    text = re.sub(r"^>\s?", "│ ", text, flags=re.MULTILINE)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def truncate_excerpt(text: str, max_len: int = EXCERPT_MAX_CHARS) -> str:
    text = " ".join(text.split())
    if len(text) <= max_len:
        return text
    return text[: max_len - 1] + "…"


def enforce_limit(text: str, limit: int, marker: str) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - len(marker)] + marker


def citation_line(block: CitationBlock, *, excerpt_len: int = EXCERPT_MAX_CHARS) -> str:
    icon = TIER_ICONS.get(block.confidence_color, "")
    excerpt = truncate_excerpt(block.excerpt, excerpt_len)
    return f'[{block.index}] {icon} {block.source_name}: "{excerpt}"'


def timeline_line(block: CitationBlock) -> str:
    """Single compact line used by the cross-channel timeline."""

    icon = TIER_ICONS.get(block.confidence_color, "")
    return f"{icon} [{block.index}] {block.source_name} ({round(block.confidence_score * 100)}%)"


def format_timeline(blocks: Iterable[CitationBlock]) -> list[str]:
    return [timeline_line(block) for block in blocks]


# ----------------------------------------------------------------------
# Roam


def _roam_answer(answer: Answer, low_confidence: float) -> str:
    text = strip_markdown(answer.text)
    if answer.citation_blocks:
        lines = "\n".join(citation_line(b) for b in answer.citation_blocks)
        text = f"{text}\n\n─── Sources ───\n{lines}"
    if answer.confidence is not None and answer.confidence < low_confidence:
        text = (
            f"{text}\n\n⚠ Confidence: {round(answer.confidence * 100)}%. "
            "Verify against source documents."
        )
    return enforce_limit(text, ROAM_MAX_CHARS, ROAM_TRUNCATION_MARKER)


def _roam_silence(silence: Silence) -> str:
    lines = [
        "🔇 Silence Protocol",
        "",
        "I cannot provide a confident answer to this query based on the documents in your vault.",
        "Rather than speculate, I am staying silent.",
    ]
    if silence.suggestions:
        lines.extend(["", "You might try:"])
        lines.extend(f"  • {s}" for s in silence.suggestions)
    lines.extend(["", "Upload relevant documents to the vault to improve coverage."])
    return enforce_limit("\n".join(lines), ROAM_MAX_CHARS, ROAM_TRUNCATION_MARKER)


def _roam_error(error: Error) -> str:
    return "\n".join(
        [
            "⚠ Processing issue",
            "",
            "I ran into a processing issue with your request.",
            f"Error: {error.error_kind.value}",
            "Please try again, or ask in the dashboard for more detail.",
        ]
    )


def format_roam(
    decision: ReplyDecision, *, low_confidence: float = LOW_CONFIDENCE_WARNING
) -> str:
    if isinstance(decision, Answer):
        return _roam_answer(decision, low_confidence)
    if isinstance(decision, Silence):
        return _roam_silence(decision)
    return _roam_error(decision)


# ----------------------------------------------------------------------
# WhatsApp


def _whatsapp_truncate(text: str) -> str:
    if len(text) <= WHATSAPP_MAX_CHARS:
        return text
    return text[: WHATSAPP_MAX_CHARS - 3] + "..."


def format_whatsapp(decision: ReplyDecision) -> str:
    if isinstance(decision, Answer):
        text = strip_markdown(decision.text)
        if decision.citation_blocks:
            lines = "\n".join(
                citation_line(b, excerpt_len=WHATSAPP_EXCERPT_MAX_CHARS)
                for b in decision.citation_blocks
            )
            text = f"{text}\n\nSources:\n{lines}"
        return _whatsapp_truncate(text)
    if isinstance(decision, Silence):
        text = (
            "I don't have enough confidence to answer that accurately "
            "based on my current knowledge."
        )
        if decision.suggestions:
            text += "\n\nYou might try:\n" + "\n".join(f"• {s}" for s in decision.suggestions)
        else:
            text += (
                "\n\nTry rephrasing your question, or upload documents "
                "that might contain the answer."
            )
        text += "\n\n○ Confidence: Below threshold"
        return _whatsapp_truncate(text)
    return (
        "Sorry, I hit a processing issue while answering. "
        "Please try again in a few minutes."
    )


# ----------------------------------------------------------------------
# Structured API


def format_api(decision: ReplyDecision) -> dict[str, Any]:
    if isinstance(decision, Answer):
        return {
            "decision": "answer",
            "answer": decision.text,
            "confidence": decision.confidence,
            "citations": [block.to_dict() for block in decision.citation_blocks],
            "suggestions": [],
            "silenceProtocol": False,
        }
    if isinstance(decision, Silence):
        return {
            "decision": "silence",
            "answer": None,
            "confidence": decision.confidence,
            "citations": [],
            "suggestions": list(decision.suggestions),
            "reasoning": decision.reasoning,
            "silenceProtocol": True,
        }
    return {
        "decision": "error",
        "answer": None,
        "confidence": None,
        "citations": [],
        "suggestions": [],
        "error": decision.error_kind.value,
        "silenceProtocol": False,
    }


def format_reply(
    channel: str,
    decision: ReplyDecision,
    *,
    low_confidence: float = LOW_CONFIDENCE_WARNING,
) -> str:
    """Render ``decision`` for a text channel."""

    if channel == "roam":
        return format_roam(decision, low_confidence=low_confidence)
    if channel == "whatsapp":
        return format_whatsapp(decision)
    raise KeyError(f"No text formatter for channel '{channel}'")


__all__ = [
    "citation_line",
    "enforce_limit",
    "format_api",
    "format_reply",
    "format_roam",
    "format_timeline",
    "format_whatsapp",
    "strip_markdown",
    "timeline_line",
    "truncate_excerpt",
]
