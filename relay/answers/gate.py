"""Confidence gate choosing between an answer and the Silence Protocol."""

from __future__ import annotations

from collections.abc import Iterable

from ..events.models import Answer, CitationBlock, Silence

DEFAULT_SILENCE_THRESHOLD = 0.65
SILENCE_REASONING = "Confidence below threshold. Declining to speculate."


def decide(
    confidence_score: float | None,
    explicit_silence: bool,
    threshold: float = DEFAULT_SILENCE_THRESHOLD,
    *,
    text: str = "",
    citation_blocks: Iterable[CitationBlock] = (),
    suggestions: Iterable[str] = (),
) -> Answer | Silence:
    """Return ``Silence`` when asked to or when confidence is under ``threshold``.

    A missing score is not gated. Citations and answer text are discarded on
    the silence branch.
    """

    if explicit_silence or (
        confidence_score is not None and confidence_score < threshold
    ):
        return Silence(
            reasoning=SILENCE_REASONING,
            suggestions=tuple(suggestions),
            confidence=confidence_score,
        )
    return Answer(
        text=text,
        citation_blocks=tuple(citation_blocks),
        confidence=confidence_score,
    )


__all__ = ["DEFAULT_SILENCE_THRESHOLD", "SILENCE_REASONING", "decide"]
