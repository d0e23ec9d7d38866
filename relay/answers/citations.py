"""Turn backend citations into display-ready citation blocks."""

from __future__ import annotations

import hashlib
from collections.abc import Iterable
from datetime import datetime, timezone

from ..events.models import Citation, CitationBlock

GREEN_THRESHOLD = 0.85
AMBER_THRESHOLD = 0.70


def confidence_tier(
    score: float,
    *,
    green: float = GREEN_THRESHOLD,
    amber: float = AMBER_THRESHOLD,
) -> tuple[str, str]:
    """Return ``(level, color)`` for a citation score; lower bounds are inclusive."""

    if score >= green:
        return "high", "green"
    if score >= amber:
        return "medium", "amber"
    return "low", "red"


def _sha256(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def build_citation_blocks(
    citations: Iterable[Citation],
    *,
    query: str,
    response_text: str,
    fallback_score: float | None = None,
    green: float = GREEN_THRESHOLD,
    amber: float = AMBER_THRESHOLD,
    document_base_url: str = "/documents",
    retrieved_at: datetime | None = None,
) -> list[CitationBlock]:
    """Enrich ``citations`` with tiers and provenance hashes.

    Citations without their own relevance score inherit ``fallback_score``
    (usually the overall answer confidence).
    """

    retrieved_at = retrieved_at or datetime.now(timezone.utc)
    query_hash = _sha256(query)
    response_hash = _sha256(response_text)
    blocks: list[CitationBlock] = []
    for position, citation in enumerate(citations, start=1):
        score = citation.relevance_score
        if score is None:
            score = fallback_score if fallback_score is not None else 0.0
        level, color = confidence_tier(score, green=green, amber=amber)
        blocks.append(
            CitationBlock(
                index=citation.index if citation.index is not None else position,
                document_id=citation.document_id,
                chunk_id=citation.chunk_id,
                source_name=citation.source_name,
                excerpt=citation.excerpt,
                confidence_score=score,
                confidence_level=level,  # type: ignore[arg-type]
                confidence_color=color,  # type: ignore[arg-type]
                retrieval_timestamp=retrieved_at,
                query_hash=query_hash,
                response_hash=response_hash,
                document_url=f"{document_base_url}/{citation.document_id}",
            )
        )
    return blocks


__all__ = ["AMBER_THRESHOLD", "GREEN_THRESHOLD", "build_citation_blocks", "confidence_tier"]
