"""Parse answer backend responses.

The backend streams Server-Sent Events with these event types:

- ``token``: ``{"text": "..."}`` appended to the answer text
- ``citations``: an array of citations, or ``{"citations": [...]}``
- ``confidence``: ``{"score": 0.9}`` or ``{"confidence": 0.9}``
- ``silence``: ``{"message", "confidence", "suggestions"}``
- ``status`` / ``done``: progress markers, ignored

Some deployments answer with a single JSON document instead; that shape is
handled by :func:`parse_answer_body` as a fallback.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator, Mapping
from typing import Any

from ..events.models import AnswerResult, Citation

logger = logging.getLogger(__name__)

DEFAULT_SILENCE_MESSAGE = "Unable to provide a grounded answer."
_IGNORED_EVENTS = {"status", "done"}


def _iter_events(body: str) -> Iterator[tuple[str, str]]:
    event = "message"
    data_lines: list[str] = []
    for line in body.splitlines():
        if not line.strip():
            if data_lines:
                yield event, "\n".join(data_lines)
            event = "message"
            data_lines = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if field == "event":
            event = value.strip() or "message"
        elif field == "data":
            data_lines.append(value)
    if data_lines:
        yield event, "\n".join(data_lines)


def _as_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_citation(item: Mapping[str, Any], position: int) -> Citation:
    index = item.get("index", item.get("citationIndex"))
    return Citation(
        index=int(index) if isinstance(index, (int, float)) else position,
        document_id=str(item.get("documentId") or item.get("document_id") or ""),
        source_name=str(item.get("documentName") or item.get("sourceName") or "Document"),
        excerpt=str(item.get("excerpt") or ""),
        relevance_score=_as_float(item.get("relevanceScore", item.get("score"))),
        chunk_id=item.get("chunkId") or item.get("chunk_id"),
    )


def _parse_citations(data: Any) -> list[Citation]:
    if isinstance(data, Mapping):
        data = data.get("citations")
    if not isinstance(data, list):
        return []
    return [
        _parse_citation(item, position)
        for position, item in enumerate(data, start=1)
        if isinstance(item, Mapping)
    ]


def parse_sse_text(body: str) -> AnswerResult:
    """Accumulate a full SSE body into an :class:`AnswerResult`."""

    result = AnswerResult(text="", confidence_score=None)
    for event, raw in _iter_events(body):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed SSE data for event %s", event)
            continue

        if event in _IGNORED_EVENTS:
            continue
        if event == "token":
            if isinstance(data, Mapping):
                result.text += str(data.get("text") or "")
        elif event == "citations":
            result.citations.extend(_parse_citations(data))
        elif event == "confidence":
            if isinstance(data, Mapping):
                score = _as_float(data.get("score"))
                if score is None:
                    score = _as_float(data.get("confidence"))
                if score is not None:
                    result.confidence_score = score
        elif event == "silence":
            data = data if isinstance(data, Mapping) else {}
            result.explicit_silence = True
            result.text = str(data.get("message") or DEFAULT_SILENCE_MESSAGE)
            score = _as_float(data.get("confidence"))
            result.confidence_score = score if score is not None else 0.0
            suggestions = data.get("suggestions")
            if isinstance(suggestions, list):
                result.suggestions = [str(s) for s in suggestions]
        elif isinstance(data, Mapping):
            if data.get("text"):
                result.text += str(data["text"])
            score = _as_float(data.get("score"))
            if score is not None:
                result.confidence_score = score
    return result


def _parse_json_answer(payload: Any) -> AnswerResult:
    if isinstance(payload, Mapping) and isinstance(payload.get("data"), Mapping):
        payload = payload["data"]
    if not isinstance(payload, Mapping):
        return AnswerResult(text="", confidence_score=None)
    suggestions = payload.get("suggestions")
    return AnswerResult(
        text=str(payload.get("answer") or payload.get("text") or ""),
        confidence_score=_as_float(payload.get("confidence")),
        citations=_parse_citations(payload.get("citations") or []),
        explicit_silence=bool(
            payload.get("silenceProtocol") or payload.get("silence")
        ),
        suggestions=[str(s) for s in suggestions] if isinstance(suggestions, list) else [],
    )


def parse_answer_body(body: str, content_type: str | None = None) -> AnswerResult:
    """Parse ``body`` as SSE, or as a plain JSON answer when it is one."""

    if content_type and "application/json" in content_type:
        try:
            return _parse_json_answer(json.loads(body))
        except json.JSONDecodeError:
            logger.warning("Answer backend sent invalid JSON; trying SSE parsing")
    stripped = body.lstrip()
    if stripped.startswith("{"):
        try:
            return _parse_json_answer(json.loads(stripped))
        except json.JSONDecodeError:
            pass
    return parse_sse_text(body)


__all__ = ["DEFAULT_SILENCE_MESSAGE", "parse_answer_body", "parse_sse_text"]
