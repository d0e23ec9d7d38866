from datetime import datetime, timezone

import pytest

from relay.errors import ErrorKind
from relay.events.filters import MessageFilter
from relay.events.models import Answer, CitationBlock, Error, NormalizedMessage, Silence
from relay.formatting import (
    ROAM_MAX_CHARS,
    ROAM_TRUNCATION_MARKER,
    format_api,
    format_reply,
    format_timeline,
    strip_markdown,
    truncate_excerpt,
)


def _block(index=1, score=0.9, color="green", excerpt="The filing is due on 30 June."):
    return CitationBlock(
        index=index,
        document_id=f"doc-{index}",
        source_name="Filing.pdf",
        excerpt=excerpt,
        confidence_score=score,
        confidence_level="high",
        confidence_color=color,
        retrieval_timestamp=datetime(2024, 5, 29, tzinfo=timezone.utc),
        query_hash="q" * 64,
        response_hash="r" * 64,
        document_url=f"/documents/doc-{index}",
    )


def test_roam_answer_lists_sources():
    answer = Answer(text="**Due** on 30 June.", citation_blocks=(_block(),), confidence=0.9)

    text = format_reply("roam", answer)

    assert text.startswith("Due on 30 June.")
    assert "─── Sources ───" in text
    assert '[1] 🟢 Filing.pdf: "The filing is due on 30 June."' in text
    assert "Confidence" not in text


def test_roam_answer_warns_below_seventy_five_percent():
    text = format_reply("roam", Answer(text="Probably June.", confidence=0.7))

    assert "⚠ Confidence: 70%" in text


def test_roam_answer_is_truncated_with_marker():
    text = format_reply("roam", Answer(text="word " * 2000, confidence=0.9))

    assert len(text) == ROAM_MAX_CHARS
    assert text.endswith(ROAM_TRUNCATION_MARKER)


def test_roam_silence_never_shows_sources():
    text = format_reply("roam", Silence(reasoning="low", suggestions=("Ask about Q3",)))

    assert text.startswith("🔇 Silence Protocol")
    assert "  • Ask about Q3" in text
    assert "Sources" not in text


def test_roam_error_names_kind_only():
    text = format_reply("roam", Error(ErrorKind.UPSTREAM_FAILURE))

    assert "processing issue" in text
    assert "Error: UPSTREAM_FAILURE" in text


def test_whatsapp_answer_and_silence():
    answer = format_reply("whatsapp", Answer(text="June.", citation_blocks=(_block(),)))
    silence = format_reply("whatsapp", Silence(reasoning="low"))

    assert "Sources:\n[1]" in answer
    assert "Below threshold" in silence
    assert "Try rephrasing" in silence


def test_whatsapp_truncates_long_answers():
    text = format_reply("whatsapp", Answer(text="x" * 5000))

    assert len(text) == 4000
    assert text.endswith("...")


def test_unknown_channel_has_no_text_formatter():
    with pytest.raises(KeyError):
        format_reply("api", Answer(text="hi"))


def test_api_format_keeps_structured_blocks():
    answer = format_api(Answer(text="June.", citation_blocks=(_block(),), confidence=0.9))
    silence = format_api(Silence(reasoning="low", suggestions=("try",), confidence=0.2))
    error = format_api(Error(ErrorKind.INTERNAL_ERROR))

    assert answer["citations"][0]["documentUrl"] == "/documents/doc-1"
    assert answer["silenceProtocol"] is False
    assert silence["answer"] is None
    assert silence["citations"] == []
    assert silence["silenceProtocol"] is True
    assert error["error"] == "INTERNAL_ERROR"


def test_timeline_lines():
    assert format_timeline([_block(score=0.72, color="amber")]) == ["🟡 [1] Filing.pdf (72%)"]


def test_strip_markdown():
    source = "# Title\n\nSee [the doc](http://x) and `code`, **bold** and _soft_.\n\n\n\n> quoted"

    assert strip_markdown(source) == "Title\n\nSee the doc and code, bold and soft.\n\n│ quoted"


def test_truncate_excerpt_collapses_whitespace():
    assert truncate_excerpt("a\n  b") == "a b"
    assert truncate_excerpt("abcdef", max_len=4) == "abc…"


def _message(text="hi", **fields):
    fields.setdefault("sender_id", "user-1")
    return NormalizedMessage(
        channel="roam", external_message_id="m", channel_routing_key="chat-1", text=text, **fields
    )


@pytest.mark.parametrize(
    "sender_id, name, expected",
    [
        ("relay-bot", None, True),
        ("user-1", "M.E.R.C.U.R.Y", True),
        ("user-1", " Relay ", True),
        ("user-1", "Dana", False),
    ],
)
def test_is_self(sender_id, name, expected):
    message = _message(sender_id=sender_id, sender_display_name=name)

    assert MessageFilter().is_self(message) is expected


def test_is_addressed():
    message_filter = MessageFilter()

    assert message_filter.is_addressed(_message("hello", is_direct=True), mention_only=True)
    assert message_filter.is_addressed(_message("hello"), mention_only=False)
    assert message_filter.is_addressed(_message("hello", is_mention=True), mention_only=True)
    assert message_filter.is_addressed(_message("hey @Relay what's new"), mention_only=True)
    assert not message_filter.is_addressed(_message("hello"), mention_only=True)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("@bot summarize the filing", "summarize the filing"),
        ("@RELAY, what changed?", "what changed?"),
        ("what changed @bot", "what changed @bot"),
        ("@bot", "@bot"),
    ],
)
def test_strip_mention(text, expected):
    assert MessageFilter().strip_mention(text) == expected


def test_custom_mention_tokens():
    message_filter = MessageFilter(bot_identities=["vault"], mention_tokens=["@vault"])

    assert message_filter.strip_mention("@vault list filings") == "list filings"
    assert not message_filter.mentions_bot("@bot list filings")
