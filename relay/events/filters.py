"""Self-loop and mention-only filtering of normalized messages."""

from __future__ import annotations

import re
from collections.abc import Iterable

from ..config import DEFAULT_BOT_IDENTITIES, DEFAULT_MENTION_TOKENS
from .models import NormalizedMessage


class MessageFilter:
    def __init__(
        self,
        bot_identities: Iterable[str] = DEFAULT_BOT_IDENTITIES,
        mention_tokens: Iterable[str] = DEFAULT_MENTION_TOKENS,
    ) -> None:
        self._identities = {identity.strip().lower() for identity in bot_identities if identity.strip()}
        # Longest first so "@relay-bot" wins over "@relay" when stripping.
        self._tokens = sorted(
            {token.strip().lower() for token in mention_tokens if token.strip()},
            key=len,
            reverse=True,
        )
        self._leading = re.compile(
            r"^\s*(?:" + "|".join(re.escape(t) for t in self._tokens) + r")\b[\s,:;.!-]*",
            re.IGNORECASE,
        ) if self._tokens else None

    def is_self(self, message: NormalizedMessage) -> bool:
        """``True`` when the sender is one of the system's own bot identities."""

        candidates = (message.sender_id, message.sender_display_name)
        return any(c and c.strip().lower() in self._identities for c in candidates)

    def mentions_bot(self, text: str) -> bool:
        lowered = text.lower()
        return any(token in lowered for token in self._tokens)

    def is_addressed(self, message: NormalizedMessage, mention_only: bool) -> bool:
        """Direct messages always pass; group messages need a mention when required."""

        if message.is_direct or not mention_only:
            return True
        return message.is_mention or self.mentions_bot(message.text)

    def strip_mention(self, text: str) -> str:
        if self._leading is None:
            return text.strip()
        stripped = self._leading.sub("", text, count=1).strip()
        return stripped or text.strip()


__all__ = ["MessageFilter"]
