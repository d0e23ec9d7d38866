"""Base abstractions for chat channel adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any, Optional

from ..config import RelaySettings, get_settings
from ..events.models import NormalizedMessage

#: Maps one payload family to a :class:`NormalizedMessage`, or ``None`` when the
#: event carries nothing to answer (e.g. an empty text body).
Normalizer = Callable[[Mapping[str, Any]], Optional[NormalizedMessage]]


class ChannelAdapter(ABC):
    """Abstract base class encapsulating channel-specific behaviour."""

    #: Lowercase channel identifier used in routes and queue attributes.
    channel_name: str

    def __init__(self, settings: RelaySettings | None = None) -> None:
        self.settings = settings or get_settings()

    @abstractmethod
    def is_configured(self) -> bool:
        """Return ``True`` when the shared secret needed for verification is set."""

    @abstractmethod
    def verify_signature(self, body: bytes, headers: Mapping[str, str]) -> bool:
        """Validate authenticity of the raw webhook body."""

    @abstractmethod
    def classify(self, payload: Mapping[str, Any]) -> str:
        """Return the type tag used to pick a normalizer for ``payload``."""

    @abstractmethod
    def normalizers(self) -> Mapping[str, Normalizer]:
        """Return the mapping functions keyed by type tag."""

    def event_id(
        self, payload: Mapping[str, Any], headers: Mapping[str, str]
    ) -> str | None:
        """Return the channel-assigned id of the webhook call, if any."""

        return None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse epoch seconds, epoch milliseconds or ISO-8601 into UTC.

    Missing or unparseable values return ``None``.
    """

    if value is None or value == "":
        return None
    if isinstance(value, str):
        stripped = value.strip()
        try:
            value = float(stripped)
        except ValueError:
            try:
                parsed = datetime.fromisoformat(stripped.replace("Z", "+00:00"))
            except ValueError:
                return None
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc)
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    return None
