"""HTTP client for the answer-generation backend."""

from __future__ import annotations

import logging
from typing import Any

import requests

from ..config import RelaySettings, get_settings
from ..errors import BackendUnavailable
from ..events.models import AnswerResult
from .sse import parse_answer_body

logger = logging.getLogger(__name__)


class AnswerClient:
    """Issue one query per event against ``{backend_url}/api/chat``.

    Timeouts, connection errors and non-2xx statuses raise
    :class:`~relay.errors.BackendUnavailable`; they are never interpreted as a
    low-confidence answer.
    """

    def __init__(
        self,
        settings: RelaySettings | None = None,
        *,
        session: requests.Session | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._session = session or requests.Session()

    @property
    def endpoint(self) -> str:
        return f"{self._settings.backend_url}/api/chat"

    def query(
        self,
        text: str,
        *,
        user_id: str | None,
        system_prompt_override: str | None = None,
    ) -> AnswerResult:
        body: dict[str, Any] = {
            "query": text,
            "mode": self._settings.answer_mode,
            "privilegeMode": False,
            "maxTier": 3,
            "history": [],
        }
        if system_prompt_override:
            body["systemPromptOverride"] = system_prompt_override
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream, application/json",
            "X-Internal-Auth": self._settings.internal_auth_secret,
        }
        if user_id:
            headers["X-User-ID"] = user_id

        try:
            response = self._session.request(
                "POST",
                self.endpoint,
                json=body,
                headers=headers,
                timeout=self._settings.answer_timeout_seconds,
            )
        except requests.Timeout as exc:
            logger.error("Answer backend timed out after %ss", self._settings.answer_timeout_seconds)
            raise BackendUnavailable("Answer backend timed out") from exc
        except requests.RequestException as exc:
            logger.error("Answer backend request failed: %s", exc)
            raise BackendUnavailable("Answer backend unreachable") from exc

        if not 200 <= response.status_code < 300:
            logger.error("Answer backend returned HTTP %s", response.status_code)
            raise BackendUnavailable(
                f"Answer backend returned HTTP {response.status_code}",
                status=response.status_code,
            )
        return parse_answer_body(response.text, response.headers.get("Content-Type"))


__all__ = ["AnswerClient"]
