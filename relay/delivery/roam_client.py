"""Minimal client for the Roam chat API."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from typing import Any

import requests

from ..config import RelaySettings, get_settings
from ..errors import ChannelApiError

logger = logging.getLogger(__name__)

RETRY_DELAYS = (0.5, 1.0)
RETRYABLE_STATUSES = {429, 500, 502, 503, 504}


class RoamClient:
    """Bearer-authenticated JSON calls with bounded retries.

    Only 429 and 5xx responses (and transport errors) are retried, at most
    ``len(RETRY_DELAYS) + 1`` attempts in total. Every other failure raises
    :class:`ChannelApiError` immediately.
    """

    def __init__(
        self,
        settings: RelaySettings | None = None,
        *,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings or get_settings()
        self._session = session or requests.Session()
        self._sleep = sleep

    def _request(self, path: str, payload: dict[str, Any], api_key: str | None) -> dict[str, Any]:
        key = api_key or self._settings.roam_api_key
        if not key:
            raise ChannelApiError("Roam API key not configured", status=500, code="CONFIG_ERROR")
        url = f"{self._settings.roam_api_url}{path}"
        headers = {
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

        last_error = ChannelApiError("Roam API request failed", status=503)
        for attempt in range(len(RETRY_DELAYS) + 1):
            if attempt:
                delay = RETRY_DELAYS[attempt - 1]
                logger.warning("Roam retry %s/%s for %s after %ss", attempt, len(RETRY_DELAYS), path, delay)
                self._sleep(delay)
            try:
                response = self._session.request(
                    "POST",
                    url,
                    json=payload,
                    headers=headers,
                    timeout=self._settings.send_timeout_seconds,
                )
            except requests.RequestException as exc:
                last_error = ChannelApiError(f"Roam API unreachable: {exc}", status=503)
                continue

            if 200 <= response.status_code < 300:
                if response.status_code == 204 or not response.content:
                    return {}
                try:
                    return response.json()
                except ValueError:
                    return {}

            body = response.text or ""
            code = None
            try:
                parsed = json.loads(body)
                error = parsed.get("error")
                code = error.get("code") if isinstance(error, dict) else parsed.get("code")
            except (ValueError, AttributeError):
                pass
            last_error = ChannelApiError(
                f"Roam API {response.status_code}: {body[:200]}",
                status=response.status_code,
                code=code,
            )
            if response.status_code not in RETRYABLE_STATUSES:
                raise last_error

        raise last_error

    def send_message(
        self,
        group_id: str,
        text: str,
        *,
        thread_id: str | None = None,
        api_key: str | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"addressId": group_id, "text": text}
        if thread_id:
            payload["thread_id"] = thread_id
        return self._request("/messages", payload, api_key)

    def send_typing(self, chat_id: str, *, api_key: str | None = None) -> None:
        self._request("/chat.typing", {"chat": chat_id}, api_key)


__all__ = ["RETRY_DELAYS", "RETRYABLE_STATUSES", "RoamClient"]
