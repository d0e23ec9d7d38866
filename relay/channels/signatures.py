"""Standard Webhooks signature verification.

Signed content is ``"{webhook-id}.{webhook-timestamp}.{body}"`` authenticated
with HMAC-SHA256. The secret is base64 encoded and may carry a ``whsec_``
prefix. The ``webhook-signature`` header holds one or more space separated
``v1,<base64 digest>`` entries so that secrets can be rotated.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import time
from collections.abc import Mapping

from ..errors import SignatureInvalid

SECRET_PREFIX = "whsec_"
DEFAULT_TOLERANCE_SECONDS = 300


def _secret_key(secret: str) -> bytes:
    if secret.startswith(SECRET_PREFIX):
        secret = secret[len(SECRET_PREFIX):]
    try:
        return base64.b64decode(secret, validate=True)
    except (binascii.Error, ValueError):
        return secret.encode("utf-8")


def compute_signature(secret: str, msg_id: str, timestamp: str, body: bytes) -> str:
    """Return the base64 HMAC-SHA256 of the signed content."""

    signed = msg_id.encode("utf-8") + b"." + timestamp.encode("utf-8") + b"." + body
    digest = hmac.new(_secret_key(secret), signed, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_standard_webhook(
    body: bytes,
    headers: Mapping[str, str],
    secret: str,
    *,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
    now: float | None = None,
) -> None:
    """Raise :class:`SignatureInvalid` unless ``body`` is authentic and fresh."""

    msg_id = headers.get("webhook-id")
    timestamp = headers.get("webhook-timestamp")
    signature_header = headers.get("webhook-signature")
    if not msg_id or not timestamp or not signature_header:
        raise SignatureInvalid("Missing required webhook headers")

    try:
        sent_at = int(timestamp)
    except ValueError as exc:
        raise SignatureInvalid("Invalid webhook timestamp") from exc
    current = int(now if now is not None else time.time())
    if current - sent_at > tolerance:
        raise SignatureInvalid("Webhook timestamp too old")
    if sent_at - current > tolerance:
        raise SignatureInvalid("Webhook timestamp too new")

    expected = compute_signature(secret, msg_id, timestamp, body)
    for entry in signature_header.split():
        version, _, candidate = entry.partition(",")
        if version != "v1":
            continue
        if hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8")):
            return
    raise SignatureInvalid("Signature verification failed")


__all__ = ["compute_signature", "verify_standard_webhook"]
