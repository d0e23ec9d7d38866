"""Runtime configuration loaded from environment variables."""

from __future__ import annotations

import dataclasses
import os
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()

DEFAULT_BOT_IDENTITIES = ("relay", "relay-bot", "m.e.r.c.u.r.y")
DEFAULT_MENTION_TOKENS = ("@bot", "@relay")


def _split(value: str | None, default: tuple[str, ...]) -> tuple[str, ...]:
    if value is None:
        return default
    items = tuple(item.strip() for item in value.split(",") if item.strip())
    return items or default


@dataclasses.dataclass(frozen=True)
class RelaySettings:
    """Settings shared by the webhook receiver, the processor and the worker."""

    database_url: str | None = None

    # Inbound signatures
    roam_webhook_secret: str | None = None
    vonage_signature_secret: str | None = None
    whatsapp_provider: str = "vonage"
    meta_app_secret: str | None = None
    whatsapp_verify_token: str | None = None
    webhook_tolerance_seconds: int = 300
    webhook_ack_budget_ms: int = 250

    # Answer backend
    backend_url: str = "http://localhost:8080"
    internal_auth_secret: str = ""
    answer_timeout_seconds: float = 20.0
    answer_mode: str = "concise"

    # The gate threshold and the citation tiers are independent values.
    silence_threshold: float = 0.65
    citation_green_threshold: float = 0.85
    citation_amber_threshold: float = 0.70
    low_confidence_warning: float = 0.75
    document_base_url: str = "/documents"

    # Tenancy
    default_tenant_id: str = "default"
    default_user_id: str | None = None
    default_mention_only: bool = True
    credential_encryption_key: str | None = None

    # Channels
    roam_api_url: str = "https://api.ro.am/v1"
    roam_api_key: str | None = None
    vonage_api_key: str | None = None
    vonage_api_secret: str | None = None
    vonage_whatsapp_number: str | None = None
    vonage_messages_url: str = "https://messages-sandbox.nexmo.com/v1/messages"
    meta_access_token: str | None = None
    meta_phone_number_id: str | None = None
    meta_graph_url: str = "https://graph.facebook.com/v19.0"
    send_timeout_seconds: float = 10.0

    # Filters
    bot_identities: tuple[str, ...] = DEFAULT_BOT_IDENTITIES
    mention_tokens: tuple[str, ...] = DEFAULT_MENTION_TOKENS

    # Dedup, queue and worker
    dedup_ttl_seconds: int = 60 * 60 * 24 * 7
    worker_concurrency: int = 4
    queue_max_delivery_attempts: int = 5
    queue_visibility_timeout: int = 60
    queue_poll_interval: float = 1.0

    # Direct API
    rate_limit_storage_uri: str = "memory://"
    query_rate_limit: str = "30/minute"


@lru_cache(maxsize=1)
def get_settings() -> RelaySettings:
    """Load settings from the environment with development defaults."""

    return RelaySettings(
        database_url=os.getenv("DATABASE_URL"),
        roam_webhook_secret=os.getenv("ROAM_WEBHOOK_SECRET"),
        vonage_signature_secret=os.getenv("VONAGE_SIGNATURE_SECRET"),
        whatsapp_provider=os.getenv("WHATSAPP_PROVIDER", "vonage").lower(),
        meta_app_secret=os.getenv("META_APP_SECRET"),
        whatsapp_verify_token=os.getenv("WHATSAPP_VERIFY_TOKEN"),
        webhook_tolerance_seconds=int(os.getenv("WEBHOOK_TOLERANCE_SECONDS", "300")),
        webhook_ack_budget_ms=int(os.getenv("WEBHOOK_ACK_BUDGET_MS", "250")),
        backend_url=os.getenv("GO_BACKEND_URL", "http://localhost:8080").rstrip("/"),
        internal_auth_secret=os.getenv("INTERNAL_AUTH_SECRET", ""),
        answer_timeout_seconds=float(os.getenv("ANSWER_TIMEOUT_SECONDS", "20")),
        answer_mode=os.getenv("ANSWER_MODE", "concise"),
        silence_threshold=float(os.getenv("SILENCE_THRESHOLD", "0.65")),
        citation_green_threshold=float(os.getenv("CITATION_GREEN_THRESHOLD", "0.85")),
        citation_amber_threshold=float(os.getenv("CITATION_AMBER_THRESHOLD", "0.70")),
        low_confidence_warning=float(os.getenv("LOW_CONFIDENCE_WARNING", "0.75")),
        document_base_url=os.getenv("DOCUMENT_BASE_URL", "/documents").rstrip("/"),
        default_tenant_id=os.getenv("DEFAULT_TENANT_ID", "default"),
        default_user_id=os.getenv("DEFAULT_USER_ID"),
        default_mention_only=os.getenv("DEFAULT_MENTION_ONLY", "true").lower() == "true",
        credential_encryption_key=os.getenv("CREDENTIAL_ENCRYPTION_KEY"),
        roam_api_url=os.getenv("ROAM_API_URL", "https://api.ro.am/v1").rstrip("/"),
        roam_api_key=os.getenv("ROAM_API_KEY"),
        vonage_api_key=os.getenv("VONAGE_API_KEY"),
        vonage_api_secret=os.getenv("VONAGE_API_SECRET"),
        vonage_whatsapp_number=os.getenv("VONAGE_WHATSAPP_NUMBER"),
        vonage_messages_url=os.getenv(
            "VONAGE_MESSAGES_URL", "https://messages-sandbox.nexmo.com/v1/messages"
        ),
        meta_access_token=os.getenv("META_ACCESS_TOKEN"),
        meta_phone_number_id=os.getenv("META_PHONE_NUMBER_ID"),
        meta_graph_url=os.getenv("META_GRAPH_URL", "https://graph.facebook.com/v19.0").rstrip("/"),
        send_timeout_seconds=float(os.getenv("SEND_TIMEOUT_SECONDS", "10")),
        bot_identities=_split(os.getenv("BOT_IDENTITIES"), DEFAULT_BOT_IDENTITIES),
        mention_tokens=_split(os.getenv("MENTION_TOKENS"), DEFAULT_MENTION_TOKENS),
        dedup_ttl_seconds=int(os.getenv("DEDUP_TTL_SECONDS", str(60 * 60 * 24 * 7))),
        worker_concurrency=int(os.getenv("WORKER_CONCURRENCY", "4")),
        queue_max_delivery_attempts=int(os.getenv("QUEUE_MAX_DELIVERY_ATTEMPTS", "5")),
        queue_visibility_timeout=int(os.getenv("QUEUE_VISIBILITY_TIMEOUT", "60")),
        queue_poll_interval=float(os.getenv("QUEUE_POLL_INTERVAL", "1.0")),
        rate_limit_storage_uri=os.getenv("RATE_LIMIT_STORAGE_URI", "memory://"),
        query_rate_limit=os.getenv("QUERY_RATE_LIMIT", "30/minute"),
    )


def reset_settings_cache() -> None:
    """Clear cached settings; useful in tests when env vars change."""

    get_settings.cache_clear()


__all__ = ["RelaySettings", "get_settings", "reset_settings_cache"]
