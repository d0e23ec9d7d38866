"""Tenant-facing SQLAlchemy models.

The models mirror the DDL in ``relay/migrations/001_create_relay_tables.py``.
"""

from __future__ import annotations

import datetime as dt
import uuid
from typing import Any

from sqlalchemy import JSON, DateTime, Index, String, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from . import Base

STATUS_CONNECTED = "connected"
STATUS_ERROR = "error"
STATUS_DISCONNECTED = "disconnected"


def _utcnow() -> dt.datetime:
    """Return the current UTC timestamp with timezone awareness."""

    return dt.datetime.now(dt.timezone.utc)


class TenantIntegration(Base):
    """A tenant's connection to one chat channel address.

    Attributes:
        tenant_id: Owning tenant.
        user_id: User whose thread receives the conversation.
        channel: Channel name (``roam`` or ``whatsapp``).
        routing_key: Channel address the integration answers for, e.g. a
            Roam group id or a WhatsApp phone number.
        api_key_encrypted: Fernet token of the tenant's channel API key.
        status: ``connected``, ``error`` or ``disconnected``; only connected
            integrations resolve.
        error_reason: Diagnostic text set when the status flips to ``error``.
        mention_only: Require a mention token in group messages.
        features: Free-form per-tenant feature flags.
    """

    __tablename__ = "tenant_integrations"
    __table_args__ = (
        Index("ix_tenant_integrations_channel_routing_key", "channel", "routing_key", unique=True),
        Index("ix_tenant_integrations_tenant_id", "tenant_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    tenant_id: Mapped[str] = mapped_column(String(length=255), nullable=False)
    user_id: Mapped[str] = mapped_column(String(length=255), nullable=False)
    channel: Mapped[str] = mapped_column(String(length=32), nullable=False)
    routing_key: Mapped[str] = mapped_column(String(length=255), nullable=False)
    api_key_encrypted: Mapped[str | None] = mapped_column(Text(), nullable=True)
    status: Mapped[str] = mapped_column(
        String(length=32),
        nullable=False,
        default=STATUS_CONNECTED,
        server_default=text("'connected'"),
    )
    error_reason: Mapped[str | None] = mapped_column(Text(), nullable=True)
    mention_only: Mapped[bool] = mapped_column(
        nullable=False,
        default=True,
        server_default=text("true"),
    )
    features: Mapped[dict[str, Any]] = mapped_column(JSON(), nullable=False, default=dict)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )


class TenantPersona(Base):
    """Optional system-prompt override applied to a tenant's answers."""

    __tablename__ = "tenant_personas"
    __table_args__ = (Index("ix_tenant_personas_tenant_id_unique", "tenant_id", unique=True),)

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    tenant_id: Mapped[str] = mapped_column(String(length=255), nullable=False)
    personality_prompt: Mapped[str | None] = mapped_column(Text(), nullable=True)
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )
