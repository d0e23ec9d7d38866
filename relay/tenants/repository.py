"""Persistence of tenant integrations and personas."""

from __future__ import annotations

import dataclasses
import logging
import uuid
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from ..models import TenantIntegration, TenantPersona
from ..models.tenant import STATUS_CONNECTED, STATUS_ERROR

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class IntegrationRecord:
    id: str
    tenant_id: str
    user_id: str
    channel: str
    routing_key: str
    api_key_encrypted: Optional[str] = None
    status: str = STATUS_CONNECTED
    error_reason: Optional[str] = None
    mention_only: bool = True
    features: Dict[str, Any] = dataclasses.field(default_factory=dict)


def _to_record(row: TenantIntegration) -> IntegrationRecord:
    return IntegrationRecord(
        id=str(row.id),
        tenant_id=row.tenant_id,
        user_id=row.user_id,
        channel=row.channel,
        routing_key=row.routing_key,
        api_key_encrypted=row.api_key_encrypted,
        status=row.status,
        error_reason=row.error_reason,
        mention_only=bool(row.mention_only),
        features=dict(row.features or {}),
    )


class TenantRepository(Protocol):
    def find_active_integration(
        self, channel: str, routing_key: str
    ) -> Optional[IntegrationRecord]: ...

    def get_persona_prompt(self, tenant_id: str) -> Optional[str]: ...

    def mark_integration_error(self, integration_id: str, reason: str) -> None: ...


class SqlAlchemyTenantRepository:
    """:class:`TenantRepository` over the ORM models."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def find_active_integration(
        self, channel: str, routing_key: str
    ) -> Optional[IntegrationRecord]:
        with self._session_factory() as session:
            row = session.execute(
                select(TenantIntegration)
                .where(TenantIntegration.channel == channel)
                .where(TenantIntegration.routing_key == routing_key)
                .where(TenantIntegration.status == STATUS_CONNECTED)
            ).scalar_one_or_none()
            return _to_record(row) if row else None

    def get_persona_prompt(self, tenant_id: str) -> Optional[str]:
        with self._session_factory() as session:
            return session.execute(
                select(TenantPersona.personality_prompt).where(
                    TenantPersona.tenant_id == tenant_id
                )
            ).scalar_one_or_none()

    def mark_integration_error(self, integration_id: str, reason: str) -> None:
        with self._session_factory.begin() as session:
            row = session.execute(
                select(TenantIntegration).where(TenantIntegration.id == uuid.UUID(str(integration_id)))
            ).scalar_one_or_none()
            if row is None:
                logger.warning("Integration %s vanished before it could be marked", integration_id)
                return
            row.status = STATUS_ERROR
            row.error_reason = reason


class InMemoryTenantRepository:
    """Simple in-memory implementation useful for testing."""

    def __init__(self) -> None:
        self.integrations: List[IntegrationRecord] = []
        self.personas: Dict[str, str] = {}

    def add_integration(self, **fields: Any) -> IntegrationRecord:
        fields.setdefault("id", f"integration-{len(self.integrations) + 1}")
        record = IntegrationRecord(**fields)
        self.integrations.append(record)
        return record

    def find_active_integration(
        self, channel: str, routing_key: str
    ) -> Optional[IntegrationRecord]:
        for record in self.integrations:
            if (
                record.channel == channel
                and record.routing_key == routing_key
                and record.status == STATUS_CONNECTED
            ):
                return record
        return None

    def get_persona_prompt(self, tenant_id: str) -> Optional[str]:
        return self.personas.get(tenant_id)

    def mark_integration_error(self, integration_id: str, reason: str) -> None:
        for record in self.integrations:
            if record.id == integration_id:
                record.status = STATUS_ERROR
                record.error_reason = reason


__all__ = [
    "InMemoryTenantRepository",
    "IntegrationRecord",
    "SqlAlchemyTenantRepository",
    "TenantRepository",
]
