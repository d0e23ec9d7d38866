"""Resolve the tenant that owns an inbound channel address."""

from __future__ import annotations

import dataclasses
import logging

from ..config import RelaySettings, get_settings
from ..errors import CredentialDecryptFailure
from ..events.models import TenantContext
from .crypto import CredentialCipher
from .repository import TenantRepository

logger = logging.getLogger(__name__)


class TenantResolver:
    """Look up tenant integrations with an explicit default-tenant fallback.

    Resolution and decryption are separate steps: :meth:`resolve` never touches
    the credential, :meth:`with_credential` decrypts it once the event has
    passed deduplication.
    """

    def __init__(
        self,
        repository: TenantRepository,
        cipher: CredentialCipher,
        settings: RelaySettings | None = None,
    ) -> None:
        self._repository = repository
        self._cipher = cipher
        self._settings = settings or get_settings()

    def fallback(self) -> TenantContext:
        return TenantContext(
            tenant_id=self._settings.default_tenant_id,
            user_id=self._settings.default_user_id,
            mention_only=self._settings.default_mention_only,
            resolution="fallback",
        )

    def resolve(self, channel: str, routing_key: str) -> TenantContext:
        integration = self._repository.find_active_integration(channel, routing_key)
        if integration is None:
            logger.info(
                "No active %s integration for %s; using default tenant %s",
                channel,
                routing_key,
                self._settings.default_tenant_id,
            )
            context = self.fallback()
        else:
            context = TenantContext(
                tenant_id=integration.tenant_id,
                user_id=integration.user_id,
                mention_only=integration.mention_only,
                features=dict(integration.features),
                resolution="integration",
                integration_id=integration.id,
                encrypted_credential=integration.api_key_encrypted,
            )
        return dataclasses.replace(
            context, personality_prompt=self.persona_for(context.tenant_id)
        )

    def persona_for(self, tenant_id: str) -> str | None:
        try:
            prompt = self._repository.get_persona_prompt(tenant_id)
        except Exception:
            logger.exception("Persona lookup failed for tenant %s", tenant_id)
            return None
        return prompt or None

    def with_credential(self, context: TenantContext) -> TenantContext:
        """Return ``context`` with its credential decrypted; unset when decryption fails."""

        if not context.encrypted_credential:
            return context
        try:
            credential = self._cipher.decrypt(context.encrypted_credential)
        except CredentialDecryptFailure as exc:
            logger.error(
                "Credential decrypt failed for tenant %s: %s; using platform default",
                context.tenant_id,
                exc,
            )
            credential = None
        return dataclasses.replace(context, decrypted_credential=credential)

    def mark_revoked(self, context: TenantContext, reason: str) -> None:
        if context.integration_id is None:
            return
        self._repository.mark_integration_error(context.integration_id, reason)


__all__ = ["TenantResolver"]
