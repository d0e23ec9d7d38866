"""SQLAlchemy declarative base and tenant configuration models.

Tenant integrations and personas are administered through the ORM; the
high-volume pipeline stores (threads, audit, dead letters, queue, key-value
claims) are written with psycopg directly. Every table is created by the
migrations in ``relay/migrations``.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy declarative models."""


# Re-export tenant models so callers can ``from relay.models import TenantIntegration``.
from .tenant import TenantIntegration, TenantPersona


__all__ = [
    "Base",
    "TenantIntegration",
    "TenantPersona",
]
