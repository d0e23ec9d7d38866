"""Create tenant integration, queue, thread, audit and dead-letter tables."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001_create_relay_tables"
down_revision = None
branch_labels = None
depends_on = None


_UUID = postgresql.UUID(as_uuid=True)
_JSONB = postgresql.JSONB(astext_type=sa.Text())


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("now()"),
    )


def upgrade() -> None:
    """Create every table used by the receiver, the worker and the admin API."""

    op.create_table(
        "tenant_integrations",
        sa.Column(
            "id",
            _UUID,
            primary_key=True,
            nullable=False,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("tenant_id", sa.String(length=255), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("channel", sa.String(length=32), nullable=False),
        sa.Column("routing_key", sa.String(length=255), nullable=False),
        sa.Column("api_key_encrypted", sa.Text(), nullable=True),
        sa.Column(
            "status",
            sa.String(length=32),
            nullable=False,
            server_default=sa.text("'connected'"),
        ),
        sa.Column("error_reason", sa.Text(), nullable=True),
        sa.Column("mention_only", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("features", _JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index(
        "ix_tenant_integrations_channel_routing_key",
        "tenant_integrations",
        ["channel", "routing_key"],
        unique=True,
    )
    op.create_index(
        "ix_tenant_integrations_tenant_id",
        "tenant_integrations",
        ["tenant_id"],
    )

    op.create_table(
        "tenant_personas",
        sa.Column(
            "id",
            _UUID,
            primary_key=True,
            nullable=False,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("tenant_id", sa.String(length=255), nullable=False),
        sa.Column("personality_prompt", sa.Text(), nullable=True),
        _timestamp("updated_at"),
    )
    op.create_index(
        "ix_tenant_personas_tenant_id_unique",
        "tenant_personas",
        ["tenant_id"],
        unique=True,
    )

    op.create_table(
        "relay_kv",
        sa.Column("key", sa.Text(), primary_key=True, nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        _timestamp("created_at"),
    )
    op.create_index("ix_relay_kv_expires_at", "relay_kv", ["expires_at"])

    op.create_table(
        "relay_queue",
        sa.Column("id", sa.BigInteger(), sa.Identity(), primary_key=True),
        sa.Column("message_id", sa.String(length=64), nullable=False),
        sa.Column("data", sa.LargeBinary(), nullable=False),
        sa.Column("attributes", _JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("delivery_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "visible_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        _timestamp("created_at"),
    )
    op.create_index("ix_relay_queue_message_id_unique", "relay_queue", ["message_id"], unique=True)
    op.create_index("ix_relay_queue_visible_at", "relay_queue", ["visible_at"])

    op.create_table(
        "relay_threads",
        sa.Column("id", sa.BigInteger(), sa.Identity(), primary_key=True),
        sa.Column("tenant_id", sa.String(length=255), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index(
        "ix_relay_threads_tenant_user_updated",
        "relay_threads",
        ["tenant_id", "user_id", "updated_at"],
    )

    op.create_table(
        "relay_thread_messages",
        sa.Column("id", sa.BigInteger(), sa.Identity(), primary_key=True),
        sa.Column(
            "thread_id",
            sa.BigInteger(),
            sa.ForeignKey("relay_threads.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("tenant_id", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False),
        sa.Column("channel", sa.String(length=32), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=True),
        sa.Column("metadata", _JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("external_message_id", sa.String(length=255), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index(
        "ix_relay_thread_messages_thread_id",
        "relay_thread_messages",
        ["thread_id"],
    )
    op.create_index(
        "ix_relay_thread_messages_external_unique",
        "relay_thread_messages",
        ["tenant_id", "channel", "external_message_id"],
        unique=True,
        postgresql_where=sa.text("role = 'user' AND external_message_id IS NOT NULL"),
    )

    op.create_table(
        "relay_audit_log",
        sa.Column("id", sa.BigInteger(), sa.Identity(), primary_key=True),
        sa.Column("tenant_id", sa.String(length=255), nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=True),
        sa.Column("action_type", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("metadata", _JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        _timestamp("created_at"),
    )
    op.create_index(
        "ix_relay_audit_log_tenant_created",
        "relay_audit_log",
        ["tenant_id", "created_at"],
    )

    op.create_table(
        "relay_dead_letters",
        sa.Column("id", sa.BigInteger(), sa.Identity(), primary_key=True),
        sa.Column("tenant_id", sa.String(length=255), nullable=False),
        sa.Column("queue_message_id", sa.String(length=255), nullable=True),
        sa.Column("event_type", sa.String(length=128), nullable=False),
        sa.Column("payload", _JSONB, nullable=False),
        sa.Column("error_message", sa.Text(), nullable=False),
        sa.Column("error_status", sa.Integer(), nullable=True),
        sa.Column("retried", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("retried_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index(
        "ix_relay_dead_letters_tenant_created",
        "relay_dead_letters",
        ["tenant_id", "created_at"],
    )


def downgrade() -> None:
    """Drop the relay tables and their indexes."""

    op.drop_index("ix_relay_dead_letters_tenant_created", table_name="relay_dead_letters")
    op.drop_table("relay_dead_letters")
    op.drop_index("ix_relay_audit_log_tenant_created", table_name="relay_audit_log")
    op.drop_table("relay_audit_log")
    op.drop_index("ix_relay_thread_messages_external_unique", table_name="relay_thread_messages")
    op.drop_index("ix_relay_thread_messages_thread_id", table_name="relay_thread_messages")
    op.drop_table("relay_thread_messages")
    op.drop_index("ix_relay_threads_tenant_user_updated", table_name="relay_threads")
    op.drop_table("relay_threads")
    op.drop_index("ix_relay_queue_visible_at", table_name="relay_queue")
    op.drop_index("ix_relay_queue_message_id_unique", table_name="relay_queue")
    op.drop_table("relay_queue")
    op.drop_index("ix_relay_kv_expires_at", table_name="relay_kv")
    op.drop_table("relay_kv")
    op.drop_index("ix_tenant_personas_tenant_id_unique", table_name="tenant_personas")
    op.drop_table("tenant_personas")
    op.drop_index("ix_tenant_integrations_tenant_id", table_name="tenant_integrations")
    op.drop_index("ix_tenant_integrations_channel_routing_key", table_name="tenant_integrations")
    op.drop_table("tenant_integrations")
