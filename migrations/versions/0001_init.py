"""initial schema

Revision ID: 0001_init
Revises:
Create Date: 2026-10-17 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "clusters",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("topology", sa.String(length=32), nullable=False),
        sa.Column("replication_mode", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_clusters_name", "clusters", ["name"], unique=True)

    op.create_table(
        "nodes",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column(
            "cluster_id",
            sa.String(length=64),
            sa.ForeignKey("clusters.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("host", sa.String(length=255), nullable=False),
        sa.Column("port", sa.Integer(), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("connection_string", sa.String(length=1024), nullable=True),
        sa.Column("db_user", sa.String(length=128), nullable=True),
        sa.Column("db_password_hash", sa.String(length=256), nullable=True),
        sa.Column("ssl_enabled", sa.Boolean(), nullable=False),
        sa.Column("ssl_mode", sa.String(length=16), nullable=False),
        sa.Column("connection_verified", sa.Boolean(), nullable=False),
        sa.Column("connection_error", sa.String(length=1024), nullable=True),
        sa.Column("last_connection_test", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pg_version", sa.String(length=32), nullable=True),
        sa.Column("replication_enabled", sa.Boolean(), nullable=False),
        sa.Column("sync_enabled", sa.Boolean(), nullable=False),
        sa.Column("sync_status", sa.String(length=16), nullable=False),
        sa.Column("routing_weight", sa.Integer(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_nodes_cluster_id", "nodes", ["cluster_id"])
    op.create_index("ix_nodes_cluster_role", "nodes", ["cluster_id", "role"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=True),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("before_state", sa.JSON(), nullable=True),
        sa.Column("after_state", sa.JSON(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
    )
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])

    op.create_table(
        "node_lifecycle_events",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("node_id", sa.String(length=64), nullable=False),
        sa.Column("cluster_id", sa.String(length=64), nullable=False),
        sa.Column("event_type", sa.String(length=32), nullable=False),
        sa.Column("from_status", sa.String(length=32), nullable=True),
        sa.Column("to_status", sa.String(length=32), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("initiated_by", sa.String(length=64), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
    )
    op.create_index(
        "ix_node_lifecycle_events_node_id", "node_lifecycle_events", ["node_id"]
    )
    op.create_index(
        "ix_node_lifecycle_events_cluster_id", "node_lifecycle_events", ["cluster_id"]
    )

    op.create_table(
        "users",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("username", sa.String(length=128), nullable=False),
        sa.Column("password_hash", sa.String(length=256), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_users_username", table_name="users")
    op.drop_table("users")
    op.drop_index("ix_node_lifecycle_events_cluster_id", table_name="node_lifecycle_events")
    op.drop_index("ix_node_lifecycle_events_node_id", table_name="node_lifecycle_events")
    op.drop_table("node_lifecycle_events")
    op.drop_index("ix_audit_logs_created_at", table_name="audit_logs")
    op.drop_index("ix_audit_logs_entity", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_nodes_cluster_role", table_name="nodes")
    op.drop_index("ix_nodes_cluster_id", table_name="nodes")
    op.drop_table("nodes")
    op.drop_index("ix_clusters_name", table_name="clusters")
    op.drop_table("clusters")
