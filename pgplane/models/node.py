from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from pgplane.models.base import Base, TimestampMixin
from pgplane.services.dsn import DEFAULT_SSL_MODE

ROLE_PRIMARY = "PRIMARY"
ROLE_REPLICA = "REPLICA"
NODE_ROLES = (ROLE_PRIMARY, ROLE_REPLICA)
NODE_STATUSES = ("ONLINE", "OFFLINE", "DEGRADED", "DRAINING", "MAINTENANCE")
SYNC_STATUSES = ("NOT_CONFIGURED", "PENDING", "SYNCING", "SYNCED", "ERROR")


class Node(TimestampMixin, Base):
    __tablename__ = "nodes"
    __table_args__ = (Index("ix_nodes_cluster_role", "cluster_id", "role"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128))
    cluster_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("clusters.id", ondelete="CASCADE"), index=True
    )
    host: Mapped[str] = mapped_column(String(255))
    port: Mapped[int] = mapped_column(Integer, default=5432)
    role: Mapped[str] = mapped_column(String(16), default=ROLE_REPLICA)
    status: Mapped[str] = mapped_column(String(16), default="OFFLINE")

    connection_string: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    db_user: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    db_password_hash: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    ssl_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    ssl_mode: Mapped[str] = mapped_column(String(16), default=DEFAULT_SSL_MODE)

    connection_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    connection_error: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    last_connection_test: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    pg_version: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    replication_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    sync_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    sync_status: Mapped[str] = mapped_column(String(16), default="NOT_CONFIGURED")

    routing_weight: Mapped[int] = mapped_column(Integer, default=100)
    priority: Mapped[int] = mapped_column(Integer, default=5)
