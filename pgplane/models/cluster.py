from __future__ import annotations

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from pgplane.models.base import Base, TimestampMixin

CLUSTER_TOPOLOGIES = ("STANDARD", "HA", "MULTI_REGION")
REPLICATION_MODES = ("ASYNC", "SYNC")
CLUSTER_STATUSES = ("PROVISIONING", "HEALTHY", "DEGRADED", "OFFLINE")


class Cluster(TimestampMixin, Base):
    __tablename__ = "clusters"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    topology: Mapped[str] = mapped_column(String(32), default="STANDARD")
    replication_mode: Mapped[str] = mapped_column(String(16), default="ASYNC")
    status: Mapped[str] = mapped_column(String(32), default="PROVISIONING")
