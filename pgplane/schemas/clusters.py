from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from pgplane.schemas.nodes import NodeOut, NodeRole, SslMode

Topology = Literal["STANDARD", "HA", "MULTI_REGION"]
ReplicationMode = Literal["ASYNC", "SYNC"]
ClusterStatus = Literal["PROVISIONING", "HEALTHY", "DEGRADED", "OFFLINE"]


class ClusterNodeSpec(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    host: str = Field(min_length=1, max_length=255)
    port: int = Field(default=5432, ge=1, le=65535)
    role: NodeRole = "REPLICA"
    ssl_mode: Optional[SslMode] = None


class ClusterCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    topology: Topology = "STANDARD"
    replication_mode: ReplicationMode = "ASYNC"
    nodes: List[ClusterNodeSpec] = Field(default_factory=list)


class ClusterUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=128)
    topology: Optional[Topology] = None
    replication_mode: Optional[ReplicationMode] = None
    status: Optional[ClusterStatus] = None


class ClusterOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    topology: str
    replication_mode: str
    status: str
    node_count: int = 0
    created_at: datetime
    updated_at: datetime


class ClusterDetailOut(ClusterOut):
    nodes: List[NodeOut] = Field(default_factory=list)
