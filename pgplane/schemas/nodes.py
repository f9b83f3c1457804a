from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pgplane.services.dsn import MASK, mask_connection_string

NodeRole = Literal["PRIMARY", "REPLICA"]
NodeStatus = Literal["ONLINE", "OFFLINE", "DEGRADED", "DRAINING", "MAINTENANCE"]
SslMode = Literal["disable", "allow", "prefer", "require", "verify-ca", "verify-full"]
LifecycleAction = Literal[
    "drain",
    "maintenance",
    "online",
    "offline",
    "decommission",
    "set_priority",
    "set_weight",
]


class NodeCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    cluster_id: str
    host: str = Field(min_length=1, max_length=255)
    port: int = Field(default=5432, ge=1, le=65535)
    role: NodeRole = "REPLICA"
    status: NodeStatus = "OFFLINE"
    connection_string: Optional[str] = None
    db_user: Optional[str] = None
    db_password: Optional[str] = None
    ssl_mode: Optional[SslMode] = None
    replication_enabled: bool = False
    routing_weight: int = Field(default=100, ge=0, le=100)
    priority: int = Field(default=5, ge=1, le=10)


class NodeUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=128)
    role: Optional[NodeRole] = None
    status: Optional[NodeStatus] = None
    connection_string: Optional[str] = None
    db_user: Optional[str] = None
    db_password: Optional[str] = None
    ssl_enabled: Optional[bool] = None
    ssl_mode: Optional[SslMode] = None
    sync_enabled: Optional[bool] = None
    replication_enabled: Optional[bool] = None


class NodeOut(BaseModel):
    """Outbound node view; secret columns are masked on construction."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    cluster_id: str
    host: str
    port: int
    role: str
    status: str
    connection_string: Optional[str]
    db_user: Optional[str]
    db_password_hash: Optional[str]
    ssl_enabled: bool
    ssl_mode: str
    connection_verified: bool
    connection_error: Optional[str]
    last_connection_test: Optional[datetime]
    pg_version: Optional[str]
    replication_enabled: bool
    sync_enabled: bool
    sync_status: str
    routing_weight: int
    priority: int
    created_at: datetime
    updated_at: datetime

    @field_validator("connection_string")
    @classmethod
    def _mask_connection_string(cls, value: Optional[str]) -> Optional[str]:
        return mask_connection_string(value)

    @field_validator("db_password_hash")
    @classmethod
    def _mask_password_hash(cls, value: Optional[str]) -> Optional[str]:
        return MASK if value else None


class ReconcileResult(BaseModel):
    node: NodeOut
    demoted_nodes: List[str] = Field(default_factory=list)


class ConnectionTestRequest(BaseModel):
    connection_string: str = Field(min_length=1)
    ssl_mode: Optional[SslMode] = None


class ConnectionTestOut(BaseModel):
    success: bool
    error: Optional[str] = None
    pg_version: Optional[str] = None
    server_info: Optional[Dict[str, Any]] = None


class LifecycleRequest(BaseModel):
    action: LifecycleAction
    reason: Optional[str] = Field(default=None, max_length=512)
    estimated_duration: Optional[str] = Field(default=None, max_length=64)
    priority: Optional[int] = None
    weight: Optional[int] = None


class LifecycleEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    node_id: str
    cluster_id: str
    event_type: str
    from_status: Optional[str]
    to_status: Optional[str]
    details: Dict[str, Any]
    initiated_by: Optional[str]
    created_at: datetime


class LifecycleOut(BaseModel):
    action: LifecycleAction
    event: LifecycleEventOut
    node: Optional[NodeOut] = None
