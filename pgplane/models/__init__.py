from pgplane.models.audit_log import AuditLog
from pgplane.models.base import Base
from pgplane.models.cluster import Cluster
from pgplane.models.node import Node
from pgplane.models.node_lifecycle_event import NodeLifecycleEvent
from pgplane.models.user import User

__all__ = [
    "AuditLog",
    "Base",
    "Cluster",
    "Node",
    "NodeLifecycleEvent",
    "User",
]
