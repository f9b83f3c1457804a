from __future__ import annotations

from typing import Any, Dict, FrozenSet, List, Mapping, Optional
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pgplane.logger import get_logger
from pgplane.models.audit_log import AuditLog

_logger = get_logger("services.audit")

REDACTED = "[REDACTED]"

ENTITY_CLUSTER = "Cluster"
ENTITY_NODE = "Node"
ENTITY_USER = "User"

AUDIT_ACTIONS: Dict[str, FrozenSet[str]] = {
    ENTITY_CLUSTER: frozenset({"CREATE", "UPDATE", "DELETE"}),
    ENTITY_NODE: frozenset(
        {
            "CREATE",
            "UPDATE",
            "DELETE",
            "DRAIN_STARTED",
            "MAINTENANCE_STARTED",
            "BROUGHT_ONLINE",
            "TAKEN_OFFLINE",
            "DECOMMISSIONED",
            "PRIORITY_CHANGED",
            "WEIGHT_CHANGED",
        }
    ),
    ENTITY_USER: frozenset({"CREATE"}),
}

_NODE_SECRET_COLUMNS = ("connection_string", "db_password_hash")


def _jsonable(value: Any) -> Any:
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


def snapshot(row: Any) -> Dict[str, Any]:
    """Column values of an ORM row as a JSON-safe dict."""
    return {
        column.key: _jsonable(getattr(row, column.key))
        for column in row.__table__.columns
    }


def redacted_node_state(state: Mapping[str, Any]) -> Dict[str, Any]:
    redacted = dict(state)
    for key in _NODE_SECRET_COLUMNS:
        if key in redacted:
            redacted[key] = REDACTED
    return redacted


async def record_audit(
    session: AsyncSession,
    *,
    user_id: Optional[str],
    entity_type: str,
    entity_id: str,
    action: str,
    before_state: Optional[Dict[str, Any]] = None,
    after_state: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """Stage an audit row in the caller's transaction.

    The row commits or rolls back together with the mutation it describes.
    """
    allowed = AUDIT_ACTIONS.get(entity_type)
    if allowed is None or action not in allowed:
        raise ValueError(f"unsupported audit action {action!r} for {entity_type!r}")

    entry = AuditLog(
        id=str(uuid4()),
        user_id=user_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        before_state=before_state,
        after_state=after_state,
    )
    session.add(entry)
    _logger.info(
        "audit.record",
        "Staged audit record",
        audit_id=entry.id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
    )
    return entry


async def list_audit_logs(
    session: AsyncSession,
    *,
    limit: int = 200,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
) -> List[AuditLog]:
    query = select(AuditLog).order_by(AuditLog.created_at.desc())
    if entity_type:
        query = query.where(AuditLog.entity_type == entity_type)
    if entity_id:
        query = query.where(AuditLog.entity_id == entity_id)
    result = await session.execute(query.limit(limit))
    return list(result.scalars().all())
