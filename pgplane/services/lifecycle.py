from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pgplane.errors import ValidationError
from pgplane.logger import get_logger
from pgplane.models.node import ROLE_PRIMARY, Node
from pgplane.models.node_lifecycle_event import NodeLifecycleEvent
from pgplane.schemas.nodes import LifecycleEventOut, LifecycleOut, LifecycleRequest
from pgplane.security import ROLE_OPERATOR, Actor, ensure_permission
from pgplane.services.audit import ENTITY_NODE, record_audit, redacted_node_state, snapshot
from pgplane.services.nodes import require_node, to_out

_logger = get_logger("services.lifecycle")

_EVENT_TYPES = {
    "drain": "DRAIN_STARTED",
    "maintenance": "MAINTENANCE_STARTED",
    "online": "BROUGHT_ONLINE",
    "offline": "TAKEN_OFFLINE",
    "decommission": "DECOMMISSIONED",
    "set_priority": "PRIORITY_CHANGED",
    "set_weight": "WEIGHT_CHANGED",
}


async def list_lifecycle_events(
    session: AsyncSession,
    *,
    node_id: Optional[str] = None,
    cluster_id: Optional[str] = None,
    limit: int = 100,
) -> List[NodeLifecycleEvent]:
    query = select(NodeLifecycleEvent).order_by(NodeLifecycleEvent.created_at.desc())
    if node_id:
        query = query.where(NodeLifecycleEvent.node_id == node_id)
    if cluster_id:
        query = query.where(NodeLifecycleEvent.cluster_id == cluster_id)
    result = await session.execute(query.limit(limit))
    return list(result.scalars().all())


def _status_transition(node: Node, request: LifecycleRequest) -> Tuple[str, Dict[str, Any]]:
    action = request.action
    if action == "drain":
        if node.status != "ONLINE":
            raise ValidationError("Node must be online to drain")
        return "DRAINING", {"reason": request.reason or "Manual drain initiated"}
    if action == "maintenance":
        if node.status not in {"ONLINE", "DRAINING"}:
            raise ValidationError("Node must be online or draining")
        return "MAINTENANCE", {
            "reason": request.reason or "Scheduled maintenance",
            "estimated_duration": request.estimated_duration or "1 hour",
        }
    if action == "online":
        if node.status == "ONLINE":
            raise ValidationError("Node is already online")
        return "ONLINE", {"previous_status": node.status}
    if action == "offline":
        if node.status == "OFFLINE":
            raise ValidationError("Node is already offline")
        if node.role == ROLE_PRIMARY:
            raise ValidationError("Cannot take primary offline. Perform failover first.")
        return "OFFLINE", {"reason": request.reason or "Manual shutdown"}
    raise ValueError(f"not a status transition: {action}")


async def apply_lifecycle_action(
    session: AsyncSession,
    actor: Actor,
    node_id: str,
    request: LifecycleRequest,
) -> LifecycleOut:
    ensure_permission(actor, ROLE_OPERATOR)
    node = await require_node(session, node_id)
    event_type = _EVENT_TYPES[request.action]
    before_state = redacted_node_state(snapshot(node))
    audit_before: Dict[str, Any]
    audit_after: Optional[Dict[str, Any]]

    if request.action == "decommission":
        if node.role == ROLE_PRIMARY:
            raise ValidationError("Cannot decommission primary. Perform failover first.")
        from_status, to_status = node.status, "DECOMMISSIONED"
        details: Dict[str, Any] = {"reason": request.reason or "Node decommissioned"}
        audit_before, audit_after = before_state, None
    elif request.action == "set_priority":
        if request.priority is None or not 1 <= request.priority <= 10:
            raise ValidationError("Priority must be between 1 and 10")
        from_status, to_status = str(node.priority), str(request.priority)
        details = {"previous_priority": node.priority, "new_priority": request.priority}
        audit_before = {"priority": node.priority}
        audit_after = {"priority": request.priority}
        node.priority = request.priority
    elif request.action == "set_weight":
        if request.weight is None or not 0 <= request.weight <= 100:
            raise ValidationError("Weight must be between 0 and 100")
        from_status, to_status = str(node.routing_weight), str(request.weight)
        details = {"previous_weight": node.routing_weight, "new_weight": request.weight}
        audit_before = {"routing_weight": node.routing_weight}
        audit_after = {"routing_weight": request.weight}
        node.routing_weight = request.weight
    else:
        to_status, details = _status_transition(node, request)
        from_status = node.status
        node.status = to_status
        audit_before, audit_after = {"status": from_status}, {"status": to_status}

    event = NodeLifecycleEvent(
        id=str(uuid4()),
        node_id=node.id,
        cluster_id=node.cluster_id,
        event_type=event_type,
        from_status=from_status,
        to_status=to_status,
        details=details,
        initiated_by=actor.user_id,
    )
    session.add(event)
    await record_audit(
        session,
        user_id=actor.user_id,
        entity_type=ENTITY_NODE,
        entity_id=node.id,
        action=event_type,
        before_state=audit_before,
        after_state=audit_after,
    )

    decommissioned = request.action == "decommission"
    if decommissioned:
        await session.delete(node)
    await session.commit()
    await session.refresh(event)
    if not decommissioned:
        await session.refresh(node)

    _logger.info(
        "lifecycle.apply",
        "Applied node lifecycle action",
        node_id=node_id,
        action=request.action,
        from_status=from_status,
        to_status=to_status,
    )
    return LifecycleOut(
        action=request.action,
        event=LifecycleEventOut.model_validate(event),
        node=None if decommissioned else to_out(node),
    )
