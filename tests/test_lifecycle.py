"""Node lifecycle actions and the events they leave behind."""

from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pgplane.errors import PermissionDeniedError, ValidationError
from pgplane.models import AuditLog, Cluster, Node
from pgplane.schemas.nodes import LifecycleRequest
from pgplane.security import Actor
from pgplane.services.lifecycle import apply_lifecycle_action, list_lifecycle_events


async def test_drain_then_maintenance_then_online(
    session: AsyncSession,
    cluster: Cluster,
    operator: Actor,
) -> None:
    drained = await apply_lifecycle_action(
        session, operator, "B", LifecycleRequest(action="drain", reason="kernel patch")
    )
    assert drained.node is not None
    assert drained.node.status == "DRAINING"
    assert drained.event.event_type == "DRAIN_STARTED"
    assert drained.event.from_status == "ONLINE"
    assert drained.event.to_status == "DRAINING"
    assert drained.event.details == {"reason": "kernel patch"}
    assert drained.event.initiated_by == operator.user_id

    maintenance = await apply_lifecycle_action(
        session, operator, "B", LifecycleRequest(action="maintenance")
    )
    assert maintenance.node.status == "MAINTENANCE"
    assert maintenance.event.details["estimated_duration"] == "1 hour"

    online = await apply_lifecycle_action(session, operator, "B", LifecycleRequest(action="online"))
    assert online.node.status == "ONLINE"

    events = await list_lifecycle_events(session, node_id="B")
    assert sorted(event.event_type for event in events) == [
        "BROUGHT_ONLINE",
        "DRAIN_STARTED",
        "MAINTENANCE_STARTED",
    ]


async def test_status_preconditions(
    session: AsyncSession,
    cluster: Cluster,
    operator: Actor,
) -> None:
    with pytest.raises(ValidationError):
        await apply_lifecycle_action(session, operator, "B", LifecycleRequest(action="online"))
    with pytest.raises(ValidationError):
        await apply_lifecycle_action(session, operator, "A", LifecycleRequest(action="offline"))

    await apply_lifecycle_action(session, operator, "B", LifecycleRequest(action="offline"))
    with pytest.raises(ValidationError):
        await apply_lifecycle_action(session, operator, "B", LifecycleRequest(action="drain"))
    with pytest.raises(ValidationError):
        await apply_lifecycle_action(session, operator, "B", LifecycleRequest(action="offline"))


@pytest.mark.parametrize(
    "request_body",
    [
        LifecycleRequest(action="set_priority", priority=0),
        LifecycleRequest(action="set_priority", priority=11),
        LifecycleRequest(action="set_priority"),
        LifecycleRequest(action="set_weight", weight=-1),
        LifecycleRequest(action="set_weight", weight=101),
    ],
)
async def test_priority_and_weight_bounds(
    session: AsyncSession,
    cluster: Cluster,
    operator: Actor,
    request_body: LifecycleRequest,
) -> None:
    with pytest.raises(ValidationError):
        await apply_lifecycle_action(session, operator, "B", request_body)


async def test_set_priority_and_weight(
    session: AsyncSession,
    sessionmaker: async_sessionmaker[AsyncSession],
    cluster: Cluster,
    operator: Actor,
) -> None:
    await apply_lifecycle_action(
        session, operator, "B", LifecycleRequest(action="set_priority", priority=9)
    )
    weighted = await apply_lifecycle_action(
        session, operator, "B", LifecycleRequest(action="set_weight", weight=0)
    )
    assert weighted.event.from_status == "100"
    assert weighted.event.to_status == "0"

    async with sessionmaker() as fresh:
        node = await fresh.get(Node, "B")
        entries = list(
            (await fresh.execute(select(AuditLog).where(AuditLog.entity_id == "B"))).scalars()
        )
    assert (node.priority, node.routing_weight) == (9, 0)
    assert sorted(entry.action for entry in entries) == ["PRIORITY_CHANGED", "WEIGHT_CHANGED"]


async def test_decommission_deletes_replica_and_keeps_event(
    session: AsyncSession,
    sessionmaker: async_sessionmaker[AsyncSession],
    cluster: Cluster,
    operator: Actor,
) -> None:
    with pytest.raises(ValidationError):
        await apply_lifecycle_action(
            session, operator, "A", LifecycleRequest(action="decommission")
        )

    result = await apply_lifecycle_action(
        session, operator, "B", LifecycleRequest(action="decommission")
    )
    assert result.node is None
    assert result.event.to_status == "DECOMMISSIONED"

    async with sessionmaker() as fresh:
        assert await fresh.get(Node, "B") is None
        assert await fresh.get(Node, "A") is not None
    events = await list_lifecycle_events(session, cluster_id=cluster.id)
    assert [event.event_type for event in events] == ["DECOMMISSIONED"]


async def test_viewer_cannot_change_lifecycle(
    session: AsyncSession,
    cluster: Cluster,
    viewer: Actor,
) -> None:
    with pytest.raises(PermissionDeniedError):
        await apply_lifecycle_action(session, viewer, "B", LifecycleRequest(action="drain"))
