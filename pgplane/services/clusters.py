from __future__ import annotations

from typing import Dict, List, Optional
from uuid import uuid4

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pgplane.errors import NotFoundError, ValidationError
from pgplane.logger import get_logger
from pgplane.models.cluster import Cluster
from pgplane.models.node import ROLE_PRIMARY, Node
from pgplane.models.node_lifecycle_event import NodeLifecycleEvent
from pgplane.schemas.clusters import ClusterCreate, ClusterOut, ClusterUpdate
from pgplane.security import ROLE_ADMIN, ROLE_OPERATOR, Actor, ensure_permission
from pgplane.services.audit import (
    ENTITY_CLUSTER,
    ENTITY_NODE,
    record_audit,
    redacted_node_state,
    snapshot,
)
from pgplane.services.nodes import build_node, cluster_locks

_logger = get_logger("services.clusters")


async def _node_counts(session: AsyncSession, cluster_ids: List[str]) -> Dict[str, int]:
    if not cluster_ids:
        return {}
    result = await session.execute(
        select(Node.cluster_id, func.count(Node.id))
        .where(Node.cluster_id.in_(cluster_ids))
        .group_by(Node.cluster_id)
    )
    return {str(cluster_id): int(count) for cluster_id, count in result.all()}


def to_out(cluster: Cluster, node_count: int = 0) -> ClusterOut:
    return ClusterOut.model_validate(cluster).model_copy(update={"node_count": node_count})


async def list_clusters(session: AsyncSession, limit: int = 200) -> List[ClusterOut]:
    result = await session.execute(
        select(Cluster).order_by(Cluster.created_at.desc(), Cluster.name.asc()).limit(limit)
    )
    clusters = list(result.scalars().all())
    counts = await _node_counts(session, [cluster.id for cluster in clusters])
    return [to_out(cluster, counts.get(cluster.id, 0)) for cluster in clusters]


async def get_cluster(session: AsyncSession, cluster_id: str) -> Optional[Cluster]:
    result = await session.execute(select(Cluster).where(Cluster.id == cluster_id))
    return result.scalar_one_or_none()


async def get_cluster_by_name(session: AsyncSession, name: str) -> Optional[Cluster]:
    result = await session.execute(select(Cluster).where(Cluster.name == name))
    return result.scalar_one_or_none()


async def require_cluster(session: AsyncSession, cluster_id: str) -> Cluster:
    cluster = await get_cluster(session, cluster_id)
    if cluster is None:
        raise NotFoundError("Cluster not found")
    return cluster


async def count_nodes(session: AsyncSession, cluster_id: str) -> int:
    return (await _node_counts(session, [cluster_id])).get(cluster_id, 0)


async def create_cluster(
    session: AsyncSession,
    actor: Actor,
    payload: ClusterCreate,
) -> ClusterOut:
    ensure_permission(actor, ROLE_OPERATOR)

    primaries = [entry for entry in payload.nodes if entry.role == ROLE_PRIMARY]
    if len(primaries) > 1:
        raise ValidationError("Initial topology may contain at most one PRIMARY node")

    async with _logger.operation(
        "cluster.create",
        "Creating cluster",
        cluster_name=payload.name,
        topology=payload.topology,
        nodes=len(payload.nodes),
    ) as op:
        if await get_cluster_by_name(session, payload.name) is not None:
            raise ValidationError("Cluster name already exists")

        cluster = Cluster(
            id=str(uuid4()),
            name=payload.name,
            topology=payload.topology,
            replication_mode=payload.replication_mode,
            status="PROVISIONING",
        )
        session.add(cluster)
        # Nodes reference the cluster row, so it must be inserted first.
        await session.flush()
        await session.refresh(cluster)
        await record_audit(
            session,
            user_id=actor.user_id,
            entity_type=ENTITY_CLUSTER,
            entity_id=cluster.id,
            action="CREATE",
            after_state=snapshot(cluster),
        )

        nodes = [
            build_node(
                cluster_id=cluster.id,
                name=entry.name,
                host=entry.host,
                port=entry.port,
                role=entry.role,
                ssl_mode=entry.ssl_mode,
            )
            for entry in payload.nodes
        ]
        session.add_all(nodes)
        await session.flush()
        for node in nodes:
            await session.refresh(node)
            await record_audit(
                session,
                user_id=actor.user_id,
                entity_type=ENTITY_NODE,
                entity_id=node.id,
                action="CREATE",
                after_state=redacted_node_state(snapshot(node)),
            )
        op.step("nodes.stage", "Staged initial topology", nodes=len(payload.nodes))

        await session.commit()
        await session.refresh(cluster)
        op.step("db.commit", "Committed cluster create", cluster_id=cluster.id)
        return to_out(cluster, len(payload.nodes))


async def update_cluster(
    session: AsyncSession,
    actor: Actor,
    cluster_id: str,
    payload: ClusterUpdate,
) -> ClusterOut:
    ensure_permission(actor, ROLE_OPERATOR)
    cluster = await require_cluster(session, cluster_id)
    before_state = snapshot(cluster)

    changes = payload.model_dump(exclude_none=True)
    if "name" in changes and changes["name"] != cluster.name:
        if await get_cluster_by_name(session, changes["name"]) is not None:
            raise ValidationError("Cluster name already exists")
    for key, value in changes.items():
        setattr(cluster, key, value)

    if changes:
        await record_audit(
            session,
            user_id=actor.user_id,
            entity_type=ENTITY_CLUSTER,
            entity_id=cluster.id,
            action="UPDATE",
            before_state=before_state,
            after_state=snapshot(cluster),
        )
    await session.commit()
    await session.refresh(cluster)
    _logger.info("clusters.update", "Updated cluster", cluster_id=cluster.id, fields=len(changes))
    return to_out(cluster, await count_nodes(session, cluster.id))


async def delete_cluster(session: AsyncSession, actor: Actor, cluster_id: str) -> None:
    ensure_permission(actor, ROLE_ADMIN)
    cluster = await require_cluster(session, cluster_id)
    before_state = snapshot(cluster)

    await session.execute(
        delete(NodeLifecycleEvent).where(NodeLifecycleEvent.cluster_id == cluster_id)
    )
    # Nodes go with the cluster through ON DELETE CASCADE.
    await session.delete(cluster)
    await record_audit(
        session,
        user_id=actor.user_id,
        entity_type=ENTITY_CLUSTER,
        entity_id=cluster_id,
        action="DELETE",
        before_state=before_state,
    )
    await session.commit()
    cluster_locks.discard(cluster_id)
    _logger.info("clusters.delete", "Deleted cluster", cluster_id=cluster_id)
