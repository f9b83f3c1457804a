from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pgplane.config import get_settings
from pgplane.errors import (
    ConnectionTestFailedError,
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
)
from pgplane.logger import get_logger
from pgplane.metrics import record_role_change
from pgplane.models.cluster import Cluster
from pgplane.models.node import ROLE_PRIMARY, ROLE_REPLICA, Node
from pgplane.schemas.nodes import NodeCreate, NodeOut, NodeUpdate, ReconcileResult
from pgplane.security import ROLE_ADMIN, ROLE_OPERATOR, Actor, ensure_permission, hash_password
from pgplane.services.audit import ENTITY_NODE, record_audit, redacted_node_state, snapshot
from pgplane.services.connectivity import (
    INVALID_FORMAT_MESSAGE,
    MISSING_CREDENTIALS_MESSAGE,
    ConnectionProbe,
    probe_connection,
)
from pgplane.services.dsn import build_connection_string, is_masked, parse_connection_string

_logger = get_logger("services.nodes")


class ClusterLocks:
    """Per-cluster locks serializing role changes inside this process."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, cluster_id: str) -> asyncio.Lock:
        lock = self._locks.get(cluster_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[cluster_id] = lock
        return lock

    def discard(self, cluster_id: str) -> None:
        self._locks.pop(cluster_id, None)


cluster_locks = ClusterLocks()


@asynccontextmanager
async def cluster_write_guard(session: AsyncSession, cluster_id: str) -> AsyncIterator[None]:
    """Serialize writes to one cluster's node set.

    The asyncio lock covers concurrent requests in this process; the row lock
    on the cluster covers other processes sharing a PostgreSQL database.
    """
    async with cluster_locks.get(cluster_id):
        await session.execute(
            select(Cluster.id).where(Cluster.id == cluster_id).with_for_update()
        )
        yield


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_out(node: Node) -> NodeOut:
    return NodeOut.model_validate(node)


async def list_nodes(
    session: AsyncSession,
    *,
    cluster_id: Optional[str] = None,
    limit: int = 500,
) -> List[Node]:
    query = select(Node).order_by(Node.role.asc(), Node.created_at.asc(), Node.id.asc())
    if cluster_id:
        query = query.where(Node.cluster_id == cluster_id)
    result = await session.execute(query.limit(limit))
    return list(result.scalars().all())


async def get_node(session: AsyncSession, node_id: str) -> Optional[Node]:
    result = await session.execute(select(Node).where(Node.id == node_id))
    return result.scalar_one_or_none()


async def require_node(session: AsyncSession, node_id: str) -> Node:
    node = await get_node(session, node_id)
    if node is None:
        raise NotFoundError("Node not found")
    return node


async def demote_other_primaries(
    session: AsyncSession,
    *,
    cluster_id: str,
    keep_node_id: str,
) -> List[str]:
    """Flip every other PRIMARY in the cluster to REPLICA; caller holds the write guard."""
    result = await session.execute(
        select(Node.id)
        .where(
            Node.cluster_id == cluster_id,
            Node.role == ROLE_PRIMARY,
            Node.id != keep_node_id,
        )
        .order_by(Node.id)
    )
    demoted = list(result.scalars().all())
    if demoted:
        await session.execute(
            update(Node).where(Node.id.in_(demoted)).values(role=ROLE_REPLICA)
        )
    return demoted


def _connection_fields(
    connection_string: str,
    *,
    db_user: Optional[str],
    db_password: Optional[str],
    ssl_mode: Optional[str],
) -> Dict[str, Any]:
    default_ssl_mode = get_settings().default_ssl_mode
    descriptor = parse_connection_string(connection_string, default_ssl_mode=default_ssl_mode)
    if descriptor is None:
        raise ValidationError(INVALID_FORMAT_MESSAGE)

    user = db_user or descriptor.user
    password = db_password or descriptor.password
    if not user or not password:
        raise ValidationError(MISSING_CREDENTIALS_MESSAGE)

    effective_ssl_mode = ssl_mode or descriptor.ssl_mode
    return {
        "host": descriptor.host,
        "port": descriptor.port,
        "connection_string": build_connection_string(
            descriptor.host,
            descriptor.port,
            descriptor.database,
            user,
            password,
            effective_ssl_mode,
        ),
        "db_user": user,
        "db_password_hash": hash_password(password),
        "ssl_mode": effective_ssl_mode,
        "ssl_enabled": effective_ssl_mode != "disable",
        "connection_verified": False,
        "connection_error": None,
    }


def _rebuilt_connection_fields(node: Node, payload: NodeUpdate) -> Dict[str, Any]:
    """Fields for a credential rotation or SSL change without a new connection string."""
    changes: Dict[str, Any] = {}
    if payload.db_user:
        changes["db_user"] = payload.db_user
    if payload.db_password:
        changes["db_password_hash"] = hash_password(payload.db_password)

    current = None
    if node.connection_string:
        current = parse_connection_string(
            node.connection_string, default_ssl_mode=node.ssl_mode
        )
    if current is None:
        if changes:
            changes["connection_verified"] = False
        return changes

    ssl_mode = payload.ssl_mode or node.ssl_mode or current.ssl_mode
    rebuilt = build_connection_string(
        current.host,
        current.port,
        current.database,
        payload.db_user or node.db_user or current.user,
        payload.db_password or current.password,
        ssl_mode,
    )
    if rebuilt != node.connection_string:
        changes["connection_string"] = rebuilt
        changes["ssl_enabled"] = ssl_mode != "disable"
    if changes:
        changes["connection_verified"] = False
        changes["connection_error"] = None
    return changes


def _plain_field_changes(payload: NodeUpdate) -> Dict[str, Any]:
    changes: Dict[str, Any] = {}
    for key in ("name", "role", "status", "ssl_enabled", "ssl_mode", "replication_enabled"):
        value = getattr(payload, key)
        if value is not None:
            changes[key] = value
    if payload.sync_enabled is not None:
        changes["sync_enabled"] = payload.sync_enabled
        changes["sync_status"] = "PENDING" if payload.sync_enabled else "NOT_CONFIGURED"
    return changes


async def reconcile_node(
    session: AsyncSession,
    actor: Actor,
    node_id: str,
    payload: NodeUpdate,
    *,
    test_connection: bool = True,
    probe: ConnectionProbe = probe_connection,
) -> ReconcileResult:
    ensure_permission(actor, ROLE_OPERATOR)

    async with _logger.operation(
        "node.reconcile",
        "Reconciling node",
        node_id=node_id,
        test_connection=test_connection,
    ) as op:
        node = await require_node(session, node_id)
        changes = _plain_field_changes(payload)

        connection_modified = False
        if payload.connection_string and not is_masked(payload.connection_string):
            changes.update(
                _connection_fields(
                    payload.connection_string,
                    db_user=payload.db_user,
                    db_password=payload.db_password,
                    ssl_mode=payload.ssl_mode,
                )
            )
            connection_modified = True
            op.step("connection.stage", "Staged new connection string", host=changes["host"])
        elif payload.db_user or payload.db_password or payload.ssl_mode:
            rotated = _rebuilt_connection_fields(node, payload)
            connection_modified = "connection_string" in rotated
            changes.update(rotated)
            op.step(
                "credentials.stage",
                "Staged credential rotation",
                connection_rebuilt=connection_modified,
            )

        candidate = changes.get("connection_string") or node.connection_string
        if test_connection and candidate:
            result = await probe(candidate)
            if not result.success and connection_modified:
                op.step_warning(
                    "connection.test",
                    "Rejected update after failed connection test",
                    error=result.error,
                )
                raise ConnectionTestFailedError(result.error or "unknown error")
            changes["connection_verified"] = result.success
            changes["connection_error"] = None if result.success else result.error
            changes["last_connection_test"] = _utcnow()
            if result.success and result.pg_version:
                changes["pg_version"] = result.pg_version
            op.step("connection.test", "Recorded connection test", success=result.success)

        async with cluster_write_guard(session, node.cluster_id):
            await session.refresh(node)
            raw_before = snapshot(node)
            before_state = redacted_node_state(raw_before)

            demoted: List[str] = []
            promoting = changes.get("role") == ROLE_PRIMARY and node.role != ROLE_PRIMARY
            if promoting:
                demoted = await demote_other_primaries(
                    session, cluster_id=node.cluster_id, keep_node_id=node.id
                )
                op.step("role.demote", "Demoted previous primaries", demoted=len(demoted))

            for key, value in changes.items():
                setattr(node, key, value)

            raw_after = snapshot(node)
            after_state = redacted_node_state(raw_after)
            if demoted:
                after_state["demoted_nodes"] = demoted
            if demoted or raw_after != raw_before:
                await record_audit(
                    session,
                    user_id=actor.user_id,
                    entity_type=ENTITY_NODE,
                    entity_id=node.id,
                    action="UPDATE",
                    before_state=before_state,
                    after_state=after_state,
                )
            await session.commit()
        await session.refresh(node)
        op.step("db.commit", "Committed node update", fields=len(changes))

        if promoting:
            record_role_change(promoted=1, demoted=len(demoted))
            _logger.info(
                "nodes.promote",
                "Promoted node to primary",
                node_id=node.id,
                cluster_id=node.cluster_id,
                demoted=",".join(demoted),
            )
        return ReconcileResult(node=to_out(node), demoted_nodes=demoted)


def build_node(
    *,
    cluster_id: str,
    name: str,
    host: str,
    port: int,
    role: str,
    status: str = "OFFLINE",
    ssl_mode: Optional[str] = None,
    replication_enabled: bool = False,
    routing_weight: int = 100,
    priority: int = 5,
) -> Node:
    """New Node with every column set, so audit snapshots are complete before flush."""
    effective_ssl_mode = ssl_mode or get_settings().default_ssl_mode
    return Node(
        id=str(uuid4()),
        name=name,
        cluster_id=cluster_id,
        host=host,
        port=port,
        role=role,
        status=status,
        connection_string=None,
        db_user=None,
        db_password_hash=None,
        ssl_enabled=effective_ssl_mode != "disable",
        ssl_mode=effective_ssl_mode,
        connection_verified=False,
        connection_error=None,
        last_connection_test=None,
        pg_version=None,
        replication_enabled=replication_enabled,
        sync_enabled=False,
        sync_status="NOT_CONFIGURED",
        routing_weight=routing_weight,
        priority=priority,
    )


async def create_node(
    session: AsyncSession,
    actor: Actor,
    payload: NodeCreate,
) -> ReconcileResult:
    ensure_permission(actor, ROLE_OPERATOR)

    async with _logger.operation(
        "node.create",
        "Creating node",
        cluster_id=payload.cluster_id,
        node_name=payload.name,
        role=payload.role,
    ) as op:
        if await session.get(Cluster, payload.cluster_id) is None:
            raise NotFoundError("Cluster not found")

        node = build_node(
            cluster_id=payload.cluster_id,
            name=payload.name,
            host=payload.host,
            port=payload.port,
            role=payload.role,
            status=payload.status,
            ssl_mode=payload.ssl_mode,
            replication_enabled=payload.replication_enabled,
            routing_weight=payload.routing_weight,
            priority=payload.priority,
        )
        if payload.connection_string:
            connection = _connection_fields(
                payload.connection_string,
                db_user=payload.db_user,
                db_password=payload.db_password,
                ssl_mode=payload.ssl_mode,
            )
            for key, value in connection.items():
                setattr(node, key, value)
            op.step("connection.stage", "Staged connection string", host=node.host)
        else:
            if payload.db_user:
                node.db_user = payload.db_user
            if payload.db_password:
                node.db_password_hash = hash_password(payload.db_password)

        async with cluster_write_guard(session, node.cluster_id):
            demoted: List[str] = []
            if node.role == ROLE_PRIMARY:
                demoted = await demote_other_primaries(
                    session, cluster_id=node.cluster_id, keep_node_id=node.id
                )
            session.add(node)
            await session.flush()
            await session.refresh(node)
            after_state = redacted_node_state(snapshot(node))
            if demoted:
                after_state["demoted_nodes"] = demoted
            await record_audit(
                session,
                user_id=actor.user_id,
                entity_type=ENTITY_NODE,
                entity_id=node.id,
                action="CREATE",
                after_state=after_state,
            )
            await session.commit()
        await session.refresh(node)
        op.step("db.commit", "Committed node create", node_id=node.id, demoted=len(demoted))
        return ReconcileResult(node=to_out(node), demoted_nodes=demoted)


async def remove_node(
    session: AsyncSession,
    actor: Actor,
    node_id: str,
    *,
    confirm_primary: bool = False,
) -> None:
    ensure_permission(actor, ROLE_ADMIN)

    async with _logger.operation("node.delete", "Deleting node", node_id=node_id) as op:
        node = await require_node(session, node_id)
        was_primary = node.role == ROLE_PRIMARY
        if was_primary and not confirm_primary:
            raise PreconditionFailedError(
                "Node is the cluster PRIMARY; set confirm_primary to delete it"
            )

        before_state = redacted_node_state(snapshot(node))
        await session.delete(node)
        await record_audit(
            session,
            user_id=actor.user_id,
            entity_type=ENTITY_NODE,
            entity_id=node_id,
            action="DELETE",
            before_state=before_state,
        )
        await session.commit()
        op.step("db.commit", "Committed node delete", was_primary=was_primary)
