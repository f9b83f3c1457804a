"""Deleting nodes: role checks and the confirmation required for a primary."""

from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pgplane.errors import NotFoundError, PermissionDeniedError, PreconditionFailedError
from pgplane.models import AuditLog, Cluster, Node
from pgplane.security import Actor
from pgplane.services.audit import REDACTED
from pgplane.services.nodes import remove_node


async def _exists(sessionmaker: async_sessionmaker[AsyncSession], node_id: str) -> bool:
    async with sessionmaker() as fresh:
        return await fresh.get(Node, node_id) is not None


async def test_replica_is_deleted_and_audited(
    session: AsyncSession,
    sessionmaker: async_sessionmaker[AsyncSession],
    cluster: Cluster,
    admin: Actor,
) -> None:
    await remove_node(session, admin, "B")

    assert not await _exists(sessionmaker, "B")
    async with sessionmaker() as fresh:
        entries = list(
            (await fresh.execute(select(AuditLog).where(AuditLog.entity_id == "B"))).scalars()
        )
    assert [entry.action for entry in entries] == ["DELETE"]
    assert entries[0].before_state["role"] == "REPLICA"
    assert entries[0].before_state["connection_string"] == REDACTED
    assert entries[0].after_state is None


async def test_primary_requires_confirmation(
    session: AsyncSession,
    sessionmaker: async_sessionmaker[AsyncSession],
    cluster: Cluster,
    admin: Actor,
) -> None:
    with pytest.raises(PreconditionFailedError) as excinfo:
        await remove_node(session, admin, "A")
    assert excinfo.value.status_code == 412
    assert await _exists(sessionmaker, "A")

    await remove_node(session, admin, "A", confirm_primary=True)
    assert not await _exists(sessionmaker, "A")


async def test_operator_cannot_delete(
    session: AsyncSession,
    sessionmaker: async_sessionmaker[AsyncSession],
    cluster: Cluster,
    operator: Actor,
) -> None:
    with pytest.raises(PermissionDeniedError):
        await remove_node(session, operator, "B", confirm_primary=True)
    assert await _exists(sessionmaker, "B")


async def test_missing_node_is_not_found(
    session: AsyncSession,
    cluster: Cluster,
    admin: Actor,
) -> None:
    with pytest.raises(NotFoundError):
        await remove_node(session, admin, "missing")
