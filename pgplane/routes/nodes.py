from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from pgplane.dependencies import get_connection_probe, get_current_actor, get_db_session
from pgplane.schemas.nodes import (
    ConnectionTestOut,
    ConnectionTestRequest,
    LifecycleEventOut,
    LifecycleOut,
    LifecycleRequest,
    NodeCreate,
    NodeOut,
    NodeUpdate,
    ReconcileResult,
)
from pgplane.security import ROLE_VIEWER, Actor, ensure_permission
from pgplane.services import lifecycle as lifecycle_service
from pgplane.services import nodes as node_service
from pgplane.services.connectivity import ConnectionProbe, verify_connection_string

router = APIRouter(prefix="/nodes", tags=["nodes"])


@router.get("", response_model=List[NodeOut])
async def list_nodes(
    cluster_id: Optional[str] = None,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_current_actor),
) -> List[NodeOut]:
    ensure_permission(actor, ROLE_VIEWER)
    nodes = await node_service.list_nodes(session, cluster_id=cluster_id)
    return [node_service.to_out(node) for node in nodes]


@router.post("", response_model=ReconcileResult, status_code=status.HTTP_201_CREATED)
async def create_node(
    payload: NodeCreate,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_current_actor),
) -> ReconcileResult:
    return await node_service.create_node(session, actor, payload)


@router.post("/test-connection", response_model=ConnectionTestOut)
async def check_connection(
    payload: ConnectionTestRequest,
    actor: Actor = Depends(get_current_actor),
    probe: ConnectionProbe = Depends(get_connection_probe),
) -> ConnectionTestOut:
    result = await verify_connection_string(
        actor, payload.connection_string, payload.ssl_mode, probe=probe
    )
    return ConnectionTestOut(**result.as_dict())


@router.get("/{node_id}", response_model=NodeOut)
async def get_node(
    node_id: str,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_current_actor),
) -> NodeOut:
    ensure_permission(actor, ROLE_VIEWER)
    node = await node_service.require_node(session, node_id)
    return node_service.to_out(node)


@router.patch("/{node_id}", response_model=ReconcileResult)
async def update_node(
    node_id: str,
    payload: NodeUpdate,
    test_connection: bool = True,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_current_actor),
    probe: ConnectionProbe = Depends(get_connection_probe),
) -> ReconcileResult:
    return await node_service.reconcile_node(
        session,
        actor,
        node_id,
        payload,
        test_connection=test_connection,
        probe=probe,
    )


@router.delete("/{node_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_node(
    node_id: str,
    confirm_primary: bool = False,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_current_actor),
) -> Response:
    await node_service.remove_node(session, actor, node_id, confirm_primary=confirm_primary)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{node_id}/lifecycle", response_model=LifecycleOut)
async def apply_lifecycle_action(
    node_id: str,
    payload: LifecycleRequest,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_current_actor),
) -> LifecycleOut:
    return await lifecycle_service.apply_lifecycle_action(session, actor, node_id, payload)


@router.get("/{node_id}/lifecycle", response_model=List[LifecycleEventOut])
async def list_lifecycle_events(
    node_id: str,
    limit: int = 100,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_current_actor),
) -> List[LifecycleEventOut]:
    ensure_permission(actor, ROLE_VIEWER)
    events = await lifecycle_service.list_lifecycle_events(
        session, node_id=node_id, limit=min(max(limit, 1), 500)
    )
    return [LifecycleEventOut.model_validate(event) for event in events]
