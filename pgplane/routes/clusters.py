from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from pgplane.dependencies import get_current_actor, get_db_session
from pgplane.schemas.clusters import ClusterCreate, ClusterDetailOut, ClusterOut, ClusterUpdate
from pgplane.schemas.nodes import NodeOut
from pgplane.security import ROLE_VIEWER, Actor, ensure_permission
from pgplane.services import clusters as cluster_service
from pgplane.services import nodes as node_service

router = APIRouter(prefix="/clusters", tags=["clusters"])


@router.get("", response_model=List[ClusterOut])
async def list_clusters(
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_current_actor),
) -> List[ClusterOut]:
    ensure_permission(actor, ROLE_VIEWER)
    return await cluster_service.list_clusters(session)


@router.post("", response_model=ClusterOut, status_code=status.HTTP_201_CREATED)
async def create_cluster(
    payload: ClusterCreate,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_current_actor),
) -> ClusterOut:
    return await cluster_service.create_cluster(session, actor, payload)


@router.get("/{cluster_id}", response_model=ClusterDetailOut)
async def get_cluster(
    cluster_id: str,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_current_actor),
) -> ClusterDetailOut:
    ensure_permission(actor, ROLE_VIEWER)
    cluster = await cluster_service.require_cluster(session, cluster_id)
    nodes = await node_service.list_nodes(session, cluster_id=cluster_id)
    summary = cluster_service.to_out(cluster, len(nodes))
    return ClusterDetailOut(
        **summary.model_dump(),
        nodes=[node_service.to_out(node) for node in nodes],
    )


@router.patch("/{cluster_id}", response_model=ClusterOut)
async def update_cluster(
    cluster_id: str,
    payload: ClusterUpdate,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_current_actor),
) -> ClusterOut:
    return await cluster_service.update_cluster(session, actor, cluster_id, payload)


@router.delete("/{cluster_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_cluster(
    cluster_id: str,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_current_actor),
) -> Response:
    await cluster_service.delete_cluster(session, actor, cluster_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{cluster_id}/nodes", response_model=List[NodeOut])
async def list_cluster_nodes(
    cluster_id: str,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_current_actor),
) -> List[NodeOut]:
    ensure_permission(actor, ROLE_VIEWER)
    await cluster_service.require_cluster(session, cluster_id)
    nodes = await node_service.list_nodes(session, cluster_id=cluster_id)
    return [node_service.to_out(node) for node in nodes]
