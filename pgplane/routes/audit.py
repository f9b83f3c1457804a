from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from pgplane.dependencies import get_current_actor, get_db_session
from pgplane.schemas.audit import AuditLogOut
from pgplane.security import ROLE_ADMIN, Actor, ensure_permission
from pgplane.services import audit as audit_service

router = APIRouter(prefix="/audit-logs", tags=["audit"])


@router.get("", response_model=List[AuditLogOut])
async def list_audit_logs(
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    limit: int = 200,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_current_actor),
) -> List[AuditLogOut]:
    ensure_permission(actor, ROLE_ADMIN)
    entries = await audit_service.list_audit_logs(
        session,
        limit=min(max(limit, 1), 1000),
        entity_type=entity_type,
        entity_id=entity_id,
    )
    return [AuditLogOut.model_validate(entry) for entry in entries]
