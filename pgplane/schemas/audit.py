from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict


class AuditLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: Optional[str]
    entity_type: str
    entity_id: str
    action: str
    before_state: Optional[Dict[str, Any]]
    after_state: Optional[Dict[str, Any]]
    created_at: datetime
