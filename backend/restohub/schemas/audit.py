from datetime import datetime
from typing import Any, List
from uuid import UUID

from restohub.models.audit import AuditAction
from restohub.schemas.common import APIModel


class AuditLogRead(APIModel):
    id: UUID
    created_at: datetime
    store_id: UUID | None
    user_id: UUID | None
    action: AuditAction
    entity_type: str
    entity_id: str | None
    details: dict[str, Any] | None
    ip_address: str | None
    user_agent: str | None


class AuditLogList(APIModel):
    items: List[AuditLogRead]
    total: int
    page: int
    page_size: int
