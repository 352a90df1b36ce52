from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from restohub.api.deps import check_store_access, get_current_user, get_db
from restohub.models.audit import AuditAction
from restohub.models.store import StoreRole, User
from restohub.schemas.audit import AuditLogList, AuditLogRead
from restohub.services.audit import AuditService

router = APIRouter(prefix="/stores/{store_id}/audit-logs", tags=["audit"])


@router.get("", response_model=AuditLogList)
def list_audit_logs(
    store_id: UUID,
    action: Optional[AuditAction] = Query(default=None),
    user_id: Optional[UUID] = Query(default=None, alias="userId"),
    start_at: Optional[datetime] = Query(default=None, alias="startAt"),
    end_at: Optional[datetime] = Query(default=None, alias="endAt"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200, alias="pageSize"),
    session: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AuditLogList:
    check_store_access(session, current_user, store_id, (StoreRole.OWNER, StoreRole.ADMIN))
    items, total = AuditService(session).list_store_logs(
        store_id,
        action=action,
        user_id=user_id,
        start_at=start_at,
        end_at=end_at,
        page=page,
        page_size=page_size,
    )
    return AuditLogList(
        items=[AuditLogRead.model_validate(item) for item in items],
        total=total,
        page=page,
        page_size=page_size,
    )
