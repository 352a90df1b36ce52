from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from restohub.api.deps import check_store_access, get_cache, get_current_user, get_db
from restohub.models.store import StoreRole, User
from restohub.schemas.refund import RefundRequestCreate, RefundRequestRead
from restohub.services.cache import RedisCache
from restohub.services.refund import RefundService

router = APIRouter(prefix="/refund-requests", tags=["refund-requests"])


@router.post("", response_model=RefundRequestRead, status_code=status.HTTP_201_CREATED)
def create_refund_request(
    payload: RefundRequestCreate,
    session: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(get_current_user),
) -> RefundRequestRead:
    refund = RefundService(session, cache).create_refund_request(current_user.id, payload.store_id, payload.reason)
    return RefundRequestRead.model_validate(refund)


@router.get("/store/{store_id}", response_model=List[RefundRequestRead])
def list_store_refund_requests(
    store_id: UUID,
    session: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(get_current_user),
) -> List[RefundRequestRead]:
    check_store_access(session, current_user, store_id, (StoreRole.OWNER, StoreRole.ADMIN))
    refunds = RefundService(session, cache).get_store_refund_requests(store_id)
    return [RefundRequestRead.model_validate(item) for item in refunds]
