from uuid import UUID

from fastapi import APIRouter, Depends
from sqlmodel import Session

from restohub.api.deps import check_store_access, get_cache, get_current_user, get_db
from restohub.models.store import StoreRole, User
from restohub.schemas.subscription import SubscriptionRead, SubscriptionStatusRead
from restohub.services.cache import RedisCache
from restohub.services.subscription import SubscriptionService

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])

STORE_MANAGERS = (StoreRole.OWNER, StoreRole.ADMIN)


@router.get("/store/{store_id}", response_model=SubscriptionRead)
def get_store_subscription(
    store_id: UUID,
    session: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(get_current_user),
) -> SubscriptionRead:
    check_store_access(session, current_user, store_id, STORE_MANAGERS)
    subscription = SubscriptionService(session, cache).get_store_subscription(store_id)
    return SubscriptionRead.model_validate(subscription)


@router.get("/store/{store_id}/status", response_model=SubscriptionStatusRead)
def get_subscription_status(
    store_id: UUID,
    session: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(get_current_user),
) -> SubscriptionStatusRead:
    check_store_access(session, current_user, store_id, STORE_MANAGERS)
    result = SubscriptionService(session, cache).check_subscription_status(store_id)
    return SubscriptionStatusRead.model_validate(result)
