from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from restohub.api.deps import check_store_access, get_cache, get_current_user, get_db
from restohub.models.store import StoreRole, User
from restohub.schemas.tier import FeatureFlags, StoreUsageRead, TierLimitCheckRead, TierLimitsRead
from restohub.services.cache import RedisCache
from restohub.services.tier import TIER_LIMITS, TierResource, TierService, encode_limit

router = APIRouter(prefix="/stores/{store_id}/tiers", tags=["tiers"])

STORE_MEMBERS = tuple(role for role in StoreRole if role != StoreRole.PLATFORM_ADMIN)


@router.get("", response_model=TierLimitsRead)
def get_store_tier(
    store_id: UUID,
    session: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(get_current_user),
) -> TierLimitsRead:
    check_store_access(session, current_user, store_id, STORE_MEMBERS)
    snapshot = TierService(session, cache).get_usage(store_id)
    limits = TIER_LIMITS[snapshot.tier]
    return TierLimitsRead(
        tier=snapshot.tier,
        max_tables=encode_limit(limits.max_tables),
        max_menu_items=encode_limit(limits.max_menu_items),
        max_staff=encode_limit(limits.max_staff),
        max_monthly_orders=encode_limit(limits.max_monthly_orders),
        features=FeatureFlags.model_validate(snapshot.to_dict()["features"]),
    )


@router.get("/usage", response_model=StoreUsageRead)
def get_store_usage(
    store_id: UUID,
    session: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(get_current_user),
) -> StoreUsageRead:
    check_store_access(session, current_user, store_id, STORE_MEMBERS)
    snapshot = TierService(session, cache).get_usage(store_id)
    return StoreUsageRead.model_validate(snapshot.to_dict())


@router.get("/check", response_model=TierLimitCheckRead)
def check_tier_limit(
    store_id: UUID,
    resource: TierResource = Query(...),
    increment: int = Query(default=1, ge=1),
    session: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(get_current_user),
) -> TierLimitCheckRead:
    check_store_access(session, current_user, store_id, STORE_MEMBERS)
    result = TierService(session, cache).check_limit(store_id, resource, increment)
    return TierLimitCheckRead.model_validate(result.to_dict())
