from __future__ import annotations

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlmodel import Session

from restohub.core.errors import ForbiddenError, NotFoundError, TransientError
from restohub.models.base import utcnow
from restohub.models.resources import MenuItem, Order, Table
from restohub.models.subscription import SubscriptionStatus, SubscriptionTier
from restohub.services.cache import RedisCache
from restohub.services.tier import (
    TIER_LIMITS,
    UNLIMITED,
    TierFeature,
    TierLimitGuard,
    TierResource,
    TierService,
    start_of_month,
    usage_cache_key,
)


def _add_tables(session: Session, store_id, count: int) -> None:
    session.add_all([Table(store_id=store_id, name=f"T{index}") for index in range(count)])
    session.commit()


def test_free_store_at_table_limit_is_denied(db_session: Session, owner_context: dict, cache: RedisCache) -> None:
    store = owner_context["store"]
    _add_tables(db_session, store.id, 20)

    result = TierService(db_session, cache).check_limit(store.id, "tables", 1)

    assert result.allowed is False
    assert result.current_usage == 20
    assert result.limit == 20
    assert result.tier == SubscriptionTier.FREE


def test_below_limit_is_allowed(db_session: Session, owner_context: dict) -> None:
    store = owner_context["store"]
    _add_tables(db_session, store.id, 19)

    result = TierService(db_session).check_limit(store.id, TierResource.TABLES, 1)

    assert result.allowed is True
    assert result.usage_percentage == 95.0


def test_unlimited_never_blocks(db_session: Session, make_store, make_subscription) -> None:
    store = make_store()
    make_subscription(store, tier=SubscriptionTier.PREMIUM, period_days=30)
    _add_tables(db_session, store.id, 500)

    service = TierService(db_session)
    for resource in TierResource:
        result = service.check_limit(store.id, resource, 10_000)
        assert result.allowed is True
        assert result.limit == UNLIMITED
        assert result.to_dict()["limit"] is None


def test_soft_deleted_tables_and_old_orders_are_not_counted(
    db_session: Session, owner_context: dict
) -> None:
    store = owner_context["store"]
    db_session.add_all(
        [
            Table(store_id=store.id, name="live"),
            Table(store_id=store.id, name="gone", deleted_at=utcnow()),
            MenuItem(store_id=store.id, name="Soup"),
            Order(store_id=store.id),
            Order(store_id=store.id, created_at=start_of_month() - timedelta(days=1)),
        ]
    )
    db_session.commit()

    snapshot = TierService(db_session).get_usage(store.id)

    assert snapshot.usage[TierResource.TABLES].current == 1
    assert snapshot.usage[TierResource.MENU_ITEMS].current == 1
    assert snapshot.usage[TierResource.MONTHLY_ORDERS].current == 1
    # the owner membership is the only staff member
    assert snapshot.usage[TierResource.STAFF].current == 1


def test_usage_snapshot_shape(db_session: Session, owner_context: dict) -> None:
    payload = TierService(db_session).get_usage(owner_context["store"].id).to_dict()

    assert payload["tier"] == "FREE"
    assert set(payload["usage"]) == {"tables", "menuItems", "staff", "monthlyOrders"}
    assert payload["usage"]["tables"] == {"current": 0, "limit": 20}
    assert payload["features"] == {"kds": False, "loyalty": False, "advancedReports": False}


def test_usage_is_cached_and_served_from_cache(
    db_session: Session, owner_context: dict, cache: RedisCache, fake_redis
) -> None:
    store = owner_context["store"]
    service = TierService(db_session, cache)

    first = service.get_usage(store.id)
    assert fake_redis.ttls[usage_cache_key(store.id)] == 300

    _add_tables(db_session, store.id, 3)
    cached = service.get_usage(store.id)
    assert cached.usage[TierResource.TABLES].current == first.usage[TierResource.TABLES].current == 0

    service.track_usage(store.id, TierResource.TABLES, 3)
    fresh = service.get_usage(store.id)
    assert fresh.usage[TierResource.TABLES].current == 3


def test_cache_outage_matches_live_counts(
    db_session: Session, owner_context: dict, cache: RedisCache, fake_redis
) -> None:
    store = owner_context["store"]
    _add_tables(db_session, store.id, 4)
    expected = TierService(db_session, cache).get_usage(store.id)

    fake_redis.healthy = False
    degraded = TierService(db_session, cache).get_usage(store.id)

    assert degraded == expected


def test_missing_subscription_is_not_found(db_session: Session, make_store) -> None:
    store = make_store()

    with pytest.raises(NotFoundError):
        TierService(db_session).get_usage(store.id)


def test_suspended_store_gets_free_limits(db_session: Session, make_store, make_subscription) -> None:
    store = make_store()
    make_subscription(store, tier=SubscriptionTier.PREMIUM, status=SubscriptionStatus.SUSPENDED)

    snapshot = TierService(db_session).get_usage(store.id)

    assert snapshot.tier == SubscriptionTier.FREE
    assert snapshot.usage[TierResource.TABLES].limit == 20


def test_feature_access_follows_tier(db_session: Session, make_store, make_subscription) -> None:
    store = make_store()
    make_subscription(store, tier=SubscriptionTier.STANDARD)
    service = TierService(db_session)

    assert service.has_feature_access(store.id, TierFeature.KDS) is True
    assert service.has_feature_access(store.id, "advancedReports") is False


def test_tier_table_matches_published_limits() -> None:
    assert TIER_LIMITS[SubscriptionTier.FREE].max_staff == 10
    assert TIER_LIMITS[SubscriptionTier.STANDARD].max_monthly_orders == 20000
    assert TIER_LIMITS[SubscriptionTier.PREMIUM].max_staff == UNLIMITED


class ExplodingTierService:
    def check_limit(self, store_id, resource, increment=1):
        raise RuntimeError("database unreachable")


def test_guard_raises_forbidden_with_details(db_session: Session, owner_context: dict) -> None:
    store = owner_context["store"]
    _add_tables(db_session, store.id, 20)
    guard = TierLimitGuard(TierService(db_session))

    with pytest.raises(ForbiddenError) as excinfo:
        guard.check(store.id, TierResource.TABLES)

    extra = excinfo.value.extra
    assert extra["resource"] == "tables"
    assert extra["currentUsage"] == 20
    assert extra["limit"] == 20
    assert extra["tier"] == "FREE"
    assert extra["upgradeRequired"] is True


def test_guard_returns_check_when_allowed(db_session: Session, owner_context: dict) -> None:
    result = TierLimitGuard(TierService(db_session)).check(owner_context["store"].id, TierResource.MENU_ITEMS)

    assert result is not None
    assert result.allowed is True


def test_guard_fails_open_on_internal_error() -> None:
    guard = TierLimitGuard(ExplodingTierService(), fail_open=True)

    assert guard.check(uuid4(), TierResource.TABLES) is None


def test_guard_fails_closed_when_configured() -> None:
    guard = TierLimitGuard(ExplodingTierService(), fail_open=False)

    with pytest.raises(TransientError):
        guard.check(uuid4(), TierResource.TABLES)
