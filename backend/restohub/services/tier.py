from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import func
from sqlmodel import Session, select

from restohub.core.config import settings
from restohub.core.errors import ForbiddenError, NotFoundError, TransientError
from restohub.core.logging_setup import logger
from restohub.models.base import utcnow
from restohub.models.resources import MenuItem, Order, Table
from restohub.models.store import UserStore
from restohub.models.subscription import Subscription, SubscriptionTier
from restohub.services.cache import RedisCache
from restohub.services.subscription import SubscriptionService

UNLIMITED = math.inf
USAGE_CACHE_TTL_SECONDS = 300


class TierResource(str, Enum):
    TABLES = "tables"
    MENU_ITEMS = "menuItems"
    STAFF = "staff"
    MONTHLY_ORDERS = "monthlyOrders"


class TierFeature(str, Enum):
    KDS = "kds"
    LOYALTY = "loyalty"
    ADVANCED_REPORTS = "advancedReports"


@dataclass(frozen=True)
class TierLimits:
    max_tables: float
    max_menu_items: float
    max_staff: float
    max_monthly_orders: float
    features: dict[TierFeature, bool]

    def limit_for(self, resource: TierResource) -> float:
        return {
            TierResource.TABLES: self.max_tables,
            TierResource.MENU_ITEMS: self.max_menu_items,
            TierResource.STAFF: self.max_staff,
            TierResource.MONTHLY_ORDERS: self.max_monthly_orders,
        }[resource]


TIER_LIMITS: dict[SubscriptionTier, TierLimits] = {
    SubscriptionTier.FREE: TierLimits(
        max_tables=20,
        max_menu_items=50,
        max_staff=10,
        max_monthly_orders=2000,
        features={TierFeature.KDS: False, TierFeature.LOYALTY: False, TierFeature.ADVANCED_REPORTS: False},
    ),
    SubscriptionTier.STANDARD: TierLimits(
        max_tables=UNLIMITED,
        max_menu_items=UNLIMITED,
        max_staff=20,
        max_monthly_orders=20000,
        features={TierFeature.KDS: True, TierFeature.LOYALTY: True, TierFeature.ADVANCED_REPORTS: False},
    ),
    SubscriptionTier.PREMIUM: TierLimits(
        max_tables=UNLIMITED,
        max_menu_items=UNLIMITED,
        max_staff=UNLIMITED,
        max_monthly_orders=UNLIMITED,
        features={TierFeature.KDS: True, TierFeature.LOYALTY: True, TierFeature.ADVANCED_REPORTS: True},
    ),
}


def encode_limit(limit: float) -> int | None:
    return None if math.isinf(limit) else int(limit)


def _decode_limit(raw: Any) -> float:
    return UNLIMITED if raw is None else float(raw)


@dataclass(frozen=True)
class ResourceUsage:
    current: int
    limit: float

    @property
    def usage_percentage(self) -> float:
        if math.isinf(self.limit) or self.limit <= 0:
            return 0.0
        return round(self.current / self.limit * 100, 2)

    def to_dict(self) -> dict[str, Any]:
        return {"current": self.current, "limit": encode_limit(self.limit)}


@dataclass(frozen=True)
class UsageSnapshot:
    tier: SubscriptionTier
    usage: dict[TierResource, ResourceUsage]
    features: dict[TierFeature, bool]

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe shape shared by the cache and the API; unlimited is ``None``."""
        return {
            "tier": self.tier.value,
            "usage": {resource.value: item.to_dict() for resource, item in self.usage.items()},
            "features": {feature.value: enabled for feature, enabled in self.features.items()},
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "UsageSnapshot":
        return cls(
            tier=SubscriptionTier(payload["tier"]),
            usage={
                TierResource(key): ResourceUsage(current=int(item["current"]), limit=_decode_limit(item["limit"]))
                for key, item in payload["usage"].items()
            },
            features={TierFeature(key): bool(value) for key, value in payload["features"].items()},
        )


@dataclass(frozen=True)
class TierLimitCheck:
    allowed: bool
    current_usage: int
    limit: float
    tier: SubscriptionTier
    resource: TierResource
    increment: int = 1

    @property
    def usage_percentage(self) -> float:
        return ResourceUsage(self.current_usage, self.limit).usage_percentage

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource": self.resource.value,
            "allowed": self.allowed,
            "currentUsage": self.current_usage,
            "limit": encode_limit(self.limit),
            "tier": self.tier.value,
            "usagePercentage": self.usage_percentage,
        }


def usage_cache_key(store_id: UUID) -> str:
    return f"tier:usage:{store_id}"


def start_of_month(now: datetime | None = None) -> datetime:
    current = now or utcnow()
    return current.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class TierService:
    """Tier quotas, cached usage snapshots and limit checks for a store.

    Limit checks read then decide: they do not reserve capacity, so
    concurrent creates may briefly push a store over its quota. A cached
    snapshot may be up to ``USAGE_CACHE_TTL_SECONDS`` stale unless a
    resource mutation invalidates it first.
    """

    def __init__(self, session: Session, cache: RedisCache | None = None) -> None:
        self.session = session
        self.cache = cache

    def _get_tier_or_raise(self, store_id: UUID) -> SubscriptionTier:
        subscription = self.session.exec(select(Subscription).where(Subscription.store_id == store_id)).first()
        if subscription is None:
            logger.warning("[get_usage] store tier not found for %s", store_id)
            raise NotFoundError(f"Store tier not found for {store_id}")
        return SubscriptionService.effective_tier(subscription)

    def _count_resources(self, store_id: UUID) -> dict[TierResource, int]:
        tables = (
            select(func.count(Table.id))
            .where(Table.store_id == store_id, Table.deleted_at.is_(None))
            .scalar_subquery()
        )
        menu_items = (
            select(func.count(MenuItem.id))
            .where(MenuItem.store_id == store_id, MenuItem.deleted_at.is_(None))
            .scalar_subquery()
        )
        staff = select(func.count(UserStore.id)).where(UserStore.store_id == store_id).scalar_subquery()
        orders = (
            select(func.count(Order.id))
            .where(Order.store_id == store_id, Order.created_at >= start_of_month())
            .scalar_subquery()
        )
        # One round trip for all four counts
        row = self.session.exec(select(tables, menu_items, staff, orders)).one()
        return {
            TierResource.TABLES: int(row[0] or 0),
            TierResource.MENU_ITEMS: int(row[1] or 0),
            TierResource.STAFF: int(row[2] or 0),
            TierResource.MONTHLY_ORDERS: int(row[3] or 0),
        }

    def get_usage(self, store_id: UUID) -> UsageSnapshot:
        key = usage_cache_key(store_id)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached:
                try:
                    return UsageSnapshot.from_dict(cached)
                except (KeyError, TypeError, ValueError) as exc:
                    logger.warning("[get_usage] discarding malformed cache entry %s: %s", key, exc)

        tier = self._get_tier_or_raise(store_id)
        limits = TIER_LIMITS[tier]
        counts = self._count_resources(store_id)
        snapshot = UsageSnapshot(
            tier=tier,
            usage={resource: ResourceUsage(counts[resource], limits.limit_for(resource)) for resource in TierResource},
            features=dict(limits.features),
        )

        if self.cache is not None:
            self.cache.set(key, snapshot.to_dict(), USAGE_CACHE_TTL_SECONDS)
        logger.info(
            "[get_usage] store %s (%s): %s tables, %s items, %s staff, %s orders this month",
            store_id,
            tier.value,
            counts[TierResource.TABLES],
            counts[TierResource.MENU_ITEMS],
            counts[TierResource.STAFF],
            counts[TierResource.MONTHLY_ORDERS],
        )
        return snapshot

    def check_limit(self, store_id: UUID, resource: TierResource | str, increment: int = 1) -> TierLimitCheck:
        resource = TierResource(resource)
        snapshot = self.get_usage(store_id)
        usage = snapshot.usage[resource]
        allowed = usage.current + increment <= usage.limit
        logger.info(
            "[check_limit] store %s (%s): %s current=%s increment=%s limit=%s allowed=%s",
            store_id,
            snapshot.tier.value,
            resource.value,
            usage.current,
            increment,
            usage.limit,
            allowed,
        )
        return TierLimitCheck(
            allowed=allowed,
            current_usage=usage.current,
            limit=usage.limit,
            tier=snapshot.tier,
            resource=resource,
            increment=increment,
        )

    def has_feature_access(self, store_id: UUID, feature: TierFeature | str) -> bool:
        tier = self._get_tier_or_raise(store_id)
        return TIER_LIMITS[tier].features[TierFeature(feature)]

    def invalidate(self, store_id: UUID) -> None:
        if self.cache is not None and not self.cache.delete(usage_cache_key(store_id)):
            logger.debug("[invalidate] usage cache not cleared for store %s", store_id)

    def track_usage(self, store_id: UUID, resource: TierResource | str, delta: int) -> None:
        """Record a create/delete of a counted resource; the next read recomputes."""
        self.invalidate(store_id)
        logger.debug("[track_usage] store %s %s changed by %+d", store_id, TierResource(resource).value, delta)


class TierLimitGuard:
    """Gate that turns a limit check into a 403 for feature endpoints.

    If evaluating the check itself fails, the guard allows the request
    when ``fail_open`` is set and raises ``TransientError`` otherwise.
    """

    def __init__(self, tier_service: TierService, fail_open: bool | None = None) -> None:
        self.tier_service = tier_service
        self.fail_open = settings.tier_limit_fail_open if fail_open is None else fail_open

    def check(self, store_id: UUID, resource: TierResource | str, increment: int = 1) -> TierLimitCheck | None:
        try:
            result = self.tier_service.check_limit(store_id, resource, increment)
        except Exception as exc:  # noqa: BLE001
            if self.fail_open:
                logger.exception("[tier_guard] limit check failed for store %s, allowing request: %s", store_id, exc)
                return None
            logger.exception("[tier_guard] limit check failed for store %s, denying request: %s", store_id, exc)
            raise TransientError("Unable to verify tier limits, please retry") from exc

        if not result.allowed:
            logger.warning(
                "[tier_guard] store %s exceeded %s limit (%s/%s)",
                store_id,
                result.resource.value,
                result.current_usage,
                result.limit,
            )
            raise ForbiddenError(
                f"Tier limit exceeded for {result.resource.value}. Upgrade your plan to add more.",
                resource=result.resource.value,
                currentUsage=result.current_usage,
                limit=encode_limit(result.limit),
                tier=result.tier.value,
                usagePercentage=result.usage_percentage,
                upgradeRequired=True,
            )

        if result.usage_percentage >= settings.tier_usage_warning_ratio * 100:
            logger.warning(
                "[tier_guard] store %s at %s%% of %s limit",
                store_id,
                result.usage_percentage,
                result.resource.value,
            )
        return result
