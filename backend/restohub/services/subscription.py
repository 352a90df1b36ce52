from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlmodel import Session, select

from restohub.core.config import settings
from restohub.core.errors import BadRequestError, InvalidTransitionError, NotFoundError
from restohub.core.logging_setup import logger
from restohub.db.session import atomic
from restohub.models.audit import AuditAction
from restohub.models.base import utcnow
from restohub.models.subscription import (
    Subscription,
    SubscriptionStatus,
    SubscriptionTier,
    UserTrialUsage,
)
from restohub.services.audit import AuditEntry, AuditService
from restohub.services.authorization import AuthorizationService
from restohub.services.cache import RedisCache

TIER_ORDER = {
    SubscriptionTier.FREE: 0,
    SubscriptionTier.STANDARD: 1,
    SubscriptionTier.PREMIUM: 2,
}

ACTIVE_STATUSES = {SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIAL}


def calculate_tier_price(tier: SubscriptionTier) -> float:
    prices = {
        SubscriptionTier.FREE: 0,
        SubscriptionTier.STANDARD: settings.price_standard,
        SubscriptionTier.PREMIUM: settings.price_premium,
    }
    return float(prices[tier])


def is_upgrade(current: SubscriptionTier, requested: SubscriptionTier) -> bool:
    return TIER_ORDER[requested] > TIER_ORDER[current]


def generate_reference_number(now: datetime | None = None) -> str:
    year = (now or utcnow()).year
    return f"{settings.reference_prefix}-{year}-{100000 + secrets.randbelow(900000)}"


@dataclass(frozen=True)
class SubscriptionStatusResult:
    is_active: bool
    tier: SubscriptionTier
    status: SubscriptionStatus


class SubscriptionService:
    """Owns a store's billing state and every transition between states.

    Stored ``tier`` is only changed by :meth:`activate_subscription` and
    :meth:`downgrade_to_free_tier`. Suspension changes ``status`` only; the
    effective tier of a suspended store is FREE.
    """

    def __init__(self, session: Session, cache: RedisCache | None = None) -> None:
        self.session = session
        self.cache = cache
        self.authorization = AuthorizationService(session)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def find_subscription(self, store_id: UUID) -> Subscription | None:
        return self.session.exec(select(Subscription).where(Subscription.store_id == store_id)).first()

    def get_store_subscription(self, store_id: UUID) -> Subscription:
        subscription = self.find_subscription(store_id)
        if subscription is None:
            logger.warning("[get_store_subscription] no subscription for store %s", store_id)
            raise NotFoundError(f"No subscription found for store {store_id}")
        return subscription

    def lock_subscription(self, store_id: UUID) -> Subscription:
        """Load the store's subscription with a row lock for the current transaction."""
        subscription = self.session.exec(
            select(Subscription).where(Subscription.store_id == store_id).with_for_update()
        ).first()
        if subscription is None:
            raise NotFoundError(f"No subscription found for store {store_id}")
        return subscription

    def get_tier_for_store(self, store_id: UUID) -> SubscriptionTier:
        subscription = self.find_subscription(store_id)
        if subscription is None:
            logger.warning("[get_tier_for_store] no subscription for store %s, defaulting to FREE", store_id)
            return SubscriptionTier.FREE
        return self.effective_tier(subscription)

    @staticmethod
    def effective_tier(subscription: Subscription) -> SubscriptionTier:
        if subscription.status == SubscriptionStatus.SUSPENDED:
            return SubscriptionTier.FREE
        return subscription.tier

    def check_subscription_status(self, store_id: UUID) -> SubscriptionStatusResult:
        subscription = self.find_subscription(store_id)
        if subscription is None:
            return SubscriptionStatusResult(
                is_active=False,
                tier=SubscriptionTier.FREE,
                status=SubscriptionStatus.EXPIRED,
            )

        is_active = subscription.status in ACTIVE_STATUSES
        period_end = subscription.current_period_end
        if is_active and period_end is not None and utcnow() > period_end:
            logger.info("[check_subscription_status] subscription for store %s expired at %s", store_id, period_end)
            return SubscriptionStatusResult(
                is_active=False,
                tier=subscription.tier,
                status=SubscriptionStatus.EXPIRED,
            )

        return SubscriptionStatusResult(
            is_active=is_active,
            tier=subscription.tier,
            status=subscription.status,
        )

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------
    def ensure_subscription(self, store_id: UUID) -> Subscription:
        """Create the default FREE/TRIAL subscription if the store has none."""
        existing = self.find_subscription(store_id)
        if existing is not None:
            return existing
        subscription = Subscription(
            store_id=store_id,
            tier=SubscriptionTier.FREE,
            status=SubscriptionStatus.TRIAL,
        )
        with atomic(self.session, "Failed to provision subscription"):
            self.session.add(subscription)
        self.session.refresh(subscription)
        logger.info("[ensure_subscription] default subscription created for store %s", store_id)
        return subscription

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def stage_activation(
        self,
        store_id: UUID,
        tier: SubscriptionTier,
        duration_days: int,
        actor_id: UUID | None = None,
        record_audit: bool = True,
    ) -> Subscription:
        """Apply an activation inside the caller's open transaction (no commit).

        Callers that write their own audit entry for the whole operation pass
        ``record_audit=False``.
        """
        if tier == SubscriptionTier.FREE:
            raise BadRequestError("FREE tier is not activated; use a downgrade instead")
        if duration_days <= 0:
            raise BadRequestError("Subscription duration must be positive")

        subscription = self.lock_subscription(store_id)
        start = utcnow()
        end = start + timedelta(days=duration_days)
        previous_tier = subscription.tier

        subscription.tier = tier
        subscription.status = SubscriptionStatus.ACTIVE
        subscription.current_period_start = start
        subscription.current_period_end = end
        subscription.trial_started_at = None
        subscription.trial_ends_at = None
        subscription.cancelled_at = None
        subscription.cancellation_reason = None
        subscription.updated_at = start
        self.session.add(subscription)

        if not record_audit:
            return subscription
        AuditService.create_log_in_transaction(
            self.session,
            AuditEntry(
                action=AuditAction.SUBSCRIPTION_ACTIVATED,
                entity_type="Subscription",
                entity_id=subscription.id,
                store_id=store_id,
                user_id=actor_id,
                details={
                    "tier": tier,
                    "previousTier": previous_tier,
                    "periodStart": start,
                    "periodEnd": end,
                },
            ),
        )
        return subscription

    def activate_subscription(
        self,
        store_id: UUID,
        tier: SubscriptionTier,
        duration_days: int,
        actor_id: UUID | None = None,
    ) -> Subscription:
        logger.info(
            "[activate_subscription] activating %s for store %s, duration %s days",
            tier.value,
            store_id,
            duration_days,
        )
        with atomic(self.session, "Failed to activate subscription"):
            subscription = self.stage_activation(store_id, tier, duration_days, actor_id)
        self.session.refresh(subscription)
        self.invalidate_tier_cache(store_id)
        return subscription

    def stage_downgrade(
        self,
        store_id: UUID,
        reason: str,
        actor_id: UUID | None = None,
        action: AuditAction = AuditAction.TIER_AUTO_DOWNGRADED,
    ) -> Subscription:
        """Downgrade to FREE inside the caller's open transaction (no commit)."""
        subscription = self.lock_subscription(store_id)
        previous_tier = subscription.tier

        subscription.tier = SubscriptionTier.FREE
        subscription.status = SubscriptionStatus.ACTIVE
        subscription.current_period_start = None
        subscription.current_period_end = None
        subscription.trial_started_at = None
        subscription.trial_ends_at = None
        subscription.updated_at = utcnow()
        self.session.add(subscription)

        trial_usages = self.session.exec(
            select(UserTrialUsage).where(
                UserTrialUsage.store_id == store_id,
                UserTrialUsage.is_active.is_(True),
            )
        ).all()
        for usage in trial_usages:
            usage.is_active = False
            self.session.add(usage)

        AuditService.create_log_in_transaction(
            self.session,
            AuditEntry(
                action=action,
                entity_type="Subscription",
                entity_id=subscription.id,
                store_id=store_id,
                user_id=actor_id,
                details={
                    "previousTier": previous_tier,
                    "newTier": SubscriptionTier.FREE,
                    "reason": reason,
                },
            ),
        )
        return subscription

    def downgrade_to_free_tier(
        self,
        store_id: UUID,
        reason: str,
        actor_id: UUID | None = None,
        action: AuditAction = AuditAction.TIER_AUTO_DOWNGRADED,
    ) -> Subscription:
        logger.info("[downgrade_to_free_tier] store %s to FREE, reason: %s", store_id, reason)
        with atomic(self.session, "Failed to downgrade tier"):
            subscription = self.stage_downgrade(store_id, reason, actor_id, action)
        self.session.refresh(subscription)
        self.invalidate_tier_cache(store_id)
        return subscription

    def suspend_subscription(self, admin_id: UUID, store_id: UUID, reason: str) -> Subscription:
        self.authorization.check_platform_admin(admin_id)
        with atomic(self.session, "Failed to suspend store"):
            subscription = self.lock_subscription(store_id)
            if subscription.status == SubscriptionStatus.SUSPENDED:
                raise InvalidTransitionError("Store is already suspended")
            previous_status = subscription.status
            subscription.status = SubscriptionStatus.SUSPENDED
            subscription.updated_at = utcnow()
            self.session.add(subscription)
            AuditService.create_log_in_transaction(
                self.session,
                AuditEntry(
                    action=AuditAction.ADMIN_STORE_SUSPENDED,
                    entity_type="Subscription",
                    entity_id=subscription.id,
                    store_id=store_id,
                    user_id=admin_id,
                    details={"previousStatus": previous_status, "reason": reason},
                ),
            )
        self.session.refresh(subscription)
        logger.warning("[suspend_subscription] store %s suspended by %s", store_id, admin_id)
        self.invalidate_tier_cache(store_id)
        return subscription

    def reactivate_subscription(self, admin_id: UUID, store_id: UUID) -> Subscription:
        self.authorization.check_platform_admin(admin_id)
        with atomic(self.session, "Failed to reactivate store"):
            subscription = self.lock_subscription(store_id)
            if subscription.status != SubscriptionStatus.SUSPENDED:
                raise InvalidTransitionError("Store is not suspended")
            subscription.status = SubscriptionStatus.ACTIVE
            subscription.updated_at = utcnow()
            self.session.add(subscription)
            AuditService.create_log_in_transaction(
                self.session,
                AuditEntry(
                    action=AuditAction.ADMIN_STORE_REACTIVATED,
                    entity_type="Subscription",
                    entity_id=subscription.id,
                    store_id=store_id,
                    user_id=admin_id,
                ),
            )
        self.session.refresh(subscription)
        logger.info("[reactivate_subscription] store %s reactivated by %s", store_id, admin_id)
        self.invalidate_tier_cache(store_id)
        return subscription

    def invalidate_tier_cache(self, store_id: UUID) -> None:
        if self.cache is not None:
            self.cache.invalidate_pattern(f"tier:*:{store_id}")
