from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import func
from sqlmodel import Session, select

from restohub.core.config import settings
from restohub.core.errors import DomainError, InvalidTransitionError
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
from restohub.services.cache import RedisCache
from restohub.services.subscription import SubscriptionService

SECONDS_PER_DAY = 24 * 60 * 60
TRIAL_WARNING_DAYS = 7


@dataclass(frozen=True)
class TrialInfo:
    is_trial_active: bool
    trial_started_at: datetime | None
    trial_ends_at: datetime | None
    days_remaining: int
    can_start_trial: bool


def _days_until(moment: datetime, now: datetime) -> int:
    return max(0, math.ceil((moment - now).total_seconds() / SECONDS_PER_DAY))


def _on_default_plan(subscription: Subscription) -> bool:
    """Only the FREE row a new store starts with may be turned into a trial."""
    return subscription.tier == SubscriptionTier.FREE and subscription.status in (
        SubscriptionStatus.TRIAL,
        SubscriptionStatus.ACTIVE,
    )


class TrialService:
    def __init__(self, session: Session, cache: RedisCache | None = None) -> None:
        self.session = session
        self.subscriptions = SubscriptionService(session, cache)

    def check_trial_eligibility(self, user_id: UUID) -> bool:
        active_trials = self.session.exec(
            select(func.count(UserTrialUsage.id)).where(
                UserTrialUsage.user_id == user_id,
                UserTrialUsage.is_active.is_(True),
            )
        ).one()
        eligible = active_trials < settings.max_trials_per_user
        logger.info(
            "[check_trial_eligibility] user %s has %s/%s active trials, eligible=%s",
            user_id,
            active_trials,
            settings.max_trials_per_user,
            eligible,
        )
        return eligible

    def auto_grant_trial(self, user_id: UUID, store_id: UUID) -> Subscription | None:
        """Start a STANDARD trial for a newly created store.

        Returns None when the user already has the maximum number of active
        trials, the store has used its trial, or the store is already past
        the default FREE plan; the store then keeps (or gets) its current
        subscription.
        """
        if not self.check_trial_eligibility(user_id):
            logger.warning("[auto_grant_trial] user %s reached the trial limit", user_id)
            self.subscriptions.ensure_subscription(store_id)
            return None

        now = utcnow()
        ends_at = now + timedelta(days=settings.trial_duration_days)
        with atomic(self.session, "Failed to grant trial"):
            subscription = self.session.exec(
                select(Subscription).where(Subscription.store_id == store_id).with_for_update()
            ).first()
            if subscription is not None and subscription.is_trial_used:
                logger.warning("[auto_grant_trial] store %s already used its trial", store_id)
                return None
            if subscription is not None and not _on_default_plan(subscription):
                logger.warning(
                    "[auto_grant_trial] store %s is on %s/%s, trial not granted",
                    store_id,
                    subscription.tier.value,
                    subscription.status.value,
                )
                return None
            if subscription is None:
                subscription = Subscription(store_id=store_id)

            subscription.tier = SubscriptionTier.STANDARD
            subscription.status = SubscriptionStatus.TRIAL
            subscription.is_trial_used = True
            subscription.trial_started_at = now
            subscription.trial_ends_at = ends_at
            subscription.current_period_start = now
            subscription.current_period_end = ends_at
            subscription.updated_at = now
            self.session.add(subscription)
            self.session.add(
                UserTrialUsage(
                    user_id=user_id,
                    store_id=store_id,
                    trial_started_at=now,
                    trial_ends_at=ends_at,
                    is_active=True,
                )
            )
            AuditService.create_log_in_transaction(
                self.session,
                AuditEntry(
                    action=AuditAction.TRIAL_STARTED,
                    entity_type="Subscription",
                    entity_id=subscription.id,
                    store_id=store_id,
                    user_id=user_id,
                    details={
                        "tier": SubscriptionTier.STANDARD,
                        "trialEndsAt": ends_at,
                        "durationDays": settings.trial_duration_days,
                    },
                ),
            )
        self.session.refresh(subscription)
        self.subscriptions.invalidate_tier_cache(store_id)
        logger.info("[auto_grant_trial] STANDARD trial granted to store %s until %s", store_id, ends_at)
        return subscription

    def get_trial_days_remaining(self, store_id: UUID) -> int:
        subscription = self.subscriptions.find_subscription(store_id)
        if (
            subscription is None
            or subscription.status != SubscriptionStatus.TRIAL
            or subscription.trial_ends_at is None
        ):
            return 0
        return _days_until(subscription.trial_ends_at, utcnow())

    def get_trial_info(self, store_id: UUID) -> TrialInfo:
        subscription = self.subscriptions.find_subscription(store_id)
        if subscription is None:
            return TrialInfo(
                is_trial_active=False,
                trial_started_at=None,
                trial_ends_at=None,
                days_remaining=0,
                can_start_trial=True,
            )
        now = utcnow()
        is_active = (
            subscription.status == SubscriptionStatus.TRIAL
            and subscription.trial_ends_at is not None
            and now < subscription.trial_ends_at
        )
        return TrialInfo(
            is_trial_active=is_active,
            trial_started_at=subscription.trial_started_at,
            trial_ends_at=subscription.trial_ends_at,
            days_remaining=_days_until(subscription.trial_ends_at, now) if is_active else 0,
            can_start_trial=not subscription.is_trial_used and _on_default_plan(subscription),
        )

    def expire_trial(self, store_id: UUID) -> Subscription:
        subscription = self.subscriptions.get_store_subscription(store_id)
        if subscription.status != SubscriptionStatus.TRIAL:
            raise InvalidTransitionError("Store is not on a trial")
        return self.subscriptions.downgrade_to_free_tier(
            store_id,
            "Trial expired",
            action=AuditAction.TRIAL_EXPIRED,
        )

    def auto_downgrade_expired_trials(self, batch_size: int = 100) -> int:
        """Downgrade every trial past its end date; meant for an external scheduler."""
        now = utcnow()
        store_ids = self.session.exec(
            select(Subscription.store_id)
            .where(
                Subscription.status == SubscriptionStatus.TRIAL,
                Subscription.trial_ends_at.is_not(None),
                Subscription.trial_ends_at < now,
            )
            .limit(batch_size)
        ).all()
        logger.info("[auto_downgrade_expired_trials] %s expired trials found", len(store_ids))

        downgraded = 0
        for store_id in store_ids:
            try:
                self.expire_trial(store_id)
                downgraded += 1
            except DomainError as exc:
                logger.error("[auto_downgrade_expired_trials] failed for store %s: %s", store_id, exc)
        logger.info("[auto_downgrade_expired_trials] downgraded %s/%s trials", downgraded, len(store_ids))
        return downgraded

    def send_trial_warnings(self, batch_size: int = 100) -> int:
        """Record a warning for every trial ending within the next week."""
        now = utcnow()
        expiring = self.session.exec(
            select(Subscription)
            .where(
                Subscription.status == SubscriptionStatus.TRIAL,
                Subscription.trial_ends_at >= now,
                Subscription.trial_ends_at <= now + timedelta(days=TRIAL_WARNING_DAYS),
            )
            .limit(batch_size)
        ).all()

        audit = AuditService(self.session)
        for subscription in expiring:
            audit.create_log(
                AuditEntry(
                    action=AuditAction.TRIAL_WARNING_SENT,
                    entity_type="Subscription",
                    entity_id=subscription.id,
                    store_id=subscription.store_id,
                    details={
                        "trialEndsAt": subscription.trial_ends_at,
                        "daysRemaining": _days_until(subscription.trial_ends_at, now),
                    },
                )
            )
        logger.info("[send_trial_warnings] %s trial warnings logged", len(expiring))
        return len(expiring)
