from __future__ import annotations

from datetime import timedelta

import pytest
from sqlmodel import Session, select

from restohub.core.errors import InvalidTransitionError
from restohub.models.audit import AuditAction, AuditLog
from restohub.models.base import utcnow
from restohub.models.subscription import Subscription, SubscriptionStatus, SubscriptionTier, UserTrialUsage
from restohub.services.trial import TrialService


def test_auto_grant_trial_starts_standard_trial(db_session: Session, make_store, make_user) -> None:
    user = make_user()
    store = make_store()

    subscription = TrialService(db_session).auto_grant_trial(user.id, store.id)

    assert subscription.tier == SubscriptionTier.STANDARD
    assert subscription.status == SubscriptionStatus.TRIAL
    assert subscription.is_trial_used is True
    assert subscription.trial_ends_at - subscription.trial_started_at == timedelta(days=30)
    usage = db_session.exec(select(UserTrialUsage)).one()
    assert usage.user_id == user.id
    assert usage.is_active is True
    assert db_session.exec(select(AuditLog).where(AuditLog.action == AuditAction.TRIAL_STARTED)).one()


def test_trial_period_matches_trial_window(db_session: Session, make_store, make_user, monkeypatch) -> None:
    store = make_store()
    service = TrialService(db_session)
    subscription = service.auto_grant_trial(make_user().id, store.id)

    assert subscription.current_period_start == subscription.trial_started_at
    assert subscription.current_period_end == subscription.trial_ends_at

    after_trial = subscription.trial_ends_at + timedelta(minutes=1)
    monkeypatch.setattr("restohub.services.subscription.utcnow", lambda: after_trial)
    result = service.subscriptions.check_subscription_status(store.id)

    assert result.status == SubscriptionStatus.EXPIRED
    assert result.is_active is False


def test_paid_store_is_not_turned_into_a_trial(
    db_session: Session, make_store, make_user, make_subscription
) -> None:
    store = make_store()
    make_subscription(store, tier=SubscriptionTier.PREMIUM, period_days=365)
    service = TrialService(db_session)

    assert service.auto_grant_trial(make_user().id, store.id) is None

    subscription = service.subscriptions.get_store_subscription(store.id)
    assert subscription.tier == SubscriptionTier.PREMIUM
    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.current_period_end is not None
    assert db_session.exec(select(UserTrialUsage)).all() == []
    assert service.get_trial_info(store.id).can_start_trial is False

def test_trial_limit_per_user(db_session: Session, make_store, make_user) -> None:
    user = make_user()
    service = TrialService(db_session)
    service.auto_grant_trial(user.id, make_store().id)
    service.auto_grant_trial(user.id, make_store().id)
    assert service.check_trial_eligibility(user.id) is False

    third_store = make_store()
    assert service.auto_grant_trial(user.id, third_store.id) is None

    fallback = db_session.exec(select(Subscription).where(Subscription.store_id == third_store.id)).one()
    assert fallback.tier == SubscriptionTier.FREE


def test_store_trial_is_granted_once(db_session: Session, make_store, make_user) -> None:
    store = make_store()
    service = TrialService(db_session)
    service.auto_grant_trial(make_user().id, store.id)

    assert service.auto_grant_trial(make_user().id, store.id) is None


def test_trial_info_and_days_remaining(db_session: Session, make_store, make_user) -> None:
    store = make_store()
    service = TrialService(db_session)
    before = service.get_trial_info(store.id)
    assert before.can_start_trial is True
    assert before.is_trial_active is False

    service.auto_grant_trial(make_user().id, store.id)
    info = service.get_trial_info(store.id)

    assert info.is_trial_active is True
    assert info.can_start_trial is False
    assert info.days_remaining == 30
    assert service.get_trial_days_remaining(store.id) == 30


def test_expire_trial_downgrades_and_frees_slot(db_session: Session, make_store, make_user) -> None:
    user = make_user()
    store = make_store()
    service = TrialService(db_session)
    service.auto_grant_trial(user.id, store.id)

    subscription = service.expire_trial(store.id)

    assert subscription.tier == SubscriptionTier.FREE
    assert subscription.status == SubscriptionStatus.ACTIVE
    assert db_session.exec(select(UserTrialUsage)).one().is_active is False
    assert db_session.exec(select(AuditLog).where(AuditLog.action == AuditAction.TRIAL_EXPIRED)).one()

    with pytest.raises(InvalidTransitionError):
        service.expire_trial(store.id)


def test_auto_downgrade_only_touches_expired_trials(db_session: Session, make_store, make_user) -> None:
    service = TrialService(db_session)
    expired_store = make_store()
    running_store = make_store()
    service.auto_grant_trial(make_user().id, expired_store.id)
    service.auto_grant_trial(make_user().id, running_store.id)

    expired = db_session.exec(select(Subscription).where(Subscription.store_id == expired_store.id)).one()
    expired.trial_ends_at = utcnow() - timedelta(hours=1)
    db_session.add(expired)
    db_session.commit()

    assert service.auto_downgrade_expired_trials() == 1
    assert service.subscriptions.get_tier_for_store(expired_store.id) == SubscriptionTier.FREE
    assert service.subscriptions.get_tier_for_store(running_store.id) == SubscriptionTier.STANDARD


def test_trial_warnings_are_logged(db_session: Session, make_store, make_user) -> None:
    service = TrialService(db_session)
    store = make_store()
    service.auto_grant_trial(make_user().id, store.id)
    subscription = db_session.exec(select(Subscription).where(Subscription.store_id == store.id)).one()
    subscription.trial_ends_at = utcnow() + timedelta(days=3)
    db_session.add(subscription)
    db_session.commit()

    assert service.send_trial_warnings() == 1
    log = db_session.exec(select(AuditLog).where(AuditLog.action == AuditAction.TRIAL_WARNING_SENT)).one()
    assert log.details["daysRemaining"] == 3
