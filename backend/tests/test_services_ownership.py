from __future__ import annotations

from datetime import timedelta

import pytest
from sqlmodel import Session, select

from restohub.core.errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    InternalError,
    InvalidTransitionError,
    UnauthorizedError,
)
from restohub.models.audit import AuditAction, AuditLog
from restohub.models.base import utcnow
from restohub.models.ownership import OwnershipTransfer, TransferStatus
from restohub.models.store import StoreRole, UserStore
from restohub.services.ownership_transfer import OwnershipTransferService
from restohub.services.tier import TierResource, TierService


class RecordingNotifications:
    def __init__(self) -> None:
        self.sent: list[dict] = []

    def send_ownership_transfer_otp(self, **kwargs) -> bool:
        self.sent.append(kwargs)
        return True


@pytest.fixture()
def notifications() -> RecordingNotifications:
    return RecordingNotifications()


@pytest.fixture()
def transfer_context(db_session: Session, owner_context: dict, make_user, notifications) -> dict:
    new_owner = make_user(email="new.owner@example.com", full_name="New Owner")
    service = OwnershipTransferService(db_session, notifications)
    transfer = service.initiate_transfer(owner_context["owner"].id, owner_context["store"].id, "New.Owner@example.com")
    return {**owner_context, "new_owner": new_owner, "service": service, "transfer": transfer}


def _role(session: Session, user_id, store_id) -> StoreRole | None:
    membership = session.exec(
        select(UserStore).where(UserStore.user_id == user_id, UserStore.store_id == store_id)
    ).first()
    return membership.role if membership else None


def _wrong_code(correct: str) -> str:
    return "000000" if correct != "000000" else "111111"


def test_initiate_generates_six_digit_code_and_sends_it(transfer_context: dict, notifications) -> None:
    transfer = transfer_context["transfer"]

    assert transfer.status == TransferStatus.PENDING_OTP
    assert transfer.new_owner_email == "new.owner@example.com"
    assert len(transfer.otp_code) == 6 and transfer.otp_code.isdigit()
    assert transfer.otp_expires_at - transfer.otp_generated_at == timedelta(minutes=15)
    assert notifications.sent[0]["otp"] == transfer.otp_code
    assert notifications.sent[0]["to"] == "new.owner@example.com"


def test_initiate_audit_never_contains_code(db_session: Session, transfer_context: dict) -> None:
    log = db_session.exec(
        select(AuditLog).where(AuditLog.action == AuditAction.OWNERSHIP_TRANSFER_INITIATED)
    ).one()

    assert set(log.details) == {"newOwnerEmail", "otpExpiresAt"}


def test_second_pending_transfer_conflicts(transfer_context: dict) -> None:
    with pytest.raises(ConflictError):
        transfer_context["service"].initiate_transfer(
            transfer_context["owner"].id, transfer_context["store"].id, "someone@example.com"
        )


def test_initiate_requires_owner(db_session: Session, owner_context: dict, make_user, add_member) -> None:
    admin = make_user()
    add_member(admin, owner_context["store"], StoreRole.ADMIN)

    with pytest.raises(ForbiddenError):
        OwnershipTransferService(db_session).initiate_transfer(admin.id, owner_context["store"].id, "x@example.com")


def test_cannot_transfer_to_self(db_session: Session, owner_context: dict) -> None:
    with pytest.raises(BadRequestError):
        OwnershipTransferService(db_session).initiate_transfer(
            owner_context["owner"].id, owner_context["store"].id, owner_context["owner"].email
        )


def test_correct_code_completes_transfer(db_session: Session, transfer_context: dict) -> None:
    transfer = transfer_context["transfer"]
    store_id = transfer_context["store"].id

    completed = transfer_context["service"].verify_otp(
        transfer_context["new_owner"].id, transfer.id, transfer.otp_code
    )

    assert completed.status == TransferStatus.COMPLETED
    assert completed.new_owner_id == transfer_context["new_owner"].id
    assert completed.completed_at is not None
    assert _role(db_session, transfer_context["new_owner"].id, store_id) == StoreRole.OWNER
    assert _role(db_session, transfer_context["owner"].id, store_id) == StoreRole.ADMIN


def test_existing_member_is_promoted(db_session: Session, transfer_context: dict, add_member) -> None:
    store = transfer_context["store"]
    add_member(transfer_context["new_owner"], store, StoreRole.CASHIER)
    transfer = transfer_context["transfer"]

    transfer_context["service"].verify_otp(transfer_context["new_owner"].id, transfer.id, transfer.otp_code)

    memberships = db_session.exec(
        select(UserStore).where(UserStore.user_id == transfer_context["new_owner"].id)
    ).all()
    assert [membership.role for membership in memberships] == [StoreRole.OWNER]


def test_completion_refreshes_cached_staff_count(db_session: Session, transfer_context: dict, cache) -> None:
    store_id = transfer_context["store"].id
    tiers = TierService(db_session, cache)
    assert tiers.get_usage(store_id).usage[TierResource.STAFF].current == 1

    transfer = transfer_context["transfer"]
    OwnershipTransferService(db_session, cache=cache).verify_otp(
        transfer_context["new_owner"].id, transfer.id, transfer.otp_code
    )

    assert tiers.get_usage(store_id).usage[TierResource.STAFF].current == 2


def test_completion_failure_leaves_roles_untouched(
    db_session: Session, transfer_context: dict, failing_audit
) -> None:
    transfer = transfer_context["transfer"]
    store_id = transfer_context["store"].id
    failing_audit(AuditAction.OWNERSHIP_TRANSFER_COMPLETED)

    with pytest.raises(InternalError):
        transfer_context["service"].verify_otp(transfer_context["new_owner"].id, transfer.id, transfer.otp_code)

    assert db_session.get(OwnershipTransfer, transfer.id).status == TransferStatus.PENDING_OTP
    assert _role(db_session, transfer_context["owner"].id, store_id) == StoreRole.OWNER
    assert _role(db_session, transfer_context["new_owner"].id, store_id) is None

def test_three_wrong_codes_cancel_and_fourth_is_invalid(db_session: Session, transfer_context: dict) -> None:
    service = transfer_context["service"]
    transfer = transfer_context["transfer"]
    correct = transfer.otp_code
    new_owner_id = transfer_context["new_owner"].id

    remaining = []
    for _ in range(3):
        with pytest.raises(UnauthorizedError) as excinfo:
            service.verify_otp(new_owner_id, transfer.id, _wrong_code(correct))
        remaining.append(excinfo.value.extra["attemptsRemaining"])
    assert remaining == [2, 1, 0]

    db_session.refresh(transfer)
    assert transfer.status == TransferStatus.CANCELLED
    assert transfer.otp_attempts == 3

    with pytest.raises(InvalidTransitionError):
        service.verify_otp(new_owner_id, transfer.id, correct)

    assert _role(db_session, transfer_context["owner"].id, transfer_context["store"].id) == StoreRole.OWNER
    assert _role(db_session, new_owner_id, transfer_context["store"].id) is None


def test_expired_code_fails_even_when_correct(db_session: Session, transfer_context: dict) -> None:
    transfer = transfer_context["transfer"]
    transfer.otp_expires_at = utcnow() - timedelta(seconds=1)
    db_session.add(transfer)
    db_session.commit()

    with pytest.raises(UnauthorizedError) as excinfo:
        transfer_context["service"].verify_otp(transfer_context["new_owner"].id, transfer.id, transfer.otp_code)

    assert excinfo.value.detail == "OTP has expired"
    db_session.refresh(transfer)
    assert transfer.status == TransferStatus.EXPIRED
    assert _role(db_session, transfer_context["owner"].id, transfer_context["store"].id) == StoreRole.OWNER


def test_expired_transfer_does_not_block_a_new_one(db_session: Session, transfer_context: dict) -> None:
    transfer = transfer_context["transfer"]
    transfer.otp_expires_at = utcnow() - timedelta(minutes=1)
    db_session.add(transfer)
    db_session.commit()

    fresh = transfer_context["service"].initiate_transfer(
        transfer_context["owner"].id, transfer_context["store"].id, "another@example.com"
    )

    assert fresh.id != transfer.id


def test_code_is_bound_to_invited_account(transfer_context: dict, make_user) -> None:
    stranger = make_user()
    transfer = transfer_context["transfer"]

    with pytest.raises(ForbiddenError):
        transfer_context["service"].verify_otp(stranger.id, transfer.id, transfer.otp_code)


def test_owner_can_cancel_pending_transfer(db_session: Session, transfer_context: dict) -> None:
    service = transfer_context["service"]
    transfer = transfer_context["transfer"]

    cancelled = service.cancel_transfer(transfer_context["owner"].id, transfer.id, "Changed my mind")

    assert cancelled.status == TransferStatus.CANCELLED
    assert cancelled.cancellation_reason == "Changed my mind"
    with pytest.raises(InvalidTransitionError):
        service.cancel_transfer(transfer_context["owner"].id, transfer.id)


def test_only_owner_can_cancel(transfer_context: dict) -> None:
    with pytest.raises(ForbiddenError):
        transfer_context["service"].cancel_transfer(
            transfer_context["new_owner"].id, transfer_context["transfer"].id
        )


def test_get_transfer_visible_to_both_parties(transfer_context: dict, make_user) -> None:
    service = transfer_context["service"]
    transfer_id = transfer_context["transfer"].id

    assert service.get_transfer(transfer_context["owner"].id, transfer_id).id == transfer_id
    assert service.get_transfer(transfer_context["new_owner"].id, transfer_id).id == transfer_id
    with pytest.raises(ForbiddenError):
        service.get_transfer(make_user().id, transfer_id)
