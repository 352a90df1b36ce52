from __future__ import annotations

from datetime import datetime, timedelta
from uuid import UUID

from sqlmodel import Session, select

from restohub.core.config import settings
from restohub.core.errors import (
    BadRequestError,
    ConflictError,
    DomainError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
)
from restohub.core.logging_setup import logger
from restohub.db.session import atomic
from restohub.models.audit import AuditAction
from restohub.models.base import utcnow
from restohub.models.ownership import OwnershipTransfer, TransferStatus
from restohub.models.store import Store, StoreRole, User, UserStore
from restohub.services.audit import AuditEntry, AuditService
from restohub.services.authorization import AuthorizationService
from restohub.services.cache import RedisCache
from restohub.services.notification import NotificationService
from restohub.services.tier import TierResource, TierService
from restohub.utils.emails import normalize_email, same_email
from restohub.utils.security import generate_otp, otp_matches

TOO_MANY_ATTEMPTS_REASON = "too many attempts"


class OwnershipTransferService:
    """OTP-gated handoff of store ownership between two accounts.

    PENDING_OTP -> COMPLETED | EXPIRED | CANCELLED; every destination is
    terminal. Expiry and the attempt limit are checked when a code is
    submitted; nothing runs in the background.
    """

    def __init__(
        self,
        session: Session,
        notifications: NotificationService | None = None,
        cache: RedisCache | None = None,
    ) -> None:
        self.session = session
        self.notifications = notifications
        self.tiers = TierService(session, cache)
        self.authorization = AuthorizationService(session)
        self.max_attempts = settings.otp_max_attempts

    def _lock(self, transfer_id: UUID) -> OwnershipTransfer:
        transfer = self.session.exec(
            select(OwnershipTransfer).where(OwnershipTransfer.id == transfer_id).with_for_update()
        ).first()
        if transfer is None:
            raise NotFoundError("Transfer not found")
        return transfer

    def _audit(self, transfer: OwnershipTransfer, action: AuditAction, user_id: UUID, **details) -> None:
        AuditService.create_log_in_transaction(
            self.session,
            AuditEntry(
                action=action,
                entity_type="OwnershipTransfer",
                entity_id=transfer.id,
                store_id=transfer.store_id,
                user_id=user_id,
                details=details,
            ),
        )

    def get_transfer(self, user_id: UUID, transfer_id: UUID) -> OwnershipTransfer:
        transfer = self.session.get(OwnershipTransfer, transfer_id)
        if transfer is None:
            raise NotFoundError("Transfer not found")
        user = self.session.get(User, user_id)
        if transfer.current_owner_id != user_id and not (user and same_email(user.email, transfer.new_owner_email)):
            raise ForbiddenError("You are not a party to this transfer")
        return transfer

    def initiate_transfer(self, current_owner_id: UUID, store_id: UUID, new_owner_email: str) -> OwnershipTransfer:
        self.authorization.check_store_permission(current_owner_id, store_id, [StoreRole.OWNER])
        email = normalize_email(new_owner_email)
        owner = self.session.get(User, current_owner_id)
        if owner is not None and same_email(owner.email, email):
            raise BadRequestError("You already own this store")

        now = utcnow()
        with atomic(self.session, "Failed to initiate ownership transfer"):
            pending = self.session.exec(
                select(OwnershipTransfer)
                .where(
                    OwnershipTransfer.store_id == store_id,
                    OwnershipTransfer.status == TransferStatus.PENDING_OTP,
                    OwnershipTransfer.otp_expires_at >= now,
                )
                .with_for_update()
            ).first()
            if pending is not None:
                raise ConflictError("An ownership transfer is already pending for this store")

            transfer = OwnershipTransfer(
                store_id=store_id,
                current_owner_id=current_owner_id,
                new_owner_email=email,
                otp_code=generate_otp(),
                otp_generated_at=now,
                otp_expires_at=now + timedelta(minutes=settings.otp_expiry_minutes),
                otp_attempts=0,
                status=TransferStatus.PENDING_OTP,
            )
            self.session.add(transfer)
            self._audit(
                transfer,
                AuditAction.OWNERSHIP_TRANSFER_INITIATED,
                current_owner_id,
                newOwnerEmail=email,
                otpExpiresAt=transfer.otp_expires_at,
            )
        self.session.refresh(transfer)
        logger.info("[initiate_transfer] transfer %s created for store %s", transfer.id, store_id)
        self._send_code(transfer)
        return transfer

    def _send_code(self, transfer: OwnershipTransfer) -> None:
        if self.notifications is None:
            logger.warning("[initiate_transfer] no notification service, OTP for transfer %s not sent", transfer.id)
            return
        store = self.session.get(Store, transfer.store_id)
        self.notifications.send_ownership_transfer_otp(
            to=transfer.new_owner_email,
            store_name=store.name if store else str(transfer.store_id),
            otp=transfer.otp_code,
            expires_at=transfer.otp_expires_at,
            max_attempts=self.max_attempts,
        )

    def verify_otp(self, user_id: UUID, transfer_id: UUID, otp: str) -> OwnershipTransfer:
        """Check a submitted code and complete the transfer on a match.

        Failed checks that change state (expiry, a wrong code, exhausted
        attempts) are committed before the error is raised.
        """
        user = self.session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")

        failure: DomainError | None = None
        added_member = False
        with atomic(self.session, "Failed to complete ownership transfer"):
            transfer = self._lock(transfer_id)
            if transfer.status != TransferStatus.PENDING_OTP:
                raise InvalidTransitionError("Transfer is not in pending status")

            now = utcnow()
            if now > transfer.otp_expires_at:
                transfer.status = TransferStatus.EXPIRED
                transfer.updated_at = now
                self.session.add(transfer)
                self._audit(transfer, AuditAction.OWNERSHIP_TRANSFER_EXPIRED, user_id)
                failure = UnauthorizedError("OTP has expired", status=TransferStatus.EXPIRED.value)
            elif transfer.otp_attempts >= self.max_attempts:
                self._cancel(transfer, TOO_MANY_ATTEMPTS_REASON, user_id, now)
                failure = UnauthorizedError("Too many failed attempts. Transfer cancelled.", attemptsRemaining=0)
            elif not same_email(user.email, transfer.new_owner_email):
                raise ForbiddenError("This transfer was not addressed to your account")
            elif not otp_matches(transfer.otp_code, otp):
                transfer.otp_attempts += 1
                transfer.updated_at = now
                remaining = max(self.max_attempts - transfer.otp_attempts, 0)
                if remaining == 0:
                    self._cancel(transfer, TOO_MANY_ATTEMPTS_REASON, user_id, now)
                else:
                    self.session.add(transfer)
                logger.warning("[verify_otp] wrong code for transfer %s, %s attempts remaining", transfer_id, remaining)
                failure = UnauthorizedError(
                    f"Invalid OTP. {remaining} attempts remaining.",
                    attemptsRemaining=remaining,
                )
            else:
                added_member = self._complete(transfer, user, now)

        if failure is not None:
            raise failure
        if added_member:
            self.tiers.track_usage(transfer.store_id, TierResource.STAFF, 1)
        self.session.refresh(transfer)
        logger.info("[verify_otp] ownership of store %s transferred to %s", transfer.store_id, user_id)
        return transfer

    def _complete(self, transfer: OwnershipTransfer, new_owner: User, now: datetime) -> bool:
        """Apply the ownership swap; returns True when a new membership row was added."""
        transfer.status = TransferStatus.COMPLETED
        transfer.new_owner_id = new_owner.id
        transfer.otp_verified_at = now
        transfer.completed_at = now
        transfer.updated_at = now
        self.session.add(transfer)

        previous = self.session.exec(
            select(UserStore)
            .where(
                UserStore.user_id == transfer.current_owner_id,
                UserStore.store_id == transfer.store_id,
                UserStore.role == StoreRole.OWNER,
            )
            .with_for_update()
        ).all()
        for membership in previous:
            membership.role = StoreRole.ADMIN
            membership.updated_at = now
            self.session.add(membership)

        membership = self.session.exec(
            select(UserStore)
            .where(UserStore.user_id == new_owner.id, UserStore.store_id == transfer.store_id)
            .with_for_update()
        ).first()
        added = membership is None
        if added:
            membership = UserStore(user_id=new_owner.id, store_id=transfer.store_id, role=StoreRole.OWNER)
        else:
            membership.role = StoreRole.OWNER
            membership.updated_at = now
        self.session.add(membership)

        self._audit(
            transfer,
            AuditAction.OWNERSHIP_TRANSFER_COMPLETED,
            new_owner.id,
            previousOwnerId=transfer.current_owner_id,
            newOwnerId=new_owner.id,
        )
        return added

    def _cancel(self, transfer: OwnershipTransfer, reason: str, user_id: UUID, now: datetime) -> None:
        transfer.status = TransferStatus.CANCELLED
        transfer.cancelled_at = now
        transfer.cancellation_reason = reason
        transfer.updated_at = now
        self.session.add(transfer)
        self._audit(transfer, AuditAction.OWNERSHIP_TRANSFER_CANCELLED, user_id, reason=reason)

    def cancel_transfer(self, user_id: UUID, transfer_id: UUID, reason: str | None = None) -> OwnershipTransfer:
        with atomic(self.session, "Failed to cancel transfer"):
            transfer = self._lock(transfer_id)
            if transfer.current_owner_id != user_id:
                raise ForbiddenError("Only the current owner can cancel this transfer")
            if transfer.status != TransferStatus.PENDING_OTP:
                raise InvalidTransitionError("Transfer cannot be cancelled")
            self._cancel(transfer, reason or "Cancelled by owner", user_id, utcnow())
        self.session.refresh(transfer)
        logger.info("[cancel_transfer] transfer %s cancelled by %s", transfer_id, user_id)
        return transfer
