from __future__ import annotations

from uuid import UUID

from sqlmodel import Session, select

from restohub.core.config import settings
from restohub.core.errors import BadRequestError, ConflictError, InvalidTransitionError, NotFoundError
from restohub.core.logging_setup import logger
from restohub.db.session import atomic
from restohub.models.audit import AuditAction
from restohub.models.base import utcnow
from restohub.models.store import StoreRole
from restohub.models.subscription import (
    PaymentTransaction,
    RefundRequest,
    RefundStatus,
    SubscriptionTier,
    TransactionType,
)
from restohub.services.audit import AuditEntry, AuditService
from restohub.services.authorization import AuthorizationService
from restohub.services.cache import RedisCache
from restohub.services.subscription import SubscriptionService

OPEN_REFUND_STATUSES = (RefundStatus.REQUESTED, RefundStatus.APPROVED, RefundStatus.PROCESSED)


class RefundService:
    """Refund review workflow: REQUESTED -> APPROVED -> PROCESSED, or REQUESTED -> REJECTED."""

    def __init__(self, session: Session, cache: RedisCache | None = None) -> None:
        self.session = session
        self.authorization = AuthorizationService(session)
        self.subscriptions = SubscriptionService(session, cache)

    def _lock(self, refund_id: UUID) -> RefundRequest:
        refund = self.session.exec(
            select(RefundRequest).where(RefundRequest.id == refund_id).with_for_update()
        ).first()
        if refund is None:
            raise NotFoundError("Refund request not found")
        return refund

    def _audit(self, refund: RefundRequest, action: AuditAction, user_id: UUID, **details) -> None:
        AuditService.create_log_in_transaction(
            self.session,
            AuditEntry(
                action=action,
                entity_type="RefundRequest",
                entity_id=refund.id,
                store_id=refund.store_id,
                user_id=user_id,
                details=details,
            ),
        )

    def validate_refund_eligibility(self, subscription_id: UUID, transaction: PaymentTransaction) -> None:
        if transaction.subscription_id != subscription_id:
            raise BadRequestError("Transaction does not belong to this subscription")
        if transaction.transaction_type != TransactionType.PAYMENT:
            raise BadRequestError("Only payment transactions can be refunded")

        existing = self.session.exec(
            select(RefundRequest).where(
                RefundRequest.transaction_id == transaction.id,
                RefundRequest.status.in_(OPEN_REFUND_STATUSES),
            )
        ).first()
        if existing is not None:
            raise ConflictError("A refund request already exists for this transaction")

        days_since_payment = (utcnow() - transaction.processed_at).days
        if days_since_payment > settings.refund_window_days:
            raise BadRequestError(
                f"Refund window expired. Refunds must be requested within {settings.refund_window_days} days of payment."
            )

    def create_refund_request(self, user_id: UUID, store_id: UUID, reason: str) -> RefundRequest:
        self.authorization.check_store_permission(user_id, store_id, [StoreRole.OWNER])
        subscription = self.subscriptions.get_store_subscription(store_id)

        transaction = self.session.exec(
            select(PaymentTransaction)
            .where(
                PaymentTransaction.subscription_id == subscription.id,
                PaymentTransaction.transaction_type == TransactionType.PAYMENT,
            )
            .order_by(PaymentTransaction.processed_at.desc())
        ).first()
        if transaction is None:
            raise BadRequestError("No payment found for this subscription")
        self.validate_refund_eligibility(subscription.id, transaction)

        refund = RefundRequest(
            subscription_id=subscription.id,
            store_id=store_id,
            transaction_id=transaction.id,
            requested_amount=transaction.amount,
            reason=reason,
            requested_by=user_id,
        )
        with atomic(self.session, "Failed to create refund request"):
            self.session.add(refund)
            self._audit(refund, AuditAction.REFUND_REQUESTED, user_id, amount=refund.requested_amount, reason=reason)
        self.session.refresh(refund)
        logger.info("[create_refund_request] refund %s requested for store %s", refund.id, store_id)
        return refund

    def get_store_refund_requests(self, store_id: UUID) -> list[RefundRequest]:
        return list(
            self.session.exec(
                select(RefundRequest)
                .where(RefundRequest.store_id == store_id)
                .order_by(RefundRequest.requested_at.desc())
            ).all()
        )

    def approve_refund(self, admin_id: UUID, refund_id: UUID, notes: str | None = None) -> RefundRequest:
        self.authorization.check_platform_admin(admin_id)
        with atomic(self.session, "Failed to approve refund"):
            refund = self._lock(refund_id)
            if refund.status != RefundStatus.REQUESTED:
                raise InvalidTransitionError("Only requested refunds can be approved")
            now = utcnow()
            refund.status = RefundStatus.APPROVED
            refund.reviewed_by = admin_id
            refund.reviewed_at = now
            refund.updated_at = now
            self.session.add(refund)
            self._audit(refund, AuditAction.REFUND_APPROVED, admin_id, notes=notes)
        self.session.refresh(refund)
        logger.info("[approve_refund] refund %s approved by %s", refund_id, admin_id)
        return refund

    def reject_refund(self, admin_id: UUID, refund_id: UUID, reason: str) -> RefundRequest:
        self.authorization.check_platform_admin(admin_id)
        with atomic(self.session, "Failed to reject refund"):
            refund = self._lock(refund_id)
            if refund.status != RefundStatus.REQUESTED:
                raise InvalidTransitionError("Only requested refunds can be rejected")
            now = utcnow()
            refund.status = RefundStatus.REJECTED
            refund.reviewed_by = admin_id
            refund.reviewed_at = now
            refund.rejection_reason = reason
            refund.updated_at = now
            self.session.add(refund)
            self._audit(refund, AuditAction.REFUND_REJECTED, admin_id, reason=reason)
        self.session.refresh(refund)
        logger.info("[reject_refund] refund %s rejected by %s", refund_id, admin_id)
        return refund

    def process_refund(
        self,
        admin_id: UUID,
        refund_id: UUID,
        refund_method: str,
        refund_proof_path: str | None = None,
    ) -> RefundRequest:
        """Pay out an approved refund and downgrade the store in one transaction."""
        self.authorization.check_platform_admin(admin_id)
        with atomic(self.session, "Failed to process refund"):
            refund = self._lock(refund_id)
            if refund.status != RefundStatus.APPROVED:
                raise InvalidTransitionError("Refund must be approved before processing")
            now = utcnow()
            refund.status = RefundStatus.PROCESSED
            refund.processed_by = admin_id
            refund.processed_at = now
            refund.refund_method = refund_method
            refund.refund_proof_path = refund_proof_path
            refund.updated_at = now
            self.session.add(refund)

            original = self.session.get(PaymentTransaction, refund.transaction_id)
            self.session.add(
                PaymentTransaction(
                    subscription_id=refund.subscription_id,
                    store_id=refund.store_id,
                    payment_request_id=original.payment_request_id if original else None,
                    transaction_type=TransactionType.REFUND,
                    amount=-refund.requested_amount,
                    currency=original.currency if original else settings.currency,
                    tier=SubscriptionTier.FREE,
                    period_start=now,
                    period_end=now,
                    processed_by=admin_id,
                    processed_at=now,
                )
            )

            self.subscriptions.stage_downgrade(refund.store_id, f"Refund {refund.id} processed", admin_id)
            self._audit(
                refund,
                AuditAction.REFUND_PROCESSED,
                admin_id,
                amount=refund.requested_amount,
                refundMethod=refund_method,
                downgradedToFree=True,
            )
        self.session.refresh(refund)
        self.subscriptions.invalidate_tier_cache(refund.store_id)
        logger.info("[process_refund] refund %s processed via %s", refund_id, refund_method)
        return refund
