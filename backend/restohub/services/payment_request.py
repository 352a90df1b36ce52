from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlmodel import Session, select

from restohub.core.config import settings
from restohub.core.errors import BadRequestError, ForbiddenError, InvalidTransitionError, NotFoundError
from restohub.core.logging_setup import logger
from restohub.db.session import atomic
from restohub.models.audit import AuditAction
from restohub.models.base import utcnow
from restohub.models.store import StoreRole
from restohub.models.subscription import (
    PaymentRequest,
    PaymentRequestStatus,
    PaymentTransaction,
    SubscriptionTier,
    TransactionType,
)
from restohub.services.audit import AuditEntry, AuditService
from restohub.services.authorization import AuthorizationService
from restohub.services.cache import RedisCache
from restohub.services.storage import UploadService
from restohub.services.subscription import (
    SubscriptionService,
    calculate_tier_price,
    generate_reference_number,
)

STORE_MANAGERS = (StoreRole.OWNER, StoreRole.ADMIN)


@dataclass
class PaymentQueuePage:
    requests: list[PaymentRequest]
    total: int
    page: int
    limit: int


@dataclass(frozen=True)
class PaymentMetrics:
    pending_count: int
    verified_count: int
    rejected_count: int
    avg_processing_time: float


class PaymentRequestService:
    """Two-party workflow turning a tenant's payment into an activation.

    PENDING_VERIFICATION -> VERIFIED -> ACTIVATED, or
    PENDING_VERIFICATION -> REJECTED. ACTIVATED and REJECTED are terminal.
    """

    def __init__(
        self,
        session: Session,
        cache: RedisCache | None = None,
        upload_service: UploadService | None = None,
    ) -> None:
        self.session = session
        self.cache = cache
        self.authorization = AuthorizationService(session)
        self.subscriptions = SubscriptionService(session, cache)
        self._upload_service = upload_service

    @property
    def upload_service(self) -> UploadService:
        if self._upload_service is None:
            self._upload_service = UploadService()
        return self._upload_service

    def _get_or_404(self, request_id: UUID, *, lock: bool = False) -> PaymentRequest:
        statement = select(PaymentRequest).where(PaymentRequest.id == request_id)
        if lock:
            statement = statement.with_for_update()
        payment_request = self.session.exec(statement).first()
        if payment_request is None:
            raise NotFoundError("Payment request not found")
        return payment_request

    # ------------------------------------------------------------------
    # Tenant side
    # ------------------------------------------------------------------
    def create_payment_request(self, user_id: UUID, store_id: UUID, tier: SubscriptionTier) -> PaymentRequest:
        logger.info("[create_payment_request] store %s requests %s", store_id, tier.value)
        if tier == SubscriptionTier.FREE:
            raise BadRequestError("Cannot create payment request for FREE tier")
        self.authorization.check_store_permission(user_id, store_id, STORE_MANAGERS)
        subscription = self.subscriptions.get_store_subscription(store_id)

        amount = calculate_tier_price(tier)
        payment_request = PaymentRequest(
            subscription_id=subscription.id,
            store_id=store_id,
            reference_number=generate_reference_number(),
            requested_tier=tier,
            requested_duration=settings.subscription_default_duration_days,
            amount=amount,
            currency=settings.currency,
            requested_by=user_id,
        )
        with atomic(self.session, "Failed to create payment request"):
            self.session.add(payment_request)
            AuditService.create_log_in_transaction(
                self.session,
                AuditEntry(
                    action=AuditAction.PAYMENT_REQUEST_CREATED,
                    entity_type="PaymentRequest",
                    entity_id=payment_request.id,
                    store_id=store_id,
                    user_id=user_id,
                    details={
                        "tier": tier,
                        "amount": amount,
                        "referenceNumber": payment_request.reference_number,
                    },
                ),
            )
        self.session.refresh(payment_request)
        logger.info("[create_payment_request] created %s (%s)", payment_request.id, payment_request.reference_number)
        return payment_request

    def upload_payment_proof(
        self,
        user_id: UUID,
        request_id: UUID,
        *,
        data: bytes,
        filename: str | None,
        content_type: str | None,
    ) -> PaymentRequest:
        payment_request = self._get_or_404(request_id)
        if payment_request.requested_by != user_id:
            raise ForbiddenError("Only the requester can upload payment proof")
        if payment_request.status != PaymentRequestStatus.PENDING_VERIFICATION:
            raise InvalidTransitionError("Payment proof can only be uploaded while pending verification")

        result = self.upload_service.upload_image(
            data=data,
            filename=filename,
            content_type=content_type,
            preset="payment-proof",
            scope_id=str(payment_request.store_id),
        )
        previous_path = payment_request.payment_proof_path
        with atomic(self.session, "Failed to record payment proof"):
            payment_request = self._get_or_404(request_id, lock=True)
            payment_request.payment_proof_path = result.base_path
            payment_request.updated_at = utcnow()
            self.session.add(payment_request)
            AuditService.create_log_in_transaction(
                self.session,
                AuditEntry(
                    action=AuditAction.PAYMENT_PROOF_UPLOADED,
                    entity_type="PaymentRequest",
                    entity_id=payment_request.id,
                    store_id=payment_request.store_id,
                    user_id=user_id,
                    details={"path": result.base_path, "size": result.size},
                ),
            )
        self.session.refresh(payment_request)
        if previous_path and previous_path != result.base_path:
            try:
                self.upload_service.delete_file(previous_path)
            except (OSError, BadRequestError) as exc:
                logger.warning("[upload_payment_proof] could not delete old proof %s: %s", previous_path, exc)
        return payment_request

    def get_payment_request(self, user_id: UUID, request_id: UUID) -> PaymentRequest:
        payment_request = self._get_or_404(request_id)
        self.authorization.check_store_permission(user_id, payment_request.store_id, STORE_MANAGERS)
        return payment_request

    def get_store_payment_requests(self, store_id: UUID) -> list[PaymentRequest]:
        return list(
            self.session.exec(
                select(PaymentRequest)
                .where(PaymentRequest.store_id == store_id)
                .order_by(PaymentRequest.requested_at.desc())
            ).all()
        )

    # ------------------------------------------------------------------
    # Platform admin side
    # ------------------------------------------------------------------
    def get_payment_queue(
        self,
        status: Optional[PaymentRequestStatus] = None,
        page: int = 1,
        limit: int | None = None,
    ) -> PaymentQueuePage:
        limit = limit or settings.payment_queue_page_size
        query = select(PaymentRequest)
        if status:
            query = query.where(PaymentRequest.status == status)
        total = self.session.exec(select(func.count()).select_from(query.subquery())).one()
        requests = self.session.exec(
            query.order_by(PaymentRequest.requested_at.asc()).offset((page - 1) * limit).limit(limit)
        ).all()
        return PaymentQueuePage(requests=list(requests), total=total, page=page, limit=limit)

    def get_payment_request_detail(self, request_id: UUID) -> PaymentRequest:
        return self._get_or_404(request_id)

    def get_payment_proof_path(self, request_id: UUID) -> str:
        payment_request = self._get_or_404(request_id)
        if not payment_request.payment_proof_path:
            raise NotFoundError("No payment proof uploaded for this request")
        return payment_request.payment_proof_path

    def verify_payment_request(self, admin_id: UUID, request_id: UUID, notes: str | None = None) -> PaymentRequest:
        """Verify the payment and activate the subscription in one transaction.

        Marks the request VERIFIED, activates the requested tier for the
        snapshotted duration, records the PAYMENT transaction, marks the
        request ACTIVATED and writes the audit entry. Nothing is committed
        unless every step succeeds.
        """
        self.authorization.check_platform_admin(admin_id)
        logger.info("[verify_payment_request] admin %s verifying %s", admin_id, request_id)

        with atomic(self.session, "Failed to verify payment"):
            payment_request = self._get_or_404(request_id, lock=True)
            if payment_request.status != PaymentRequestStatus.PENDING_VERIFICATION:
                raise InvalidTransitionError(
                    f"Payment request is {payment_request.status.value}, expected PENDING_VERIFICATION"
                )

            now = utcnow()
            payment_request.status = PaymentRequestStatus.VERIFIED
            payment_request.verified_by = admin_id
            payment_request.verified_at = now
            payment_request.notes = notes
            self.session.add(payment_request)

            subscription = self.subscriptions.stage_activation(
                payment_request.store_id,
                payment_request.requested_tier,
                payment_request.requested_duration,
                actor_id=admin_id,
                record_audit=False,
            )

            self.session.add(
                PaymentTransaction(
                    subscription_id=subscription.id,
                    store_id=payment_request.store_id,
                    payment_request_id=payment_request.id,
                    transaction_type=TransactionType.PAYMENT,
                    amount=payment_request.amount,
                    currency=payment_request.currency,
                    tier=payment_request.requested_tier,
                    period_start=subscription.current_period_start,
                    period_end=subscription.current_period_end,
                    processed_by=admin_id,
                    processed_at=now,
                )
            )

            payment_request.status = PaymentRequestStatus.ACTIVATED
            payment_request.activated_by = admin_id
            payment_request.activated_at = now
            payment_request.updated_at = now
            self.session.add(payment_request)

            AuditService.create_log_in_transaction(
                self.session,
                AuditEntry(
                    action=AuditAction.PAYMENT_VERIFIED,
                    entity_type="PaymentRequest",
                    entity_id=payment_request.id,
                    store_id=payment_request.store_id,
                    user_id=admin_id,
                    details={
                        "tier": payment_request.requested_tier,
                        "amount": payment_request.amount,
                        "referenceNumber": payment_request.reference_number,
                        "periodStart": subscription.current_period_start,
                        "periodEnd": subscription.current_period_end,
                        "notes": notes,
                    },
                ),
            )

        self.session.refresh(payment_request)
        self.subscriptions.invalidate_tier_cache(payment_request.store_id)
        logger.info("[verify_payment_request] %s verified and subscription activated", request_id)
        return payment_request

    def reject_payment_request(self, admin_id: UUID, request_id: UUID, reason: str) -> PaymentRequest:
        self.authorization.check_platform_admin(admin_id)
        logger.info("[reject_payment_request] admin %s rejecting %s", admin_id, request_id)

        with atomic(self.session, "Failed to reject payment"):
            payment_request = self._get_or_404(request_id, lock=True)
            if payment_request.status != PaymentRequestStatus.PENDING_VERIFICATION:
                raise InvalidTransitionError(
                    f"Payment request is {payment_request.status.value}, expected PENDING_VERIFICATION"
                )
            now = utcnow()
            payment_request.status = PaymentRequestStatus.REJECTED
            payment_request.verified_by = admin_id
            payment_request.verified_at = now
            payment_request.rejection_reason = reason
            payment_request.updated_at = now
            self.session.add(payment_request)
            AuditService.create_log_in_transaction(
                self.session,
                AuditEntry(
                    action=AuditAction.PAYMENT_REJECTED,
                    entity_type="PaymentRequest",
                    entity_id=payment_request.id,
                    store_id=payment_request.store_id,
                    user_id=admin_id,
                    details={"reason": reason, "requestedTier": payment_request.requested_tier},
                ),
            )
        self.session.refresh(payment_request)
        return payment_request

    def get_admin_metrics(self) -> PaymentMetrics:
        def count(*statuses: PaymentRequestStatus) -> int:
            return self.session.exec(
                select(func.count(PaymentRequest.id)).where(PaymentRequest.status.in_(statuses))
            ).one()

        processed = self.session.exec(
            select(PaymentRequest.requested_at, PaymentRequest.verified_at).where(
                PaymentRequest.verified_at.is_not(None)
            )
        ).all()
        avg_hours = 0.0
        if processed:
            total_hours = sum((verified - requested).total_seconds() / 3600 for requested, verified in processed)
            avg_hours = total_hours / len(processed)

        return PaymentMetrics(
            pending_count=count(PaymentRequestStatus.PENDING_VERIFICATION),
            verified_count=count(PaymentRequestStatus.VERIFIED, PaymentRequestStatus.ACTIVATED),
            rejected_count=count(PaymentRequestStatus.REJECTED),
            avg_processing_time=round(avg_hours, 2),
        )
