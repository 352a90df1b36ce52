from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from restohub.api.deps import get_cache, get_db, require_platform_admin
from restohub.models.store import User
from restohub.models.subscription import PaymentRequestStatus
from restohub.schemas.payment import (
    PaymentMetricsRead,
    PaymentProofRead,
    PaymentQueueRead,
    PaymentRejectRequest,
    PaymentRequestRead,
    PaymentVerifyRequest,
)
from restohub.schemas.refund import RefundApprove, RefundProcess, RefundReject, RefundRequestRead
from restohub.schemas.subscription import StoreSuspendRequest, SubscriptionRead
from restohub.services.cache import RedisCache
from restohub.services.payment_request import PaymentRequestService
from restohub.services.refund import RefundService
from restohub.services.subscription import SubscriptionService

router = APIRouter(prefix="/admin", tags=["admin"])


# ===============================================================
# Payment verification queue
# ===============================================================
@router.get("/payment-requests", response_model=PaymentQueueRead)
def get_payment_queue(
    status_filter: Optional[PaymentRequestStatus] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    session: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    _: User = Depends(require_platform_admin),
) -> PaymentQueueRead:
    queue = PaymentRequestService(session, cache).get_payment_queue(status_filter, page, limit)
    return PaymentQueueRead(
        requests=[PaymentRequestRead.model_validate(item) for item in queue.requests],
        total=queue.total,
        page=queue.page,
        limit=queue.limit,
    )


@router.get("/payment-requests/metrics/dashboard", response_model=PaymentMetricsRead)
def get_payment_metrics(
    session: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    _: User = Depends(require_platform_admin),
) -> PaymentMetricsRead:
    metrics = PaymentRequestService(session, cache).get_admin_metrics()
    return PaymentMetricsRead.model_validate(metrics)


@router.get("/payment-requests/{request_id}", response_model=PaymentRequestRead)
def get_payment_request_detail(
    request_id: UUID,
    session: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    _: User = Depends(require_platform_admin),
) -> PaymentRequestRead:
    payment_request = PaymentRequestService(session, cache).get_payment_request_detail(request_id)
    return PaymentRequestRead.model_validate(payment_request)


@router.get("/payment-requests/{request_id}/payment-proof", response_model=PaymentProofRead)
def get_payment_proof(
    request_id: UUID,
    session: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    _: User = Depends(require_platform_admin),
) -> PaymentProofRead:
    path = PaymentRequestService(session, cache).get_payment_proof_path(request_id)
    return PaymentProofRead(payment_proof_path=path)


@router.post("/payment-requests/{request_id}/verify", response_model=PaymentRequestRead)
def verify_payment_request(
    request_id: UUID,
    payload: PaymentVerifyRequest | None = None,
    session: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(require_platform_admin),
) -> PaymentRequestRead:
    notes = payload.notes if payload else None
    payment_request = PaymentRequestService(session, cache).verify_payment_request(current_user.id, request_id, notes)
    return PaymentRequestRead.model_validate(payment_request)


@router.post("/payment-requests/{request_id}/reject", response_model=PaymentRequestRead)
def reject_payment_request(
    request_id: UUID,
    payload: PaymentRejectRequest,
    session: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(require_platform_admin),
) -> PaymentRequestRead:
    payment_request = PaymentRequestService(session, cache).reject_payment_request(
        current_user.id, request_id, payload.rejection_reason
    )
    return PaymentRequestRead.model_validate(payment_request)


# ===============================================================
# Store suspension
# ===============================================================
@router.post("/stores/{store_id}/suspend", response_model=SubscriptionRead)
def suspend_store(
    store_id: UUID,
    payload: StoreSuspendRequest,
    session: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(require_platform_admin),
) -> SubscriptionRead:
    subscription = SubscriptionService(session, cache).suspend_subscription(current_user.id, store_id, payload.reason)
    return SubscriptionRead.model_validate(subscription)


@router.post("/stores/{store_id}/reactivate", response_model=SubscriptionRead)
def reactivate_store(
    store_id: UUID,
    session: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(require_platform_admin),
) -> SubscriptionRead:
    subscription = SubscriptionService(session, cache).reactivate_subscription(current_user.id, store_id)
    return SubscriptionRead.model_validate(subscription)


# ===============================================================
# Refund review
# ===============================================================
@router.post("/refund-requests/{refund_id}/approve", response_model=RefundRequestRead)
def approve_refund(
    refund_id: UUID,
    payload: RefundApprove | None = None,
    session: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(require_platform_admin),
) -> RefundRequestRead:
    refund = RefundService(session, cache).approve_refund(current_user.id, refund_id, payload.notes if payload else None)
    return RefundRequestRead.model_validate(refund)


@router.post("/refund-requests/{refund_id}/reject", response_model=RefundRequestRead)
def reject_refund(
    refund_id: UUID,
    payload: RefundReject,
    session: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(require_platform_admin),
) -> RefundRequestRead:
    refund = RefundService(session, cache).reject_refund(current_user.id, refund_id, payload.reason)
    return RefundRequestRead.model_validate(refund)


@router.post("/refund-requests/{refund_id}/process", response_model=RefundRequestRead)
def process_refund(
    refund_id: UUID,
    payload: RefundProcess,
    session: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(require_platform_admin),
) -> RefundRequestRead:
    refund = RefundService(session, cache).process_refund(
        current_user.id, refund_id, payload.refund_method, payload.refund_proof_path
    )
    return RefundRequestRead.model_validate(refund)
