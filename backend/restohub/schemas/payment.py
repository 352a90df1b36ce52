from datetime import datetime
from typing import List
from uuid import UUID

from pydantic import Field

from restohub.models.subscription import PaymentRequestStatus, SubscriptionTier
from restohub.schemas.common import APIModel


class PaymentRequestCreate(APIModel):
    store_id: UUID
    tier: SubscriptionTier


class PaymentRequestRead(APIModel):
    id: UUID
    subscription_id: UUID
    store_id: UUID
    reference_number: str
    requested_tier: SubscriptionTier
    requested_duration: int
    amount: float
    currency: str
    payment_proof_path: str | None
    status: PaymentRequestStatus
    requested_by: UUID
    requested_at: datetime
    verified_by: UUID | None
    verified_at: datetime | None
    rejection_reason: str | None
    activated_by: UUID | None
    activated_at: datetime | None
    notes: str | None


class PaymentQueueRead(APIModel):
    requests: List[PaymentRequestRead]
    total: int
    page: int
    limit: int


class PaymentVerifyRequest(APIModel):
    notes: str | None = None


class PaymentRejectRequest(APIModel):
    rejection_reason: str = Field(min_length=10)


class PaymentMetricsRead(APIModel):
    pending_count: int
    verified_count: int
    rejected_count: int
    avg_processing_time: float


class PaymentProofRead(APIModel):
    payment_proof_path: str
