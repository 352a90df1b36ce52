from datetime import datetime
from uuid import UUID

from pydantic import Field

from restohub.models.subscription import RefundStatus
from restohub.schemas.common import APIModel


class RefundRequestCreate(APIModel):
    store_id: UUID
    reason: str = Field(min_length=10)


class RefundRequestRead(APIModel):
    id: UUID
    subscription_id: UUID
    store_id: UUID
    transaction_id: UUID
    requested_amount: float
    reason: str
    status: RefundStatus
    requested_by: UUID
    requested_at: datetime
    reviewed_by: UUID | None
    reviewed_at: datetime | None
    rejection_reason: str | None
    processed_by: UUID | None
    processed_at: datetime | None
    refund_method: str | None


class RefundApprove(APIModel):
    notes: str | None = None


class RefundReject(APIModel):
    reason: str = Field(min_length=10)


class RefundProcess(APIModel):
    refund_method: str = Field(min_length=2)
    refund_proof_path: str | None = None
