from datetime import datetime
from uuid import UUID

from pydantic import EmailStr, Field

from restohub.models.ownership import TransferStatus
from restohub.schemas.common import APIModel


class TransferInitiate(APIModel):
    store_id: UUID
    new_owner_email: EmailStr


class TransferInitiated(APIModel):
    transfer_id: UUID
    otp_expires_at: datetime


class TransferVerify(APIModel):
    otp: str = Field(min_length=6, max_length=6, pattern=r"^\d{6}$")


class TransferCancel(APIModel):
    reason: str | None = None


class TransferRead(APIModel):
    id: UUID
    store_id: UUID
    current_owner_id: UUID
    new_owner_email: str
    new_owner_id: UUID | None
    otp_expires_at: datetime
    otp_attempts: int
    status: TransferStatus
    completed_at: datetime | None
    cancelled_at: datetime | None
    cancellation_reason: str | None
