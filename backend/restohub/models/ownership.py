from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlmodel import Field

from restohub.models.base import TimestampedModel, UUIDModel


class TransferStatus(str, Enum):
    PENDING_OTP = "PENDING_OTP"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class OwnershipTransfer(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "ownership_transfers"

    store_id: UUID = Field(foreign_key="stores.id", index=True)
    current_owner_id: UUID = Field(foreign_key="users.id", index=True)
    new_owner_email: str = Field(index=True)
    new_owner_id: UUID | None = Field(default=None, foreign_key="users.id")
    otp_code: str
    otp_generated_at: datetime
    otp_expires_at: datetime
    otp_verified_at: datetime | None = Field(default=None)
    otp_attempts: int = Field(default=0)
    status: TransferStatus = Field(default=TransferStatus.PENDING_OTP, index=True)
    completed_at: datetime | None = Field(default=None)
    cancelled_at: datetime | None = Field(default=None)
    cancellation_reason: str | None = Field(default=None)
