from __future__ import annotations

from enum import Enum
from uuid import UUID

from sqlalchemy import JSON
from sqlmodel import Field

from restohub.models.base import TimestampedModel, UUIDModel


class AuditAction(str, Enum):
    PAYMENT_REQUEST_CREATED = "PAYMENT_REQUEST_CREATED"
    PAYMENT_PROOF_UPLOADED = "PAYMENT_PROOF_UPLOADED"
    PAYMENT_VERIFIED = "PAYMENT_VERIFIED"
    PAYMENT_REJECTED = "PAYMENT_REJECTED"
    SUBSCRIPTION_ACTIVATED = "SUBSCRIPTION_ACTIVATED"
    TIER_AUTO_DOWNGRADED = "TIER_AUTO_DOWNGRADED"
    TRIAL_STARTED = "TRIAL_STARTED"
    TRIAL_EXPIRED = "TRIAL_EXPIRED"
    TRIAL_WARNING_SENT = "TRIAL_WARNING_SENT"
    REFUND_REQUESTED = "REFUND_REQUESTED"
    REFUND_APPROVED = "REFUND_APPROVED"
    REFUND_REJECTED = "REFUND_REJECTED"
    REFUND_PROCESSED = "REFUND_PROCESSED"
    OWNERSHIP_TRANSFER_INITIATED = "OWNERSHIP_TRANSFER_INITIATED"
    OWNERSHIP_TRANSFER_COMPLETED = "OWNERSHIP_TRANSFER_COMPLETED"
    OWNERSHIP_TRANSFER_CANCELLED = "OWNERSHIP_TRANSFER_CANCELLED"
    OWNERSHIP_TRANSFER_EXPIRED = "OWNERSHIP_TRANSFER_EXPIRED"
    ADMIN_STORE_SUSPENDED = "ADMIN_STORE_SUSPENDED"
    ADMIN_STORE_REACTIVATED = "ADMIN_STORE_REACTIVATED"


class AuditLog(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "audit_logs"

    store_id: UUID | None = Field(default=None, foreign_key="stores.id", index=True)
    user_id: UUID | None = Field(default=None, foreign_key="users.id", index=True)
    action: AuditAction = Field(index=True)
    entity_type: str = Field(index=True)
    entity_id: str | None = Field(default=None)
    details: dict | None = Field(default_factory=dict, sa_type=JSON)
    ip_address: str | None = Field(default=None)
    user_agent: str | None = Field(default=None)
