from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlmodel import Field

from restohub.models.base import TimestampedModel, UUIDModel, utcnow


class SubscriptionTier(str, Enum):
    FREE = "FREE"
    STANDARD = "STANDARD"
    PREMIUM = "PREMIUM"


class SubscriptionStatus(str, Enum):
    TRIAL = "TRIAL"
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"
    SUSPENDED = "SUSPENDED"


class PaymentRequestStatus(str, Enum):
    PENDING_VERIFICATION = "PENDING_VERIFICATION"
    VERIFIED = "VERIFIED"
    ACTIVATED = "ACTIVATED"
    REJECTED = "REJECTED"


class TransactionType(str, Enum):
    PAYMENT = "PAYMENT"
    REFUND = "REFUND"


class RefundStatus(str, Enum):
    REQUESTED = "REQUESTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PROCESSED = "PROCESSED"


class Subscription(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "subscriptions"

    store_id: UUID = Field(foreign_key="stores.id", index=True, unique=True)
    tier: SubscriptionTier = Field(default=SubscriptionTier.FREE)
    status: SubscriptionStatus = Field(default=SubscriptionStatus.TRIAL)
    is_trial_used: bool = Field(default=False)
    trial_started_at: datetime | None = Field(default=None)
    trial_ends_at: datetime | None = Field(default=None)
    current_period_start: datetime | None = Field(default=None)
    current_period_end: datetime | None = Field(default=None)
    billing_cycle: str = Field(default="YEARLY")
    cancelled_at: datetime | None = Field(default=None)
    cancellation_reason: str | None = Field(default=None)


class PaymentRequest(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "payment_requests"

    subscription_id: UUID = Field(foreign_key="subscriptions.id", index=True)
    store_id: UUID = Field(foreign_key="stores.id", index=True)
    reference_number: str = Field(index=True)
    requested_tier: SubscriptionTier
    requested_duration: int
    amount: float
    currency: str = Field(default="USD")
    payment_proof_path: str | None = Field(default=None)
    status: PaymentRequestStatus = Field(default=PaymentRequestStatus.PENDING_VERIFICATION, index=True)
    requested_by: UUID = Field(foreign_key="users.id")
    requested_at: datetime = Field(default_factory=utcnow)
    verified_by: UUID | None = Field(default=None, foreign_key="users.id")
    verified_at: datetime | None = Field(default=None)
    rejection_reason: str | None = Field(default=None)
    activated_by: UUID | None = Field(default=None, foreign_key="users.id")
    activated_at: datetime | None = Field(default=None)
    notes: str | None = Field(default=None)


class PaymentTransaction(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "payment_transactions"

    subscription_id: UUID = Field(foreign_key="subscriptions.id", index=True)
    store_id: UUID = Field(foreign_key="stores.id", index=True)
    payment_request_id: UUID | None = Field(default=None, foreign_key="payment_requests.id")
    transaction_type: TransactionType = Field(default=TransactionType.PAYMENT)
    amount: float
    currency: str = Field(default="USD")
    tier: SubscriptionTier
    period_start: datetime | None = Field(default=None)
    period_end: datetime | None = Field(default=None)
    processed_by: UUID | None = Field(default=None, foreign_key="users.id")
    processed_at: datetime = Field(default_factory=utcnow)


class RefundRequest(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "refund_requests"

    subscription_id: UUID = Field(foreign_key="subscriptions.id", index=True)
    store_id: UUID = Field(foreign_key="stores.id", index=True)
    transaction_id: UUID = Field(foreign_key="payment_transactions.id", index=True)
    requested_amount: float
    reason: str
    status: RefundStatus = Field(default=RefundStatus.REQUESTED, index=True)
    requested_by: UUID = Field(foreign_key="users.id")
    requested_at: datetime = Field(default_factory=utcnow)
    reviewed_by: UUID | None = Field(default=None, foreign_key="users.id")
    reviewed_at: datetime | None = Field(default=None)
    rejection_reason: str | None = Field(default=None)
    processed_by: UUID | None = Field(default=None, foreign_key="users.id")
    processed_at: datetime | None = Field(default=None)
    refund_method: str | None = Field(default=None)
    refund_proof_path: str | None = Field(default=None)


class UserTrialUsage(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "user_trial_usage"

    user_id: UUID = Field(foreign_key="users.id", index=True)
    store_id: UUID = Field(foreign_key="stores.id", index=True)
    trial_started_at: datetime = Field(default_factory=utcnow)
    trial_ends_at: datetime
    is_active: bool = Field(default=True)
