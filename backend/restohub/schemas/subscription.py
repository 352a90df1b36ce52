from datetime import datetime
from uuid import UUID

from restohub.models.subscription import SubscriptionStatus, SubscriptionTier
from restohub.schemas.common import APIModel


class SubscriptionRead(APIModel):
    id: UUID
    store_id: UUID
    tier: SubscriptionTier
    status: SubscriptionStatus
    is_trial_used: bool
    trial_started_at: datetime | None
    trial_ends_at: datetime | None
    current_period_start: datetime | None
    current_period_end: datetime | None
    billing_cycle: str
    cancelled_at: datetime | None
    cancellation_reason: str | None
    created_at: datetime
    updated_at: datetime | None


class SubscriptionStatusRead(APIModel):
    is_active: bool
    tier: SubscriptionTier
    status: SubscriptionStatus


class StoreSuspendRequest(APIModel):
    reason: str
