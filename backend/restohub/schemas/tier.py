from restohub.models.subscription import SubscriptionTier
from restohub.schemas.common import APIModel


class ResourceUsageRead(APIModel):
    current: int
    limit: int | None


class UsageBreakdown(APIModel):
    tables: ResourceUsageRead
    menu_items: ResourceUsageRead
    staff: ResourceUsageRead
    monthly_orders: ResourceUsageRead


class FeatureFlags(APIModel):
    kds: bool
    loyalty: bool
    advanced_reports: bool


class StoreUsageRead(APIModel):
    tier: SubscriptionTier
    usage: UsageBreakdown
    features: FeatureFlags


class TierLimitsRead(APIModel):
    tier: SubscriptionTier
    max_tables: int | None
    max_menu_items: int | None
    max_staff: int | None
    max_monthly_orders: int | None
    features: FeatureFlags


class TierLimitCheckRead(APIModel):
    resource: str
    allowed: bool
    current_usage: int
    limit: int | None
    tier: SubscriptionTier
    usage_percentage: float
