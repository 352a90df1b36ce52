from . import admin, audit, health, ownership_transfers, payment_requests, refunds, staff, subscriptions, tiers, trials

__all__ = [
    "admin",
    "audit",
    "health",
    "ownership_transfers",
    "payment_requests",
    "refunds",
    "staff",
    "subscriptions",
    "tiers",
    "trials",
]
