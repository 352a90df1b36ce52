from datetime import datetime

from restohub.schemas.common import APIModel


class TrialEligibilityRead(APIModel):
    eligible: bool


class TrialInfoRead(APIModel):
    is_trial_active: bool
    trial_started_at: datetime | None
    trial_ends_at: datetime | None
    days_remaining: int
    can_start_trial: bool
