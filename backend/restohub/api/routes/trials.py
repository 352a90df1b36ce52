from uuid import UUID

from fastapi import APIRouter, Depends
from sqlmodel import Session

from restohub.api.deps import check_store_access, get_cache, get_current_user, get_db
from restohub.models.store import StoreRole, User
from restohub.schemas.trial import TrialEligibilityRead, TrialInfoRead
from restohub.services.cache import RedisCache
from restohub.services.trial import TrialService

router = APIRouter(prefix="/trials", tags=["trials"])


@router.get("/eligibility", response_model=TrialEligibilityRead)
def get_trial_eligibility(
    session: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(get_current_user),
) -> TrialEligibilityRead:
    return TrialEligibilityRead(eligible=TrialService(session, cache).check_trial_eligibility(current_user.id))


@router.get("/store/{store_id}", response_model=TrialInfoRead)
def get_trial_info(
    store_id: UUID,
    session: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(get_current_user),
) -> TrialInfoRead:
    check_store_access(session, current_user, store_id, (StoreRole.OWNER, StoreRole.ADMIN))
    return TrialInfoRead.model_validate(TrialService(session, cache).get_trial_info(store_id))
