from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import EmailStr

from restohub.api.deps import get_notifications, require_tier_limit
from restohub.core.errors import BadRequestError
from restohub.models.store import StoreRole
from restohub.schemas.common import APIModel
from restohub.schemas.tier import TierLimitCheckRead
from restohub.services.notification import NotificationService
from restohub.services.tier import TierLimitCheck, TierResource
from restohub.utils.emails import normalize_email
from restohub.utils.security import create_staff_invitation_token

router = APIRouter(prefix="/stores/{store_id}/staff", tags=["staff"])

INVITABLE_ROLES = (StoreRole.ADMIN, StoreRole.CHEF, StoreRole.CASHIER, StoreRole.SERVER)


class StaffInvite(APIModel):
    email: EmailStr
    role: StoreRole = StoreRole.SERVER


class StaffInviteResult(APIModel):
    email: str
    role: StoreRole
    delivered: bool
    usage: TierLimitCheckRead | None = None


@router.post("/invitations", response_model=StaffInviteResult, status_code=status.HTTP_202_ACCEPTED)
def invite_staff(
    store_id: UUID,
    payload: StaffInvite,
    limit_check: TierLimitCheck | None = Depends(require_tier_limit(TierResource.STAFF)),
    notifications: NotificationService = Depends(get_notifications),
) -> StaffInviteResult:
    if payload.role not in INVITABLE_ROLES:
        raise BadRequestError(f"Role {payload.role.value} cannot be granted by invitation")
    email = normalize_email(str(payload.email))
    token = create_staff_invitation_token(str(store_id), email, payload.role.value)
    delivered = notifications.send_staff_invitation(email, token, store_id)
    return StaffInviteResult(
        email=email,
        role=payload.role,
        delivered=delivered,
        usage=TierLimitCheckRead.model_validate(limit_check.to_dict()) if limit_check else None,
    )
