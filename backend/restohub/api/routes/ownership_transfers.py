from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from restohub.api.deps import get_cache, get_current_user, get_db, get_notifications
from restohub.models.store import User
from restohub.schemas.ownership import TransferCancel, TransferInitiate, TransferInitiated, TransferRead, TransferVerify
from restohub.services.cache import RedisCache
from restohub.services.notification import NotificationService
from restohub.services.ownership_transfer import OwnershipTransferService

router = APIRouter(prefix="/ownership-transfers", tags=["ownership-transfers"])


@router.post("", response_model=TransferInitiated, status_code=status.HTTP_201_CREATED)
def initiate_transfer(
    payload: TransferInitiate,
    session: Session = Depends(get_db),
    notifications: NotificationService = Depends(get_notifications),
    current_user: User = Depends(get_current_user),
) -> TransferInitiated:
    transfer = OwnershipTransferService(session, notifications).initiate_transfer(
        current_user.id, payload.store_id, str(payload.new_owner_email)
    )
    return TransferInitiated(transfer_id=transfer.id, otp_expires_at=transfer.otp_expires_at)


@router.get("/{transfer_id}", response_model=TransferRead)
def get_transfer(
    transfer_id: UUID,
    session: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> TransferRead:
    transfer = OwnershipTransferService(session).get_transfer(current_user.id, transfer_id)
    return TransferRead.model_validate(transfer)


@router.post("/{transfer_id}/verify-otp", response_model=TransferRead)
def verify_otp(
    transfer_id: UUID,
    payload: TransferVerify,
    session: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(get_current_user),
) -> TransferRead:
    transfer = OwnershipTransferService(session, cache=cache).verify_otp(current_user.id, transfer_id, payload.otp)
    return TransferRead.model_validate(transfer)


@router.delete("/{transfer_id}", response_model=TransferRead)
def cancel_transfer(
    transfer_id: UUID,
    payload: TransferCancel | None = None,
    session: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> TransferRead:
    reason = payload.reason if payload else None
    transfer = OwnershipTransferService(session).cancel_transfer(current_user.id, transfer_id, reason)
    return TransferRead.model_validate(transfer)
