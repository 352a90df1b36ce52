from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, File, UploadFile, status
from sqlmodel import Session

from restohub.api.deps import check_store_access, get_cache, get_current_user, get_db
from restohub.models.store import StoreRole, User
from restohub.schemas.payment import PaymentRequestCreate, PaymentRequestRead
from restohub.services.cache import RedisCache
from restohub.services.payment_request import PaymentRequestService

router = APIRouter(prefix="/payment-requests", tags=["payment-requests"])


def _service(session: Session, cache: RedisCache) -> PaymentRequestService:
    return PaymentRequestService(session, cache)


@router.post("", response_model=PaymentRequestRead, status_code=status.HTTP_201_CREATED)
def create_payment_request(
    payload: PaymentRequestCreate,
    session: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(get_current_user),
) -> PaymentRequestRead:
    payment_request = _service(session, cache).create_payment_request(current_user.id, payload.store_id, payload.tier)
    return PaymentRequestRead.model_validate(payment_request)


@router.post("/{request_id}/upload-proof", response_model=PaymentRequestRead)
def upload_payment_proof(
    request_id: UUID,
    file: UploadFile = File(...),
    session: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(get_current_user),
) -> PaymentRequestRead:
    data = file.file.read()
    payment_request = _service(session, cache).upload_payment_proof(
        current_user.id,
        request_id,
        data=data,
        filename=file.filename,
        content_type=file.content_type,
    )
    return PaymentRequestRead.model_validate(payment_request)


@router.get("/store/{store_id}", response_model=List[PaymentRequestRead])
def list_store_payment_requests(
    store_id: UUID,
    session: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(get_current_user),
) -> List[PaymentRequestRead]:
    check_store_access(session, current_user, store_id, (StoreRole.OWNER, StoreRole.ADMIN))
    requests = _service(session, cache).get_store_payment_requests(store_id)
    return [PaymentRequestRead.model_validate(item) for item in requests]


@router.get("/{request_id}", response_model=PaymentRequestRead)
def get_payment_request(
    request_id: UUID,
    session: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(get_current_user),
) -> PaymentRequestRead:
    payment_request = _service(session, cache).get_payment_request(current_user.id, request_id)
    return PaymentRequestRead.model_validate(payment_request)
