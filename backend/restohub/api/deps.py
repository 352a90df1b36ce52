from typing import Annotated, Callable
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlmodel import Session, select

from restohub.core.config import settings
from restohub.core.errors import ForbiddenError
from restohub.db.session import get_session
from restohub.models.store import StoreRole, User
from restohub.services.authorization import AuthorizationService
from restohub.services.cache import RedisCache
from restohub.services.notification import NotificationService
from restohub.services.tier import TierLimitCheck, TierLimitGuard, TierResource, TierService
from restohub.utils.security import TokenType, decode_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.api_v1_str}/auth/login")


def get_db() -> Session:
    yield from get_session()


def get_cache(request: Request) -> RedisCache:
    cache = getattr(request.app.state, "cache", None)
    if cache is None:
        # Lifespan not run (e.g. plain TestClient without context manager)
        cache = RedisCache()
        request.app.state.cache = cache
    return cache


def get_notifications() -> NotificationService:
    return NotificationService.from_settings(settings)


def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    session: Annotated[Session, Depends(get_db)],
) -> User:
    try:
        payload = decode_token(token)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    if payload.get("token_type") != TokenType.ACCESS.value:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    try:
        user_id = UUID(str(payload["sub"]))
    except (KeyError, ValueError, TypeError) as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject") from exc

    user = session.exec(select(User).where(User.id == user_id)).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User inactive")
    return user


def require_platform_admin(
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[Session, Depends(get_db)],
) -> User:
    AuthorizationService(session).check_platform_admin(current_user.id)
    return current_user


def require_tier_limit(
    resource: TierResource,
    increment: int = 1,
    roles: tuple[StoreRole, ...] = (StoreRole.OWNER, StoreRole.ADMIN),
) -> Callable[..., TierLimitCheck | None]:
    """Dependency factory gating an endpoint that creates ``resource`` in a store.

    The store id is read from the ``store_id`` path or query parameter. The
    caller is authenticated and must hold one of ``roles`` in that store
    before any usage is read.
    """

    def dependency(
        request: Request,
        current_user: Annotated[User, Depends(get_current_user)],
        session: Annotated[Session, Depends(get_db)],
        cache: Annotated[RedisCache, Depends(get_cache)],
    ) -> TierLimitCheck | None:
        raw_store_id = request.path_params.get("store_id") or request.query_params.get("store_id")
        if not raw_store_id:
            raise ForbiddenError("Store ID is required for tier limit checks")
        try:
            store_id = UUID(str(raw_store_id))
        except ValueError as exc:
            raise ForbiddenError("Store ID is required for tier limit checks") from exc
        check_store_access(session, current_user, store_id, roles)
        guard = TierLimitGuard(TierService(session, cache))
        return guard.check(store_id, resource, increment)

    return dependency


def check_store_access(session: Session, user: User, store_id: UUID, roles) -> None:
    """Store members with one of ``roles`` and platform admins may proceed."""
    authorization = AuthorizationService(session)
    if authorization.is_platform_admin(user.id):
        return
    authorization.check_store_permission(user.id, store_id, roles)
