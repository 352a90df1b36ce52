from __future__ import annotations

from typing import Iterable
from uuid import UUID

from sqlmodel import Session, select

from restohub.core.errors import ForbiddenError
from restohub.core.logging_setup import logger
from restohub.models.store import StoreRole, UserStore


class AuthorizationService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_membership(self, user_id: UUID, store_id: UUID) -> UserStore | None:
        return self.session.exec(
            select(UserStore).where(UserStore.user_id == user_id, UserStore.store_id == store_id)
        ).first()

    def check_store_permission(self, user_id: UUID, store_id: UUID, allowed_roles: Iterable[StoreRole]) -> UserStore:
        allowed = set(allowed_roles)
        membership = self.get_membership(user_id, store_id)
        if membership is None or membership.role not in allowed:
            logger.warning(
                "[check_store_permission] user %s denied on store %s (role=%s)",
                user_id,
                store_id,
                membership.role.value if membership else None,
            )
            raise ForbiddenError("You do not have permission to perform this action on this store")
        return membership

    def is_platform_admin(self, user_id: UUID) -> bool:
        return (
            self.session.exec(
                select(UserStore.id).where(
                    UserStore.user_id == user_id,
                    UserStore.role == StoreRole.PLATFORM_ADMIN,
                )
            ).first()
            is not None
        )

    def check_platform_admin(self, user_id: UUID) -> None:
        if not self.is_platform_admin(user_id):
            logger.warning("[check_platform_admin] user %s is not a platform admin", user_id)
            raise ForbiddenError("Platform admin access required")
