from __future__ import annotations

from enum import Enum
from uuid import UUID

from sqlalchemy import UniqueConstraint
from sqlmodel import Field

from restohub.models.base import TimestampedModel, UUIDModel


class StoreRole(str, Enum):
    PLATFORM_ADMIN = "PLATFORM_ADMIN"
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    CHEF = "CHEF"
    CASHIER = "CASHIER"
    SERVER = "SERVER"


class Store(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "stores"

    slug: str = Field(index=True, unique=True)
    name: str
    is_active: bool = Field(default=True)


class User(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "users"

    email: str = Field(index=True, unique=True)
    full_name: str | None = Field(default=None)
    is_active: bool = Field(default=True)


class UserStore(UUIDModel, TimestampedModel, table=True):
    """Store membership; ``role`` decides what the user may do in the store."""

    __tablename__ = "user_stores"
    __table_args__ = (UniqueConstraint("user_id", "store_id", name="uq_user_store"),)

    user_id: UUID = Field(foreign_key="users.id", index=True)
    store_id: UUID = Field(foreign_key="stores.id", index=True)
    role: StoreRole = Field(default=StoreRole.SERVER)
