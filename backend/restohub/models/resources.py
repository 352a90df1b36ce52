from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlmodel import Field

from restohub.models.base import TimestampedModel, UUIDModel


class Table(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "tables"

    store_id: UUID = Field(foreign_key="stores.id", index=True)
    name: str
    deleted_at: datetime | None = Field(default=None)


class MenuItem(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "menu_items"

    store_id: UUID = Field(foreign_key="stores.id", index=True)
    name: str
    price: float = Field(default=0)
    deleted_at: datetime | None = Field(default=None)


class Order(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "orders"

    store_id: UUID = Field(foreign_key="stores.id", index=True)
    total_amount: float = Field(default=0)
    status: str = Field(default="PENDING")
