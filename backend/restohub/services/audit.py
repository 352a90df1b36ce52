from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import func
from sqlmodel import Session, select

from restohub.core.logging_setup import logger
from restohub.models.audit import AuditAction, AuditLog

SENSITIVE_KEYS = {"otp", "otp_code", "otpcode", "code", "password", "token", "secret"}


@dataclass
class AuditEntry:
    action: AuditAction
    entity_type: str
    store_id: UUID | None = None
    user_id: UUID | None = None
    entity_id: UUID | str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    ip_address: str | None = None
    user_agent: str | None = None


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            str(key): "[REDACTED]" if str(key).lower() in SENSITIVE_KEYS else _jsonable(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(item) for item in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    return value


class AuditService:
    """Append-only audit trail. Entries are never updated or deleted."""

    def __init__(self, session: Session) -> None:
        self.session = session

    @staticmethod
    def _build(entry: AuditEntry) -> AuditLog:
        return AuditLog(
            store_id=entry.store_id,
            user_id=entry.user_id,
            action=entry.action,
            entity_type=entry.entity_type,
            entity_id=str(entry.entity_id) if entry.entity_id is not None else None,
            details=_jsonable(entry.details or {}),
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
        )

    def create_log(self, entry: AuditEntry) -> AuditLog:
        logger.info("[create_log] %s for store %s", entry.action.value, entry.store_id)
        log = self._build(entry)
        self.session.add(log)
        self.session.commit()
        self.session.refresh(log)
        return log

    @classmethod
    def create_log_in_transaction(cls, session: Session, entry: AuditEntry) -> AuditLog:
        """Stage an entry inside the caller's transaction; the caller commits."""
        logger.info("[create_log_in_transaction] %s for store %s", entry.action.value, entry.store_id)
        log = cls._build(entry)
        session.add(log)
        session.flush()
        return log

    def list_store_logs(
        self,
        store_id: UUID,
        action: Optional[AuditAction] = None,
        user_id: Optional[UUID] = None,
        start_at: Optional[datetime] = None,
        end_at: Optional[datetime] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[AuditLog], int]:
        query = select(AuditLog).where(AuditLog.store_id == store_id)
        if action:
            query = query.where(AuditLog.action == action)
        if user_id:
            query = query.where(AuditLog.user_id == user_id)
        if start_at:
            query = query.where(AuditLog.created_at >= start_at)
        if end_at:
            query = query.where(AuditLog.created_at <= end_at)

        total = self.session.exec(
            select(func.count()).select_from(query.subquery())
        ).one()

        items = self.session.exec(
            query.order_by(AuditLog.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        return list(items), total
