from __future__ import annotations

import fnmatch
import os
import uuid
from datetime import timedelta
from typing import Callable

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine

import restohub.db.base  # noqa: F401
from restohub.api.deps import get_db
from restohub.main import app
from restohub.models.audit import AuditAction
from restohub.models.base import utcnow
from restohub.models.store import Store, StoreRole, User, UserStore
from restohub.models.subscription import Subscription, SubscriptionStatus, SubscriptionTier
from restohub.services.audit import AuditEntry, AuditService
from restohub.services.cache import RedisCache
from restohub.utils.security import create_access_token


class FakeRedis:
    """In-memory stand-in for the handful of redis-py calls RedisCache makes."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.healthy = True

    def _check(self) -> None:
        if not self.healthy:
            raise ConnectionError("redis down")

    def ping(self) -> bool:
        self._check()
        return True

    def get(self, key):
        self._check()
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self._check()
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    def scan_iter(self, match="*", count=None):  # noqa: ARG002
        self._check()
        return [key for key in list(self.store) if fnmatch.fnmatchcase(key, match)]

    def close(self) -> None:
        pass


@pytest.fixture()
def db_engine(tmp_path):
    test_database_url = os.getenv("TEST_DATABASE_URL")
    if not test_database_url:
        db_path = tmp_path / f"test_{uuid.uuid4().hex}.db"
        test_database_url = f"sqlite:///{db_path}"

    is_postgres = test_database_url.startswith("postgresql")

    admin_engine = None
    schema_name = None

    if is_postgres:
        schema_name = f"test_{uuid.uuid4().hex}"
        admin_engine = create_engine(test_database_url, future=True)
        with admin_engine.connect() as conn:
            conn.execution_options(isolation_level="AUTOCOMMIT").execute(
                text(f'CREATE SCHEMA IF NOT EXISTS "{schema_name}"')
            )
        connect_args = {"options": f"-csearch_path={schema_name},public"}
        engine = create_engine(test_database_url, connect_args=connect_args, future=True)
    else:
        engine = create_engine(test_database_url, connect_args={"check_same_thread": False})

    SQLModel.metadata.create_all(bind=engine)

    def override_get_db():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    yield engine

    app.dependency_overrides.pop(get_db, None)
    engine.dispose()
    if is_postgres and admin_engine and schema_name:
        with admin_engine.connect() as conn:
            conn.execution_options(isolation_level="AUTOCOMMIT").execute(
                text(f'DROP SCHEMA IF EXISTS "{schema_name}" CASCADE')
            )
        admin_engine.dispose()


@pytest.fixture()
def db_session(db_engine) -> Session:
    with Session(db_engine) as session:
        yield session


@pytest.fixture()
def storage_env(monkeypatch, tmp_path):
    storage_dir = tmp_path / "storage"
    storage_dir.mkdir(exist_ok=True)
    monkeypatch.setenv("RESTOHUB_STORAGE", str(storage_dir))
    return storage_dir


@pytest.fixture()
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture()
def cache(fake_redis) -> RedisCache:
    return RedisCache(client=fake_redis)


@pytest.fixture()
def client(db_engine, storage_env, cache) -> TestClient:
    app.state.cache = cache
    yield TestClient(app)
    app.state.cache = None


@pytest.fixture()
def make_store(db_session: Session) -> Callable[..., Store]:
    def _make(name: str = "Bistro") -> Store:
        store = Store(name=name, slug=f"store-{uuid.uuid4().hex[:8]}")
        db_session.add(store)
        db_session.commit()
        db_session.refresh(store)
        return store

    return _make


@pytest.fixture()
def make_user(db_session: Session) -> Callable[..., User]:
    def _make(email: str | None = None, full_name: str = "Test User") -> User:
        user = User(email=email or f"user_{uuid.uuid4().hex[:8]}@example.com", full_name=full_name)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture()
def add_member(db_session: Session) -> Callable[..., UserStore]:
    def _add(user: User, store: Store, role: StoreRole) -> UserStore:
        membership = UserStore(user_id=user.id, store_id=store.id, role=role)
        db_session.add(membership)
        db_session.commit()
        db_session.refresh(membership)
        return membership

    return _add


@pytest.fixture()
def make_subscription(db_session: Session) -> Callable[..., Subscription]:
    def _make(
        store: Store,
        tier: SubscriptionTier = SubscriptionTier.FREE,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        period_days: int | None = None,
    ) -> Subscription:
        now = utcnow()
        subscription = Subscription(store_id=store.id, tier=tier, status=status)
        if period_days is not None:
            subscription.current_period_start = now
            subscription.current_period_end = now + timedelta(days=period_days)
        db_session.add(subscription)
        db_session.commit()
        db_session.refresh(subscription)
        return subscription

    return _make


@pytest.fixture()
def owner_context(make_store, make_user, add_member, make_subscription) -> dict:
    store = make_store()
    owner = make_user(email=f"owner_{uuid.uuid4().hex[:6]}@example.com", full_name="Owner")
    add_member(owner, store, StoreRole.OWNER)
    subscription = make_subscription(store)
    return {"store": store, "owner": owner, "subscription": subscription}


@pytest.fixture()
def platform_admin(make_store, make_user, add_member) -> User:
    platform = make_store(name="Platform")
    admin = make_user(email=f"admin_{uuid.uuid4().hex[:6]}@example.com", full_name="Platform Admin")
    add_member(admin, platform, StoreRole.PLATFORM_ADMIN)
    return admin


@pytest.fixture()
def auth_headers() -> Callable[[User], dict[str, str]]:
    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}

    return _headers


@pytest.fixture()
def failing_audit(monkeypatch) -> Callable[[AuditAction], None]:
    """Make staging the audit entry for ``action`` fail like a database error."""

    def _fail(action: AuditAction) -> None:
        original = AuditService.create_log_in_transaction

        def create_log_in_transaction(session: Session, entry: AuditEntry):
            if entry.action == action:
                raise SQLAlchemyError("disk I/O error")
            return original(session, entry)

        monkeypatch.setattr(AuditService, "create_log_in_transaction", create_log_in_transaction)

    return _fail
