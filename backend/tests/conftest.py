from __future__ import annotations

import os
import sys
from pathlib import Path
from types import SimpleNamespace

# Add backend folder to sys.path so `import ledgerly...` works in tests when running from the repo root
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

# Must be set before ledgerly.core.config is imported anywhere
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ledgerly.core import dispatch, events
from ledgerly.core.database import Base
from ledgerly.models import tables  # noqa: F401
from ledgerly.models.tables import Account, User
from ledgerly.services import cache
from ledgerly.services.bank_templates import seed_bank_templates
from ledgerly.services.categories import seed_system_categories
from ledgerly.services.ml import clients
from ledgerly.services.ml.category_cache import category_cache


class FakeRedis:
    """Dict-backed stand-in for the async Redis client (get/set/delete only)."""

    def __init__(self):
        self.store = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.store[key] = value
        return True

    async def delete(self, key):
        return 1 if self.store.pop(key, None) is not None else 0

    async def ping(self):
        return True


class PublishRecorder:
    def __init__(self):
        self.messages = []

    def publish(self, channel, payload):
        self.messages.append((channel, payload))
        return 1


class EnqueueRecorder:
    def __init__(self):
        self.calls = []

    def __call__(self, actor_name, *args, **kwargs):
        self.calls.append((actor_name, args))
        return f"job-{len(self.calls)}"

    def names(self):
        return [name for name, _ in self.calls]


def make_engine():
    return create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )


async def prepare_database(engine, factory):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with factory() as session:
        await seed_system_categories(session)
        await seed_bank_templates(session)
        await session.commit()


@pytest.fixture(autouse=True)
def fake_redis():
    redis = FakeRedis()
    cache.set_redis(redis)
    category_cache.clear()
    yield redis
    category_cache.clear()
    cache.set_redis(None)
    clients.set_openai_client(None)


@pytest.fixture(autouse=True)
def published():
    recorder = PublishRecorder()
    events.set_publisher(recorder)
    yield recorder
    events.set_publisher(None)


@pytest.fixture(autouse=True)
def enqueued(monkeypatch):
    recorder = EnqueueRecorder()
    monkeypatch.setattr(dispatch, "enqueue", recorder)
    return recorder


@pytest_asyncio.fixture
async def session_factory():
    engine = make_engine()
    factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    await prepare_database(engine, factory)
    yield factory
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def user(db):
    user = User(email="asha@example.com", name="Asha", settings={})
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture
async def account(db, user):
    account = Account(user_id=user.id, name="Salary account", bank_name="HDFC Bank")
    db.add(account)
    await db.commit()
    await db.refresh(account)
    return account


@pytest.fixture
def api():
    """TestClient over the real app, backed by a fresh in-memory database.

    ``api.run(fn, *args)`` runs ``async fn(session, *args)`` on the app's
    event loop, for arranging rows a test needs.
    """
    from ledgerly.api.dependencies import get_db_session, get_session_factory
    from ledgerly.api.main import app

    engine = make_engine()
    factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)

    async def override_db():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_db
    app.dependency_overrides[get_session_factory] = lambda: factory

    async def _create_user():
        await prepare_database(engine, factory)
        async with factory() as session:
            user = User(email="api@example.com", name="Api User", settings={})
            session.add(user)
            await session.commit()
            return user.id

    async def _run(fn, args):
        async with factory() as session:
            return await fn(session, *args)

    try:
        with TestClient(app) as client:
            user_id = client.portal.call(_create_user)
            client.headers["X-User-Id"] = str(user_id)
            yield SimpleNamespace(
                client=client,
                user_id=user_id,
                factory=factory,
                run=lambda fn, *args: client.portal.call(_run, fn, args),
            )
            client.portal.call(engine.dispose)
    finally:
        app.dependency_overrides.clear()
