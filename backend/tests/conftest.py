"""Shared test fixtures for backend tests."""

import asyncio
import os

# Must be set before hms.config is imported anywhere
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["REDIS_URL"] = ""

from typing import AsyncGenerator  # noqa: E402

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import hms.models  # noqa: E402,F401
from hms.api.deps import get_db  # noqa: E402
from hms.auth.jwt import create_access_token  # noqa: E402
from hms.database import Base  # noqa: E402
from hms.main import app  # noqa: E402
from hms.services.notification_hub import NotificationHub  # noqa: E402


class FakeWebSocket:
    """Stands in for a starlette WebSocket registered with the hub."""

    def __init__(self, fail: bool = False):
        self.sent: list[dict] = []
        self.fail = fail

    async def send_json(self, message: dict) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(message)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh in-memory database per test."""
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    TestSession = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with TestSession() as session:
        yield session
    await engine.dispose()


@pytest_asyncio.fixture
async def file_sessions(tmp_path):
    """Session factory over a file-backed database, so separate sessions use separate connections."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'hms.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def hub() -> NotificationHub:
    hub = NotificationHub("")
    app.state.hub = hub
    return hub


async def _until(predicate, rounds: int = 200) -> None:
    """Yield to the event loop until ``predicate()`` holds."""
    for _ in range(rounds):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


def _make_auth_header(user_id, role: str, email: str = "user@hospital.test") -> dict:
    token = create_access_token(user_id, email, role)
    return {"Authorization": f"Bearer {token}"}


def _override_db(session: AsyncSession):
    async def _get_db():
        yield session
    return _get_db


def _committing_db(sessions):
    """Like the real get_db: one session per request, committed after the endpoint returns."""
    async def _get_db():
        async with sessions() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
    return _get_db


@pytest_asyncio.fixture
async def make_client(db_session: AsyncSession, hub: NotificationHub):
    """Factory for HTTP clients authenticated as (user_id, role)."""
    app.dependency_overrides[get_db] = _override_db(db_session)
    clients: list[AsyncClient] = []

    def _make(user_id=None, role: str | None = None) -> AsyncClient:
        headers = _make_auth_header(user_id, role) if role else {}
        client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test", headers=headers)
        clients.append(client)
        return client

    yield _make

    for client in clients:
        await client.aclose()
    app.dependency_overrides.clear()
