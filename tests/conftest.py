"""Shared pytest fixtures for the Dormitricity API test suite.

Each test gets its own SQLite file so that separate sessions really are
separate connections, which the claim-race tests rely on.
"""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app import models  # noqa: F401 — registers all tables on Base.metadata
from app.config import settings
from app.db.base import Base
from app.db.session import get_db
from app.dependencies import get_notifier
from app.main import app
from app.models.target import CrawlTarget
from app.services.crawl_store import hash_canonical_id
from app.services.notifier import Notifier, NotifyResult


class RecordingNotifier(Notifier):
    """Notifier that records messages instead of calling webhooks.

    Tokens listed in *failing_tokens* get a failed NotifyResult.
    """

    def __init__(self, failing_tokens: tuple[str, ...] = ()) -> None:
        super().__init__()
        self.failing_tokens = set(failing_tokens)
        self.sent: list[dict] = []

    async def send(self, channel, token, title, body) -> NotifyResult:
        self.sent.append({"channel": channel, "token": token, "title": title, "body": body})
        if token in self.failing_tokens:
            return NotifyResult(False, "provider said no")
        return NotifyResult(True)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'dormitricity.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier(failing_tokens=("bad-token",))


@pytest.fixture
async def client(session_factory, notifier) -> AsyncClient:
    """Async test client that talks directly to the ASGI app, backed by the test database."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://testserver",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def api_key() -> str:
    """The API key configured in settings (defaults to 'dev-api-key' in tests)."""
    return settings.api_key


@pytest.fixture
def auth_headers(api_key: str) -> dict[str, str]:
    """Ready-made headers dict with X-API-Key set."""
    return {"X-API-Key": api_key}


@pytest.fixture
def seed_targets(db):
    """Insert *n* enabled targets named campus:1:1:<room> and return their payloads."""

    async def _seed(n: int, building: str = "1") -> list[dict]:
        targets = []
        for room in range(n):
            canonical_id = f"campus:{building}:1:{100 + room}"
            target = CrawlTarget(
                hashed_dir=hash_canonical_id(canonical_id),
                canonical_id=canonical_id,
                enabled=True,
                created_ts=0,
            )
            db.add(target)
            targets.append(target.as_payload())
        await db.commit()
        return targets

    return _seed
