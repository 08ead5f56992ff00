"""Shared test fixtures."""

import uuid
from collections import defaultdict
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from wafplane.auth.context import RequestContext
from wafplane.config import WafPlaneConfig
from wafplane.engine.ban_cache import BanCache
from wafplane.engine.ban_coordinator import BanCoordinator
from wafplane.engine.ban_store import BanStore
from wafplane.main import create_app
from wafplane.modules import ApiKeysModule, BansModule
from wafplane.models.base import Base
from wafplane.utils.security import create_access_token
import wafplane.models  # noqa: F401  (registers tables on Base.metadata)


class FakeClock:
    """Injectable UTC clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


class InMemoryRedis:
    """Async stand-in for the Redis set commands used by the ban cache.

    Set ``fail = True`` to make every command raise a connection error.
    """

    def __init__(self):
        self.sets: dict[str, set[str]] = defaultdict(set)
        self.fail = False
        self.calls: list[str] = []

    def _check(self, command: str) -> None:
        self.calls.append(command)
        if self.fail:
            raise RedisConnectionError("Connection refused")

    async def sadd(self, key, *members):
        self._check("sadd")
        before = len(self.sets[key])
        self.sets[key].update(members)
        return len(self.sets[key]) - before

    async def srem(self, key, *members):
        self._check("srem")
        removed = len(self.sets[key] & set(members))
        self.sets[key].difference_update(members)
        return removed

    async def sismember(self, key, member):
        self._check("sismember")
        return int(member in self.sets.get(key, set()))

    async def delete(self, key):
        self._check("delete")
        return 1 if self.sets.pop(key, None) is not None else 0

    async def ping(self):
        self._check("ping")
        return True

    def pipeline(self, transaction: bool = True):
        return _InMemoryPipeline(self)


class _InMemoryPipeline:
    def __init__(self, backend: InMemoryRedis):
        self._backend = backend
        self._queued: list[tuple] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def delete(self, key):
        self._queued.append(("delete", key))
        return self

    def sadd(self, key, *members):
        self._queued.append(("sadd", key, *members))
        return self

    async def execute(self):
        self._backend._check("multi")
        results = []
        for command, key, *args in self._queued:
            if command == "delete":
                results.append(1 if self._backend.sets.pop(key, None) is not None else 0)
            else:
                self._backend.sets[key].update(args)
                results.append(len(args))
        self._queued.clear()
        return results


# --- Database fixtures ---

@pytest_asyncio.fixture
async def db_engine():
    """Shared in-memory SQLite engine (StaticPool keeps one connection alive)."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, expire_on_commit=False)


# --- Ban engine fixtures ---

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis():
    return InMemoryRedis()


@pytest.fixture
def store(session_factory, clock):
    return BanStore(session_factory, timeout=5.0, clock=clock)


@pytest.fixture
def cache(fake_redis):
    return BanCache(fake_redis, key_prefix="banned_ips", timeout=0.5)


@pytest.fixture
def coordinator(store, cache):
    return BanCoordinator(store, cache, store_timeout=5.0, cache_timeout=0.5)


@pytest.fixture
def tenant_a():
    return RequestContext(tenant_id=uuid.uuid4(), subject="alice")


@pytest.fixture
def tenant_b():
    return RequestContext(tenant_id=uuid.uuid4(), subject="bob")


# --- Application fixtures ---

TEST_SECRET = "test-secret-key-not-for-production"


@pytest.fixture
def app_config(tmp_path):
    return WafPlaneConfig(
        secret_key=TEST_SECRET,
        debug=True,
        log_dir=str(tmp_path / "logs"),
        cors_origins="http://testserver",
    )


@pytest.fixture
def app(app_config, session_factory, fake_redis, clock):
    """App wired to the in-memory database and cache; the ban clock is controllable."""
    return create_app(
        config=app_config,
        session_factory=session_factory,
        redis_client=fake_redis,
        modules=[BansModule(store_clock=clock), ApiKeysModule()],
        configure_logging=False,
    )


@pytest_asyncio.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth_headers():
    """Build Bearer headers for a tenant: ``auth_headers(tenant_id)``."""

    def _headers(tenant_id, subject="analyst", secret=TEST_SECRET) -> dict:
        token = create_access_token({"sub": subject, "tenant_id": str(tenant_id)}, secret)
        return {"Authorization": f"Bearer {token}"}

    return _headers
