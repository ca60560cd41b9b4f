"""Test configuration and fixtures for the permission control API."""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi import Depends
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import build_engine, build_sessionmaker, get_db, init_db
from app.core.locks import KeyedLock
from app.features.permissions.audit import AuditLogger
from app.features.permissions.cache import PermissionCache
from app.features.permissions.catalog import DEFAULT_ROLES
from app.features.permissions.grants import GrantRevokeManager
from app.features.permissions.resolver import EffectivePermissionResolver
from app.features.permissions.roles import RoleCatalog
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.main import app as fastapi_app
from scripts.seed_permissions import seed_catalog


class FrozenClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FrozenClock(datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
async def engine(tmp_path):
    """Fresh SQLite database with the default catalog seeded."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'permissions.db'}")
    await init_db(engine)
    async with build_sessionmaker(engine)() as session:
        await seed_catalog(session)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_sessionmaker(engine)


@pytest.fixture
async def users(session_factory):
    """One active user per role, plus an inactive employee. Maps name to user id."""
    async with session_factory() as session:
        created = {}
        for role_key in DEFAULT_ROLES:
            created[role_key] = User(email=f"{role_key}@example.com", name=role_key.title(), role_key=role_key)
        created["second_coordinator"] = User(
            email="coordinator2@example.com", name="Second Coordinator", role_key="coordinator"
        )
        created["inactive_employee"] = User(
            email="inactive@example.com", name="Inactive Employee", role_key="employee", is_active=False
        )
        session.add_all(created.values())
        await session.commit()
        return {name: user.id for name, user in created.items()}


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def load_user(db):
    """Load a user into the test session by fixture name."""
    async def _load(user_id: str) -> User:
        return await db.get(User, user_id)
    return _load


@pytest.fixture
def cache():
    return PermissionCache(maxsize=100, ttl=300)


@pytest.fixture
def role_catalog(db, cache, clock):
    return RoleCatalog(db, cache, KeyedLock(), clock)


@pytest.fixture
def grant_manager(db, cache, clock):
    return GrantRevokeManager(db, cache, KeyedLock(), clock)


@pytest.fixture
def resolver(db, cache, clock):
    return EffectivePermissionResolver(db, cache, clock)


@pytest.fixture
def audit_logger(db, clock):
    return AuditLogger(db, clock)


@pytest.fixture
def app(session_factory, cache, clock):
    """FastAPI app bound to the test database, cache and clock."""
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.state.permission_cache = cache
    fastapi_app.state.role_locks = KeyedLock()
    fastapi_app.state.user_locks = KeyedLock()
    fastapi_app.state.clock = clock
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def act_as(app):
    """Authenticate subsequent requests as the given user id."""
    def _act_as(user_id: str):
        async def override_current_user(db: AsyncSession = Depends(get_db)) -> User:
            return await db.get(User, user_id)

        app.dependency_overrides[get_current_user] = override_current_user
    return _act_as


@pytest.fixture
async def async_client(app):
    """Create async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
