"""
Test configuration
Each test gets its own SQLite database and a fresh fake Redis
"""
import os
import sys
import tempfile
import uuid

TEST_DIR = tempfile.mkdtemp(prefix="flowstack-tests-")

# Set test environment variables
os.environ.update({
    "DEBUG": "false",
    "ENVIRONMENT": "test",
    "DATABASE_URL": f"sqlite+aiosqlite:///{os.path.join(TEST_DIR, 'app.db')}",
    "REDIS_URL": "redis://localhost:6380",
    "REDIS_PREFIX": "test",
    "JWT_SECRET": "test-secret-key-for-testing-purposes-only-minimum-32-characters",
    "JWT_ALGORITHM": "HS256",
    "ACCESS_TOKEN_EXPIRE_MINUTES": "30",
    "RATE_LIMIT_ENABLED": "false",
    "LOG_LEVEL": "WARNING",
    "APP_URL": "http://test",
    "BACKUP_STORAGE_PATH": os.path.join(TEST_DIR, "backups"),
    "BACKUP_MONITORING_FILE": os.path.join(TEST_DIR, "backups", "monitoring.json"),
    "NODES_PACKAGE": "sample_components",
})

# Add src directory
sys.path.append(os.path.join(os.path.dirname(__file__), '..', 'src'))

import pytest
from unittest.mock import patch
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

import models  # noqa: F401
from core.database import Base, get_db
from core.security import create_access_token
from main import app
from services.rbac_seed import initialize_roles_and_permissions
from services.role_service import RoleService
from services.user_service import UserService
from fake_redis import reset_fake_redis

# Modules that bind get_redis_client by name
REDIS_CLIENT_TARGETS = (
    "core.redis.get_redis_client",
    "core.rate_limit.get_redis_client",
    "services.permission_service.get_redis_client",
    "services.identity_provider.oidc.get_redis_client",
    "services.identity_provider.saml.get_redis_client",
)


@pytest.fixture(autouse=True)
def fake_redis():
    """Fresh fake Redis for each test"""
    redis = reset_fake_redis()
    patches = [patch(target, return_value=redis) for target in REDIS_CLIENT_TARGETS]
    for p in patches:
        p.start()
    try:
        yield redis
    finally:
        for p in patches:
            p.stop()


@pytest.fixture
async def engine(tmp_path):
    """Create test database engine with all tables"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    with patch("core.database.engine", engine):
        yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Session for service level tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def client(session_factory):
    """Create test client with database override"""
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_user(session_factory):
    """
    Factory committing a user, optionally with system roles

    Returns a dict with id, email and bearer headers.
    """
    async def _make_user(email=None, roles=(), first_name="Test", last_name="User"):
        email = email or f"user_{uuid.uuid4().hex[:8]}@example.com"
        async with session_factory() as session:
            user = await UserService(session).create_user(
                email=email, first_name=first_name, last_name=last_name
            )
            if roles:
                await initialize_roles_and_permissions(session)
                role_service = RoleService(session)
                for role in roles:
                    await role_service.assign_system_role(user.id, role)
            await session.commit()
            user_id = user.id

        token = create_access_token(user_id, roles=list(roles))
        return {
            "id": user_id,
            "email": email.lower(),
            "headers": {"Authorization": f"Bearer {token}"},
        }

    return _make_user


@pytest.fixture
async def admin_user(make_user):
    return await make_user(email="admin@example.com", roles=["Admin"])


@pytest.fixture
async def regular_user(make_user):
    return await make_user(email="member@example.com", roles=["Member"])
