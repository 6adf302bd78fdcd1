"""
Pytest fixtures for testing.

Tests run against a throwaway SQLite file by default. Set
TEST_DATABASE=postgres to run against PostgreSQL in a container instead
(requires Docker).
"""
import os
from collections.abc import AsyncGenerator, Generator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from core.passwords import hash_password
from db.session import configure_sqlite_engine
from models.base import Base
from models.user import User
from services.metadata_extractor import MetadataExtractor


@pytest.fixture(scope="session")
def database_url(tmp_path_factory: pytest.TempPathFactory) -> Generator[str]:
    """
    Get the test database URL and set it in environment.

    This must be set before any app imports that trigger Settings validation.
    """
    if os.environ.get("TEST_DATABASE") == "postgres":
        from testcontainers.postgres import PostgresContainer

        with PostgresContainer("postgres:16", driver="asyncpg") as postgres:
            url = postgres.get_connection_url()
            os.environ["DATABASE_URL"] = url
            os.environ["DEV_MODE"] = "true"
            yield url
        return

    url = f"sqlite+aiosqlite:///{tmp_path_factory.mktemp('db') / 'test.db'}"
    os.environ["DATABASE_URL"] = url
    # Ensure tests run in dev mode (bypasses auth) regardless of local .env
    os.environ["DEV_MODE"] = "true"
    yield url


@pytest.fixture
async def async_engine(database_url: str) -> AsyncGenerator[AsyncEngine]:
    """Create an async engine with a fresh schema."""
    engine = create_async_engine(database_url, echo=False)
    if database_url.startswith("sqlite"):
        configure_sqlite_engine(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def db_connection(async_engine: AsyncEngine) -> AsyncGenerator[AsyncConnection]:
    """
    Create a connection with a transaction that will be rolled back after the test.

    Each test runs in its own transaction that is rolled back, so tests don't
    affect each other.
    """
    async with async_engine.connect() as connection:
        transaction = await connection.begin()
        try:
            yield connection
        finally:
            await transaction.rollback()


@pytest.fixture
async def db_session(db_connection: AsyncConnection) -> AsyncGenerator[AsyncSession]:
    """
    Create an async session bound to the test transaction.

    The session's own commits become SAVEPOINT releases inside the outer
    test transaction.
    """
    session_factory = async_sessionmaker(
        bind=db_connection,
        class_=AsyncSession,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )

    async with session_factory() as session:
        yield session


@pytest.fixture
async def test_user(db_session: AsyncSession) -> User:
    """Create a test user."""
    user = User(
        username="alice",
        email="alice@example.com",
        password_hash=hash_password("password123", iterations=1_000),
    )
    db_session.add(user)
    await db_session.flush()
    await db_session.refresh(user)
    return user


@pytest.fixture
async def other_user(db_session: AsyncSession) -> User:
    """Create another test user for isolation tests."""
    user = User(
        username="bob",
        email="bob@example.com",
        password_hash=hash_password("password456", iterations=1_000),
    )
    db_session.add(user)
    await db_session.flush()
    await db_session.refresh(user)
    return user


@pytest.fixture
def metadata_extractor() -> MetadataExtractor:
    """
    Extractor with no network sources, so every URL resolves from the URL alone.

    Tests that need other tiers build their own extractor.
    """
    return MetadataExtractor(sources=[])


@pytest.fixture
async def client(
    db_session: AsyncSession,
    metadata_extractor: MetadataExtractor,
) -> AsyncGenerator[AsyncClient]:
    """
    Create a test client with database session and extractor overrides.

    ASGITransport doesn't run the app lifespan, so everything the lifespan
    would put on app.state is supplied through dependency overrides.
    """
    # Clear the settings cache so it picks up DATABASE_URL from environment
    from core.config import get_settings

    get_settings.cache_clear()

    from api.dependencies import get_metadata_extractor
    from api.main import app
    from db.session import get_async_session

    async def override_get_async_session() -> AsyncGenerator[AsyncSession]:
        yield db_session

    app.dependency_overrides[get_async_session] = override_get_async_session
    app.dependency_overrides[get_metadata_extractor] = lambda: metadata_extractor

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as test_client:
        yield test_client

    app.dependency_overrides.clear()
