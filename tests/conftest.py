"""
Pytest configuration and fixtures.

WHY: Fixtures provide reusable test setup/teardown logic, reducing
duplication and ensuring consistent test environments.
"""

import os

# WHY: Settings are read at import time; provide test values before any
# helpdesk module is imported.
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-helpdesk-tests")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test-helpdesk.db")
os.environ.setdefault("BLOB_STORE_BACKEND", "local")

import pytest
import pytest_asyncio
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from httpx import AsyncClient, ASGITransport

from helpdesk.core.deps import get_notification_dispatcher, get_attachment_store
from helpdesk.db.session import get_db
from helpdesk.main import app
from helpdesk.models.base import Base
from helpdesk.services import email as email_module
from helpdesk.services.blob_store import LocalBlobStore
from helpdesk.services.notification_dispatcher import NotificationDispatcher


@pytest_asyncio.fixture(scope="function")
async def db_engine(tmp_path):
    """
    Create a test database engine.

    WHY: Function scope gives each test a fresh database. A file-backed
    SQLite database (rather than :memory:) lets the notification
    dispatcher open its own connection to the same data.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'helpdesk.db'}",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory mirroring the application's settings."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """
    Create a test database session.

    Yields:
        AsyncSession: Database session for the test
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def dispatcher(session_factory) -> NotificationDispatcher:
    """
    Real dispatcher bound to the test database.

    WHY: Uses its own sessions, exactly like production, and the mock
    e-mail channel installed by use_mock_email_provider.
    """
    return NotificationDispatcher(session_factory=session_factory, timeout_seconds=2)


@pytest.fixture
def blob_store(tmp_path) -> LocalBlobStore:
    """Local blob store rooted in the test's temp directory."""
    return LocalBlobStore(
        root=str(tmp_path / "blobs"),
        base_url="http://test/api/blobs",
        secret="blob-test-secret",
    )


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    dispatcher: NotificationDispatcher,
    blob_store: LocalBlobStore,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Create a test HTTP client.

    WHY: AsyncClient allows testing FastAPI endpoints without running
    a real server, making tests faster and more reliable.

    Yields:
        AsyncClient: HTTP client for making test requests
    """

    async def override_get_db():
        """Override database dependency with test session."""
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_attachment_store] = lambda: blob_store

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    await dispatcher.drain()
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def use_mock_email_provider():
    """
    Use mock email provider for all tests.

    WHY: Tests should not send real emails. The mock provider records
    every message so tests can assert on recipients and content.
    """
    email_module.MockEmailProvider.clear_sent_emails()
    email_module.set_delivery_channel(email_module.MockEmailProvider())

    yield

    email_module.set_delivery_channel(None)
    email_module.MockEmailProvider.clear_sent_emails()

