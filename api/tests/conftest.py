"""Pytest configuration and shared fixtures.

This module provides:
- An in-memory SQLite database (aiosqlite) per test, foreign keys enforced
- Async session fixtures for repository/service tests
- A temporary file storage root per test
- A recording assembler that stands in for the real rendering engine
- FastAPI test clients (public and admin)
"""

# Set environment variables BEFORE any imports that trigger Settings validation
import os
import tempfile

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("STORAGE_DIR", tempfile.mkdtemp(prefix="cert-storage-"))
os.environ.setdefault("FRONTEND_URL", "https://verify.example.com")
os.environ.setdefault("BACKEND_URL", "http://test")
os.environ.setdefault("SMTP_HOST", "")

from collections.abc import AsyncGenerator, Generator, Mapping
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from core.config import clear_settings_cache, get_settings
from core.database import Base
from core.storage import FileStorage
from rendering.assembler import RenderError, TemplateSource
from services.mail_service import MailService
from tests.factories import FAKE_PDF

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
ADMIN_KEY = "test-admin-key"


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def test_engine() -> AsyncGenerator[AsyncEngine]:
    """Create a fresh in-memory database engine for each test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(
    session_maker: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Provide a database session for each test."""
    async with session_maker() as session:
        yield session
        await session.rollback()


# =============================================================================
# Storage and Rendering Fixtures
# =============================================================================


@pytest.fixture
def storage(tmp_path: Path) -> FileStorage:
    store = FileStorage(tmp_path / "public", "http://test")
    store.ensure_layout()
    return store


class RecordingAssembler:
    """Stands in for DocumentAssembler; records calls and writes a stub PDF.

    Set ``fail_for`` to a set of recipient names to make those renders raise
    RenderError.
    """

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.fail_for: set[str] = set()

    async def assemble(
        self,
        template: TemplateSource,
        values: Mapping[str, str],
        qr_png: bytes,
        destination: Path,
    ) -> Path:
        self.calls.append(
            {
                "template": template,
                "values": dict(values),
                "qr_png": qr_png,
                "destination": destination,
            }
        )
        if values.get("NAME") in self.fail_for:
            raise RenderError("Failed to render template")
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(FAKE_PDF)
        return destination


@pytest.fixture
def assembler() -> RecordingAssembler:
    return RecordingAssembler()


# =============================================================================
# FastAPI Test Client Fixtures
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def app(
    test_engine: AsyncEngine,
    session_maker: async_sessionmaker[AsyncSession],
    storage: FileStorage,
    assembler: RecordingAssembler,
) -> AsyncGenerator[FastAPI]:
    """FastAPI app wired to the test database, storage and assembler.

    ASGITransport does not run the lifespan, so app state is set here.
    """
    from main import app as fastapi_app

    fastapi_app.state.engine = test_engine
    fastapi_app.state.session_maker = session_maker
    fastapi_app.state.storage = storage
    fastapi_app.state.assembler = assembler
    fastapi_app.state.mailer = MailService(get_settings())
    fastapi_app.state.init_done = True
    fastapi_app.state.init_error = None

    yield fastapi_app


@pytest_asyncio.fixture(scope="function")
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Unauthenticated client (public endpoints)."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest_asyncio.fixture(scope="function")
async def admin_client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Client sending the admin key header."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-Admin-Key": ADMIN_KEY},
    ) as ac:
        yield ac


# =============================================================================
# Utility Fixtures
# =============================================================================


@pytest.fixture
def anyio_backend() -> str:
    """Use asyncio backend for anyio (required by httpx)."""
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None]:
    """Reset settings cache before each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
