"""Tests for core.database module.

- init_db creates missing tables and is safe to run twice
- get_db commits on success and rolls back on error
- check_db_connection succeeds against a live engine
"""

from unittest.mock import MagicMock

import pytest
from sqlalchemy import inspect, select
from sqlalchemy.ext.asyncio import create_async_engine

from core.database import check_db_connection, create_session_maker, get_db, init_db
from models import AllowedRecipient


@pytest.fixture
async def file_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'db.sqlite'}")
    yield engine
    await engine.dispose()


def _request(session_maker) -> MagicMock:
    request = MagicMock()
    request.app.state.session_maker = session_maker
    return request


@pytest.mark.integration
class TestInitDb:
    async def test_creates_tables_idempotently(self, file_engine):
        await init_db(file_engine)
        await init_db(file_engine)

        async with file_engine.connect() as conn:
            tables = await conn.run_sync(lambda c: inspect(c).get_table_names())

        assert {"templates", "certificates", "allowed_recipients"} <= set(tables)

    async def test_check_db_connection(self, test_engine):
        await check_db_connection(test_engine)


@pytest.mark.integration
class TestGetDb:
    async def test_commits_on_success(self, test_engine):
        session_maker = create_session_maker(test_engine)
        gen = get_db(_request(session_maker))

        session = await gen.__anext__()
        session.add(AllowedRecipient(name="Ada", email="ada@example.com"))
        with pytest.raises(StopAsyncIteration):
            await gen.__anext__()

        async with session_maker() as db:
            result = await db.execute(select(AllowedRecipient.email))
            assert result.scalars().all() == ["ada@example.com"]

    async def test_rolls_back_on_error(self, test_engine):
        session_maker = create_session_maker(test_engine)
        gen = get_db(_request(session_maker))

        session = await gen.__anext__()
        session.add(AllowedRecipient(name="Ada", email="ada@example.com"))
        await session.flush()
        with pytest.raises(RuntimeError):
            await gen.athrow(RuntimeError("handler failed"))

        async with session_maker() as db:
            result = await db.execute(select(AllowedRecipient.email))
            assert result.scalars().all() == []
