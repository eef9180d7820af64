"""Unit tests for database lifecycle helpers"""

from unittest.mock import patch

import pytest
from sqlalchemy import select

from orchestrator.core import database
from orchestrator.core.config import settings
from orchestrator.models.catalog import TestFileModel


def test_database_url_from_mysql_settings():
    with patch.object(settings, "DATABASE_URL", None), \
            patch.object(settings, "MYSQL_USER", "orchestrator"), \
            patch.object(settings, "MYSQL_PASSWORD", "s3cret"), \
            patch.object(settings, "MYSQL_HOST", "db"), \
            patch.object(settings, "MYSQL_PORT", 3307), \
            patch.object(settings, "MYSQL_DATABASE", "runs"):
        assert database.get_database_url() == "mysql+aiomysql://orchestrator:s3cret@db:3307/runs"


def test_database_url_override():
    with patch.object(settings, "DATABASE_URL", "sqlite+aiosqlite:///local.db"):
        assert database.get_database_url() == "sqlite+aiosqlite:///local.db"


@pytest.mark.asyncio
async def test_session_lifecycle(tmp_path):
    with patch.object(settings, "DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'lifecycle.db'}"):
        await database.init_database(create_tables=True)
        try:
            async for session in database.get_session():
                result = await session.execute(select(TestFileModel))
                assert result.scalars().all() == []
        finally:
            await database.close_database()

    assert database.engine is None
    assert database.async_session_factory is None


@pytest.mark.asyncio
async def test_get_session_requires_init():
    with pytest.raises(RuntimeError):
        async for _ in database.get_session():
            pass
