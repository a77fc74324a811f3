"""
Tests for database URL handling and session retry.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from feedback_loop.database import get_database_url, get_session_with_retry


class TestDatabaseUrl:

    @pytest.mark.parametrize("url,expected", [
        ("sqlite:///./feedback_loop.db", "sqlite+aiosqlite:///./feedback_loop.db"),
        ("sqlite:///:memory:", "sqlite+aiosqlite:///:memory:"),
        ("postgres://u:p@host/db", "postgresql+asyncpg://u:p@host/db"),
        ("postgresql://u:p@host/db", "postgresql+asyncpg://u:p@host/db"),
        ("postgresql+asyncpg://u:p@host/db", "postgresql+asyncpg://u:p@host/db"),
    ])
    def test_rewrite(self, url, expected):
        assert get_database_url(url) == expected


def failing_then_ok(failures: int, message: str = "connection refused"):
    """Session factory whose first `failures` sessions cannot connect."""
    sessions = []

    def factory():
        session = MagicMock()
        session.close = AsyncMock()
        if len(sessions) < failures:
            session.connection = AsyncMock(side_effect=OperationalError("SELECT 1", {}, Exception(message)))
        else:
            session.connection = AsyncMock()
        sessions.append(session)
        return session

    return factory, sessions


class TestSessionRetry:

    @pytest.mark.asyncio
    async def test_retries_connection_errors(self):
        factory, sessions = failing_then_ok(2)

        async with get_session_with_retry(max_retries=3, retry_delay=0, session_factory=factory) as session:
            assert session is sessions[-1]

        assert len(sessions) == 3
        for s in sessions:
            s.close.assert_awaited()

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        factory, sessions = failing_then_ok(5)

        with pytest.raises(OperationalError):
            async with get_session_with_retry(max_retries=2, retry_delay=0, session_factory=factory):
                pass
        assert len(sessions) == 2

    @pytest.mark.asyncio
    async def test_non_connection_error_not_retried(self):
        factory, sessions = failing_then_ok(5, message="syntax error")

        with pytest.raises(OperationalError):
            async with get_session_with_retry(max_retries=3, retry_delay=0, session_factory=factory):
                pass
        assert len(sessions) == 1
