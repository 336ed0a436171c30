"""Tests for the async database session dependency."""

import contextlib
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.db.session import _get_engine, get_session, session_scope


def _factory_yielding(mock_session: AsyncMock) -> MagicMock:
    mock_factory = MagicMock()
    mock_ctx = AsyncMock()
    mock_ctx.__aenter__.return_value = mock_session
    mock_ctx.__aexit__.return_value = False
    mock_factory.return_value = mock_ctx
    return mock_factory


class TestGetSession:
    """Session dependency yields and commits."""

    async def test_commits_on_success(self) -> None:
        """Session is committed after successful use."""
        mock_session = AsyncMock()
        with patch(
            "src.db.session._get_session_factory",
            return_value=_factory_yielding(mock_session),
        ):
            gen = get_session()
            session = await gen.__anext__()
            assert session is mock_session
            with contextlib.suppress(StopAsyncIteration):
                await gen.__anext__()

        mock_session.commit.assert_awaited_once()

    async def test_rolls_back_on_error(self) -> None:
        """Session is rolled back when the request fails."""
        mock_session = AsyncMock()
        with patch(
            "src.db.session._get_session_factory",
            return_value=_factory_yielding(mock_session),
        ):
            gen = get_session()
            await gen.__anext__()
            with pytest.raises(RuntimeError):
                await gen.athrow(RuntimeError("boom"))

        mock_session.rollback.assert_awaited_once()
        mock_session.commit.assert_not_awaited()


class TestSessionScope:
    """Standalone sessions for background jobs."""

    def test_returns_factory_session(self) -> None:
        """session_scope opens a session from the shared factory."""
        mock_factory = MagicMock()
        with patch("src.db.session._get_session_factory", return_value=mock_factory):
            session = session_scope()
        assert session is mock_factory.return_value


class TestEngine:
    """Engine configuration from settings."""

    def test_pool_from_settings(self, settings) -> None:
        """Pool sizing comes from settings and connections are pinged."""
        tuned = settings.model_copy(update={"db_pool_size": 2, "db_max_overflow": 0})
        with (
            patch("src.db.session._engine", None),
            patch("src.db.session.get_settings", return_value=tuned),
            patch("src.db.session.create_async_engine") as create,
        ):
            _get_engine()

        kwargs = create.call_args.kwargs
        assert create.call_args.args[0].startswith("postgresql+asyncpg://")
        assert kwargs["pool_size"] == 2
        assert kwargs["max_overflow"] == 0
        assert kwargs["pool_pre_ping"] is True
