"""
Tests for moneybridge/workers/pms_sync.py — scheduled PMS sync cycle.
"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from moneybridge.integrations.pms import PmsNotConfiguredError, PmsUnavailableError
from moneybridge.workers.pms_sync import (
    HEARTBEAT_KEY,
    _heartbeat,
    run_scheduled_sync,
    sync_window,
)


def _session_factory():
    session = AsyncMock()
    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=session)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)
    return factory, session


class TestSyncWindow:
    def test_mid_year(self):
        assert sync_window(datetime(2025, 8, 14, tzinfo=timezone.utc)) == ("2025-07", "2025-08")

    def test_january(self):
        assert sync_window(datetime(2026, 1, 2, tzinfo=timezone.utc)) == ("2025-12", "2026-01")


class TestRunScheduledSync:
    @pytest.mark.asyncio
    async def test_runs_sync_under_lock(self, mock_redis):
        factory, session = _session_factory()
        with (
            patch("moneybridge.workers.pms_sync.async_session_factory", factory),
            patch(
                "moneybridge.workers.pms_sync.sync_pms_revenues",
                new_callable=AsyncMock, return_value={"synced": 1},
            ) as mock_sync,
        ):
            result = await run_scheduled_sync()

        assert result == {"synced": 1}
        assert mock_sync.await_args.args[0] is session
        mock_redis.eval.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_skips_when_locked(self, mock_redis):
        mock_redis.set = AsyncMock(return_value=False)
        with patch("moneybridge.workers.pms_sync.sync_pms_revenues", new_callable=AsyncMock) as mock_sync:
            assert await run_scheduled_sync() is None
        mock_sync.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [PmsNotConfiguredError("no url"), PmsUnavailableError("down")])
    async def test_pms_errors_skip_cycle(self, mock_redis, error):
        factory, _ = _session_factory()
        with (
            patch("moneybridge.workers.pms_sync.async_session_factory", factory),
            patch(
                "moneybridge.workers.pms_sync.sync_pms_revenues",
                new_callable=AsyncMock, side_effect=error,
            ),
        ):
            assert await run_scheduled_sync() is None


class TestHeartbeat:
    @pytest.mark.asyncio
    async def test_writes_timestamp(self, mock_redis):
        await _heartbeat()
        assert mock_redis.set.await_args.args[0] == HEARTBEAT_KEY
        assert mock_redis.set.await_args.kwargs["ex"] > 0

    @pytest.mark.asyncio
    async def test_redis_failure_is_quiet(self):
        with patch(
            "moneybridge.utils.redis_client.get_redis",
            new_callable=AsyncMock, side_effect=ConnectionError("down"),
        ):
            await _heartbeat()
