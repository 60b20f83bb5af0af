"""Tests for the graceful shutdown coordinator."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, Mock

import pytest

from mailgun_mcp.shutdown import ShutdownCoordinator, ShutdownState


def _registry():
    registry = MagicMock()
    registry.close_all = AsyncMock()
    return registry


class TestShutdownCoordinator:
    @pytest.mark.asyncio
    async def test_begin_drains_sessions_then_stops_accepting(self):
        registry = _registry()
        stop_accepting = Mock()
        coordinator = ShutdownCoordinator(registry, grace_seconds=5, force_exit=Mock())

        coordinator.begin("SIGTERM", stop_accepting=stop_accepting)
        assert coordinator.state is ShutdownState.DRAINING
        await coordinator.wait_drained()

        registry.close_all.assert_awaited_once()
        stop_accepting.assert_called_once_with()
        coordinator.finish()
        assert coordinator.state is ShutdownState.STOPPED

    @pytest.mark.asyncio
    async def test_second_signal_is_ignored(self):
        registry = _registry()
        stop_accepting = Mock()
        coordinator = ShutdownCoordinator(registry, grace_seconds=5, force_exit=Mock())

        coordinator.begin("SIGTERM", stop_accepting=stop_accepting)
        coordinator.begin("SIGINT", stop_accepting=stop_accepting)
        await coordinator.wait_drained()

        registry.close_all.assert_awaited_once()
        stop_accepting.assert_called_once_with()
        coordinator.finish()

    @pytest.mark.asyncio
    async def test_deadline_forces_exit(self):
        async def slow_close():
            await asyncio.sleep(0.2)

        registry = _registry()
        registry.close_all = AsyncMock(side_effect=slow_close)
        force_exit = Mock()
        coordinator = ShutdownCoordinator(registry, grace_seconds=0.01, force_exit=force_exit)

        coordinator.begin("SIGTERM")
        await asyncio.sleep(0.05)

        force_exit.assert_called_once_with(1)
        coordinator.finish()
        await coordinator.wait_drained()

    @pytest.mark.asyncio
    async def test_finish_cancels_deadline(self):
        force_exit = Mock()
        coordinator = ShutdownCoordinator(_registry(), grace_seconds=0.01, force_exit=force_exit)

        coordinator.begin("SIGTERM")
        await coordinator.wait_drained()
        coordinator.finish()
        await asyncio.sleep(0.05)

        force_exit.assert_not_called()
        assert coordinator.state is ShutdownState.STOPPED

    @pytest.mark.asyncio
    async def test_drain_failure_still_stops_accepting(self):
        registry = _registry()
        registry.close_all = AsyncMock(side_effect=RuntimeError("boom"))
        stop_accepting = Mock()
        coordinator = ShutdownCoordinator(registry, grace_seconds=5, force_exit=Mock())

        coordinator.begin("SIGTERM", stop_accepting=stop_accepting)
        await coordinator.wait_drained()

        stop_accepting.assert_called_once_with()
        coordinator.finish()

    def test_starts_running(self):
        assert ShutdownCoordinator(_registry()).state is ShutdownState.RUNNING
