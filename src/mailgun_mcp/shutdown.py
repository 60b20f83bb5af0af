"""Graceful shutdown for the HTTP transport."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from enum import Enum
from types import FrameType
from typing import Callable, Optional

import uvicorn

from .sessions import SessionRegistry

logger = logging.getLogger(__name__)


class ShutdownState(str, Enum):
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


def _force_exit(status: int) -> None:
    os._exit(status)


class ShutdownCoordinator:
    """Running -> Draining -> Stopped, with a force-exit deadline.

    ``begin`` closes every live session, then calls ``stop_accepting`` so the
    listener stops. If ``finish`` is not reached within ``grace_seconds`` the
    ``force_exit`` callable is invoked with status 1.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        grace_seconds: float = 10,
        force_exit: Callable[[int], None] = _force_exit,
    ) -> None:
        self.registry = registry
        self.grace_seconds = grace_seconds
        self.force_exit = force_exit
        self._state = ShutdownState.RUNNING
        self._timer: Optional[asyncio.TimerHandle] = None
        self._drain_task: Optional[asyncio.Task[None]] = None

    @property
    def state(self) -> ShutdownState:
        return self._state

    def begin(self, reason: str, stop_accepting: Optional[Callable[[], None]] = None) -> None:
        if self._state is not ShutdownState.RUNNING:
            logger.info("Shutdown already in progress (%s)", reason)
            return

        logger.info("Received %s, shutting down gracefully", reason)
        self._state = ShutdownState.DRAINING
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.grace_seconds, self._expire)
        self._drain_task = loop.create_task(self._drain(stop_accepting))

    async def wait_drained(self) -> None:
        if self._drain_task is not None:
            await self._drain_task

    def finish(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._state is not ShutdownState.STOPPED:
            self._state = ShutdownState.STOPPED
            logger.info("Server closed")

    async def _drain(self, stop_accepting: Optional[Callable[[], None]]) -> None:
        try:
            await self.registry.close_all()
        except Exception:
            logger.exception("Error while closing sessions")
        finally:
            if stop_accepting is not None:
                stop_accepting()

    def _expire(self) -> None:
        self._timer = None
        if self._state is ShutdownState.STOPPED:
            return
        logger.error("Forcing shutdown after %ss timeout", self.grace_seconds)
        self.force_exit(1)


class GracefulServer(uvicorn.Server):
    """uvicorn server that drains MCP sessions before it stops listening."""

    def __init__(self, config: uvicorn.Config, coordinator: ShutdownCoordinator) -> None:
        super().__init__(config)
        self.coordinator = coordinator

    def handle_exit(self, sig: int, frame: Optional[FrameType]) -> None:
        try:
            reason = signal.Signals(sig).name
        except ValueError:
            reason = str(sig)
        self.coordinator.begin(reason, stop_accepting=lambda: super(GracefulServer, self).handle_exit(sig, frame))

    async def serve(self, sockets=None) -> None:  # type: ignore[no-untyped-def]
        try:
            await super().serve(sockets=sockets)
        finally:
            self.coordinator.finish()
