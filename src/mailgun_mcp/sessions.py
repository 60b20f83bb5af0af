"""In-memory registry of streamable HTTP sessions."""

from __future__ import annotations

import logging
import secrets
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional

import anyio
from anyio.abc import TaskGroup, TaskStatus
from mcp.server.streamable_http import StreamableHTTPServerTransport

logger = logging.getLogger(__name__)


class SessionRegistryError(RuntimeError):
    pass


@dataclass
class Session:
    session_id: str
    transport: StreamableHTTPServerTransport
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class SessionRegistry:
    """Maps session identifiers to live per-session transports.

    All mutation happens on the event loop through :meth:`create` and
    :meth:`_forget`, so an identifier maps to at most one transport. Each
    session's protocol loop runs in the registry's task group; when that loop
    ends (explicit termination or a transport failure) the entry is removed.
    """

    def __init__(self, server: Any, json_response: bool = False) -> None:
        self.server = server
        self.json_response = json_response
        self._sessions: Dict[str, Session] = {}
        self._task_group: Optional[TaskGroup] = None

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def get(self, session_id: Optional[str]) -> Optional[Session]:
        if session_id is None:
            return None
        return self._sessions.get(session_id)

    def session_ids(self) -> List[str]:
        return list(self._sessions)

    @asynccontextmanager
    async def run(self) -> AsyncIterator[None]:
        if self._task_group is not None:
            raise SessionRegistryError("Session registry is already running")
        async with anyio.create_task_group() as task_group:
            self._task_group = task_group
            try:
                yield
            finally:
                await self.close_all()
                task_group.cancel_scope.cancel()
                self._task_group = None

    async def create(self) -> Session:
        if self._task_group is None:
            raise SessionRegistryError("Session registry is not running")

        session_id = self._new_session_id()
        transport = StreamableHTTPServerTransport(
            mcp_session_id=session_id,
            is_json_response_enabled=self.json_response,
        )
        session = Session(session_id=session_id, transport=transport)
        self._sessions[session_id] = session
        await self._task_group.start(self._run_session, session)
        logger.info("New MCP session initialized: %s", session_id)
        return session

    async def terminate(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        await session.transport.terminate()
        self._forget(session_id, "terminated")
        return True

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            logger.info("Closing session: %s", session_id)
            await self.terminate(session_id)

    async def _run_session(
        self, session: Session, *, task_status: TaskStatus = anyio.TASK_STATUS_IGNORED
    ) -> None:
        async with session.transport.connect() as (read_stream, write_stream):
            task_status.started()
            try:
                await self.server.run(
                    read_stream,
                    write_stream,
                    self.server.create_initialization_options(),
                    stateless=False,
                )
            except Exception:
                logger.exception("Session %s failed", session.session_id)
            finally:
                self._forget(session.session_id, "closed")

    def _forget(self, session_id: str, reason: str) -> None:
        if self._sessions.pop(session_id, None) is not None:
            logger.info("MCP session %s: %s", reason, session_id)

    def _new_session_id(self) -> str:
        while True:
            session_id = secrets.token_hex(16)
            if session_id not in self._sessions:
                return session_id
