"""Long-lived interactive processes, one event channel per session."""

from __future__ import annotations

import asyncio
import inspect
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from loguru import logger

from protoshell.core.types import SessionState, ShellContext
from protoshell.errors import ExecutionFailure, SessionNotFoundError, SessionNotRunningError
from protoshell.events import ShellEvents
from protoshell.execution.service import ExecutionService, ProcessHandle, SessionEvent

DEFAULT_QUEUE_SIZE = 256
_FINISHED = (SessionState.STOPPED, SessionState.ERROR)


@dataclass
class SessionHandlers:
    """Caller callbacks; each may be a plain function or a coroutine function."""

    on_output: Callable[[str], Any] | None = None
    on_error: Callable[[str], Any] | None = None
    on_close: Callable[[int], Any] | None = None
    on_state_change: Callable[[SessionState], Any] | None = None


@dataclass
class InteractiveSession:
    id: str
    command: str
    args: list[str]
    state: SessionState = SessionState.STARTING
    handle: ProcessHandle | None = None
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    exit_code: int | None = None
    channel: asyncio.Queue[SessionEvent] = field(default_factory=asyncio.Queue, repr=False)
    handlers: SessionHandlers = field(default_factory=SessionHandlers, repr=False)
    consumer: asyncio.Task[None] | None = field(default=None, repr=False)
    closed: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def is_active(self) -> bool:
        return self.state in (SessionState.STARTING, SessionState.RUNNING)


async def _call(callback: Callable[..., Any] | None, *args: Any) -> None:
    if callback is None:
        return
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.exception("session.handler.error")


class InteractiveSessionManager:
    """Starts interactive programs and relays their events to handlers.

    The execution service produces events into the session's bounded
    channel and a single consumer task per session dispatches them.
    """

    def __init__(
        self,
        service: ExecutionService,
        *,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        events: ShellEvents | None = None,
    ) -> None:
        self._service = service
        self._queue_size = queue_size
        self._events = events or ShellEvents()
        self._sessions: dict[str, InteractiveSession] = {}

    async def start_session(
        self,
        command: str,
        args: list[str],
        context: ShellContext,
        handlers: SessionHandlers | None = None,
    ) -> str:
        handlers = handlers or SessionHandlers()
        session = InteractiveSession(
            id=f"session-{uuid.uuid4().hex[:8]}",
            command=command,
            args=list(args),
            channel=asyncio.Queue(maxsize=self._queue_size),
            handlers=handlers,
        )
        self._sessions[session.id] = session
        logger.info("session.start id={} command={} args={}", session.id, command, args)
        try:
            session.handle = await self._service.start_interactive(command, list(args), context, session.channel)
        except Exception:
            logger.exception("session.spawn.error id={}", session.id)
            if session.state not in _FINISHED:
                session.end_time = datetime.now(UTC)
                await self._set_state(session, SessionState.ERROR, handlers)
            session.closed.set()
            raise

        session.consumer = asyncio.create_task(self._consume(session, handlers), name=session.id)
        if session.state is SessionState.STOPPED:
            # Killed while the spawn was pending; never reaches RUNNING.
            logger.info("session.spawn.killed id={}", session.id)
            await self._service.kill(session.handle)
            return session.id
        await self._set_state(session, SessionState.RUNNING, handlers)
        return session.id

    async def _set_state(self, session: InteractiveSession, state: SessionState, handlers: SessionHandlers) -> None:
        session.state = state
        logger.info("session.state id={} state={}", session.id, state)
        await _call(handlers.on_state_change, state)

    async def _consume(self, session: InteractiveSession, handlers: SessionHandlers) -> None:
        while True:
            event = await session.channel.get()
            if event.kind == "stdout":
                self._events.emit("output", self, session_id=session.id, text=event.payload)
                await _call(handlers.on_output, event.payload)
            elif event.kind == "stderr":
                self._events.emit("error", self, session_id=session.id, text=event.payload)
                await _call(handlers.on_error, event.payload)
            else:
                session.exit_code = int(event.payload)
                if session.state not in _FINISHED:
                    session.end_time = datetime.now(UTC)
                    await self._set_state(session, SessionState.STOPPED, handlers)
                logger.info("session.closed id={} exit_code={}", session.id, session.exit_code)
                session.closed.set()
                await _call(handlers.on_close, session.exit_code)
                return

    async def write_to_session(self, session_id: str, data: str) -> None:
        session = self._require(session_id)
        if session.state is not SessionState.RUNNING or session.handle is None:
            raise SessionNotRunningError(session_id, session.state)
        try:
            await self._service.write(session.handle, data)
        except OSError as exc:
            raise ExecutionFailure(f"session write failed: {exc}") from exc

    async def kill_session(self, session_id: str) -> bool:
        """Terminate a session. Returns False for unknown or finished sessions."""
        session = self._sessions.get(session_id)
        if session is None or session.state in _FINISHED:
            return False
        if session.handle is not None:
            await self._service.kill(session.handle)
        session.end_time = datetime.now(UTC)
        await self._set_state(session, SessionState.STOPPED, session.handlers)
        logger.info("session.killed id={}", session_id)
        return True

    async def wait_closed(self, session_id: str, timeout: float | None = None) -> int | None:
        """Wait for the process behind a session to exit; returns its exit code."""
        session = self._require(session_id)
        await asyncio.wait_for(session.closed.wait(), timeout=timeout)
        return session.exit_code

    def cleanup_session(self, session_id: str) -> bool:
        """Forget a finished session."""
        session = self._sessions.get(session_id)
        if session is None or session.is_active:
            return False
        if session.consumer is not None and not session.consumer.done():
            session.consumer.cancel()
        del self._sessions[session_id]
        return True

    def get_session(self, session_id: str) -> InteractiveSession | None:
        return self._sessions.get(session_id)

    def sessions(self) -> list[InteractiveSession]:
        return sorted(self._sessions.values(), key=lambda session: session.start_time)

    def active_sessions(self) -> list[InteractiveSession]:
        return [session for session in self.sessions() if session.is_active]

    def _require(self, session_id: str) -> InteractiveSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def shutdown(self) -> None:
        for session in self.active_sessions():
            await self.kill_session(session.id)
        consumers = [session.consumer for session in self._sessions.values() if session.consumer is not None]
        for consumer in consumers:
            consumer.cancel()
        if consumers:
            await asyncio.gather(*consumers, return_exceptions=True)
