"""`proto ...` commands for protocol debugging sessions."""

from __future__ import annotations

import base64
from typing import Literal, Protocol

from pydantic import BaseModel, Field

from protoshell.core.registry import CommandRegistry, Invocation
from protoshell.core.types import ExecutionResult
from protoshell.errors import ParseError

ConnectionStatus = Literal["connected", "connecting", "disconnected", "error"]
DataFormat = Literal["ascii", "hex", "base64"]
DATA_FORMATS: tuple[DataFormat, ...] = ("ascii", "hex", "base64")

_STATUS_ICONS = {"connected": "✓", "connecting": "⋯"}


class ProtocolSession(BaseModel):
    id: str = Field(..., description="Session id")
    name: str = Field(..., description="Display name")
    protocol: str = Field(..., description="TCP, UDP, WebSocket, MQTT or SSE")
    connection_type: str = Field(default="client", description="client or server")
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=0, ge=0, le=65535)
    status: ConnectionStatus = "disconnected"
    messages: int = Field(default=0, ge=0)
    bytes_sent: int = Field(default=0, ge=0)
    bytes_received: int = Field(default=0, ge=0)

    @property
    def icon(self) -> str:
        return _STATUS_ICONS.get(self.status, "✗")


class ProtocolSessionStore(Protocol):
    """Access to the protocol sessions managed outside the shell."""

    def list_sessions(self) -> list[ProtocolSession]: ...

    def get_session(self, session_id: str) -> ProtocolSession | None: ...

    async def connect(self, session_id: str) -> bool: ...

    async def disconnect(self, session_id: str) -> bool: ...

    async def send(self, session_id: str, data: bytes) -> bool: ...


class InMemoryProtocolSessionStore:
    """Session store without a network behind it; sent payloads are recorded."""

    def __init__(self, sessions: list[ProtocolSession] | None = None) -> None:
        self._sessions: dict[str, ProtocolSession] = {}
        self.sent: dict[str, list[bytes]] = {}
        for session in sessions or []:
            self.add(session)

    def add(self, session: ProtocolSession) -> None:
        self._sessions[session.id] = session

    def list_sessions(self) -> list[ProtocolSession]:
        return list(self._sessions.values())

    def get_session(self, session_id: str) -> ProtocolSession | None:
        return self._sessions.get(session_id)

    async def connect(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        session.status = "connected"
        return True

    async def disconnect(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        session.status = "disconnected"
        return True

    async def send(self, session_id: str, data: bytes) -> bool:
        session = self._sessions.get(session_id)
        if session is None or session.status != "connected":
            return False
        self.sent.setdefault(session_id, []).append(data)
        session.messages += 1
        session.bytes_sent += len(data)
        return True


def encode_payload(text: str, data_format: DataFormat) -> bytes:
    """Turn the textual argument of `proto send` into bytes. Raises ParseError."""
    try:
        if data_format == "hex":
            return bytes.fromhex(text.replace(" ", ""))
        if data_format == "base64":
            return base64.b64decode(text, validate=True)
    except ValueError as exc:
        raise ParseError(str(exc)) from exc
    return text.encode("utf-8")


def _split_format(args: list[str]) -> tuple[list[str], DataFormat]:
    data_format: DataFormat = "ascii"
    if "--format" not in args:
        return args, data_format
    index = args.index("--format")
    if index + 1 < len(args):
        value = args[index + 1].lower()
        if value in DATA_FORMATS:
            data_format = value  # type: ignore[assignment]
        return args[:index] + args[index + 2 :], data_format
    return args[:index], data_format


def register_proto_commands(registry: CommandRegistry, *, store: ProtocolSessionStore) -> None:
    """Register the multi-word `proto` commands."""

    register = registry.register

    @register(
        name="proto sessions",
        description="List all protocol sessions",
        usage="proto sessions [--protocol tcp|udp|websocket|mqtt|sse]",
        examples=["proto sessions", "proto sessions --protocol tcp"],
        kind="proto",
    )
    def list_sessions(inv: Invocation) -> str:
        sessions = store.list_sessions()
        protocol_filter = None
        if "--protocol" in inv.args:
            index = inv.args.index("--protocol")
            if index + 1 < len(inv.args):
                protocol_filter = inv.args[index + 1].upper()
                sessions = [session for session in sessions if session.protocol.upper() == protocol_filter]
        if not sessions:
            return f"No {protocol_filter} sessions" if protocol_filter else "No sessions"
        header = f"  {'ID'.ljust(25)} {'Name'.ljust(20)} {'Protocol'.ljust(10)} {'Type'.ljust(8)} Address"
        rows = [
            f"{session.icon} {session.id.ljust(25)} {session.name.ljust(20)} {session.protocol.ljust(10)} "
            f"{session.connection_type.ljust(8)} {session.host}:{session.port}"
            for session in sessions
        ]
        return "\n".join([header, "-" * 100, *rows])

    @register(
        name="proto status",
        description="Show protocol session status",
        usage="proto status [session-id]",
        examples=["proto status", "proto status tcp-client-1"],
        kind="proto",
    )
    def status(inv: Invocation) -> ExecutionResult:
        if inv.args:
            session = store.get_session(inv.args[0])
            if session is None:
                return ExecutionResult.failure(f"Session not found: {inv.args[0]}")
            return ExecutionResult.ok(
                "\n".join(
                    [
                        f"Session: {session.name}",
                        f"ID: {session.id}",
                        f"Protocol: {session.protocol}",
                        f"Type: {session.connection_type}",
                        f"Host: {session.host}:{session.port}",
                        f"Status: {session.status}",
                        f"Messages: {session.messages}",
                        f"Bytes Sent: {session.bytes_sent}",
                        f"Bytes Received: {session.bytes_received}",
                    ]
                )
            )
        sessions = store.list_sessions()
        if not sessions:
            return ExecutionResult.ok("No sessions")
        return ExecutionResult.ok(
            "\n".join(
                f"{session.icon} {session.name.ljust(20)} {session.protocol.ljust(10)} {session.status}"
                for session in sessions
            )
        )

    @register(
        name="proto connect",
        description="Connect a protocol session",
        usage="proto connect <session-id>",
        examples=["proto connect tcp-client-1"],
        kind="proto",
    )
    async def connect(inv: Invocation) -> ExecutionResult:
        if not inv.args:
            return ExecutionResult.failure("Usage: proto connect <session-id>")
        session_id = inv.args[0]
        session = store.get_session(session_id)
        if session is None:
            return ExecutionResult.failure(f"Session not found: {session_id}")
        if session.status == "connected":
            return ExecutionResult.ok(f"Session {session_id} is already connected")
        if not await store.connect(session_id):
            return ExecutionResult.failure("Connection failed")
        return ExecutionResult.ok(
            f"Connected to session: {session.name} ({session.protocol} {session.connection_type})"
        )

    @register(
        name="proto disconnect",
        description="Disconnect a protocol session",
        usage="proto disconnect <session-id>",
        examples=["proto disconnect tcp-client-1"],
        kind="proto",
    )
    async def disconnect(inv: Invocation) -> ExecutionResult:
        if not inv.args:
            return ExecutionResult.failure("Usage: proto disconnect <session-id>")
        session_id = inv.args[0]
        session = store.get_session(session_id)
        if session is None:
            return ExecutionResult.failure(f"Session not found: {session_id}")
        if session.status == "disconnected":
            return ExecutionResult.ok(f"Session {session_id} is already disconnected")
        if not await store.disconnect(session_id):
            return ExecutionResult.failure("Disconnect failed")
        return ExecutionResult.ok(f"Disconnected from session: {session.name}")

    @register(
        name="proto send",
        description="Send data to a connected protocol session",
        usage="proto send <session-id> <data> [--format hex|ascii|base64]",
        examples=["proto send tcp-client-1 Hello", "proto send tcp-client-1 48656c6c6f --format hex"],
        kind="proto",
    )
    async def send(inv: Invocation) -> ExecutionResult:
        args, data_format = _split_format(inv.args)
        if len(args) < 2:
            return ExecutionResult.failure("Usage: proto send <session-id> <data> [--format hex|ascii|base64]")
        session_id, text = args[0], " ".join(args[1:])
        session = store.get_session(session_id)
        if session is None:
            return ExecutionResult.failure(f"Session not found: {session_id}")
        if session.status != "connected":
            return ExecutionResult.failure(f"Session {session_id} is not connected")
        try:
            payload = encode_payload(text, data_format)
        except ParseError as exc:
            return ExecutionResult.failure(f"Invalid {data_format} data: {exc}")
        if not await store.send(session_id, payload):
            return ExecutionResult.failure("Send failed")
        return ExecutionResult.ok(f"Data sent to session: {session.name} ({len(payload)} bytes)")

    @register(name="proto", description="Protocol session commands", usage="proto <subcommand> [args...]", kind="proto")
    def proto(inv: Invocation) -> ExecutionResult:
        if inv.args:
            return ExecutionResult.failure(f"Unknown proto subcommand: {inv.args[0]}")
        commands = [command for command in registry.commands() if command.kind == "proto" and command.word_count > 1]
        return ExecutionResult.ok("\n".join(f"{command.usage}\n    {command.description}" for command in commands))
