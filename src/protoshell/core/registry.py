"""Name-keyed registry of built-in commands."""

from __future__ import annotations

import builtins
import inspect
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from protoshell.core.cancellation import CancellationToken
from protoshell.core.types import ExecutionResult, ShellContext


def _shorten_text(text: str, width: int = 30, placeholder: str = "...") -> str:
    if len(text) <= width:
        return text
    available = width - len(placeholder)
    if available <= 0:
        return placeholder
    return text[:available] + placeholder


@dataclass
class Invocation:
    """Everything a built-in handler receives for one call."""

    args: list[str]
    context: ShellContext
    stdin: str | None = None
    token: CancellationToken | None = None


HandlerResult = ExecutionResult | str | None
Handler = Callable[[Invocation], HandlerResult | Awaitable[HandlerResult]]


@dataclass(frozen=True)
class ShellCommand:
    """Built-in command metadata and handler."""

    name: str
    description: str
    handler: Handler
    usage: str = ""
    examples: tuple[str, ...] = ()
    aliases: tuple[str, ...] = ()
    kind: str = "builtin"

    @property
    def word_count(self) -> int:
        return len(self.name.split())

    async def run(self, invocation: Invocation) -> ExecutionResult:
        result = self.handler(invocation)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, ExecutionResult):
            return result
        return ExecutionResult.ok("" if result is None else str(result))


@dataclass
class CommandRegistry:
    """Maps command names, multi-word names and aliases to built-ins."""

    _commands: dict[str, ShellCommand] = field(default_factory=dict)

    def register(
        self,
        command: ShellCommand | None = None,
        *,
        name: str | None = None,
        description: str = "",
        usage: str = "",
        examples: Sequence[str] = (),
        aliases: Sequence[str] = (),
        kind: str = "builtin",
    ) -> Any:
        """Register a command directly, or decorate a handler."""

        if command is not None:
            self._add(command)
            return command

        def decorator(func: Handler) -> Handler:
            self._add(
                ShellCommand(
                    name=name or func.__name__,
                    description=description or (inspect.getdoc(func) or "").split("\n", 1)[0],
                    handler=func,
                    usage=usage or (name or func.__name__),
                    examples=tuple(examples),
                    aliases=tuple(aliases),
                    kind=kind,
                )
            )
            return func

        return decorator

    def _add(self, command: ShellCommand) -> None:
        wrapped = ShellCommand(
            name=command.name,
            description=command.description,
            handler=self._wrap_handler(command),
            usage=command.usage,
            examples=command.examples,
            aliases=command.aliases,
            kind=command.kind,
        )
        for key in (command.name, *command.aliases):
            self._commands[key] = wrapped

    def unregister(self, name: str) -> None:
        command = self._commands.pop(name, None)
        if command is None:
            return
        for key in (command.name, *command.aliases):
            if self._commands.get(key) is command:
                del self._commands[key]

    def get(self, name: str) -> ShellCommand | None:
        return self._commands.get(name)

    def has(self, name: str) -> bool:
        return name in self._commands

    def names(self) -> builtins.list[str]:
        return sorted(self._commands)

    def commands(self) -> builtins.list[ShellCommand]:
        unique = {command.name: command for command in self._commands.values()}
        return sorted(unique.values(), key=lambda item: item.name)

    def resolve(self, words: Sequence[str]) -> tuple[ShellCommand | None, builtins.list[str]]:
        """Match the longest registered name at the head of `words`."""

        if not words:
            return None, []
        if len(words) >= 2:
            command = self.get(f"{words[0]} {words[1]}")
            if command is not None:
                return command, list(words[2:])
        return self.get(words[0]), list(words[1:])

    def resolve_name(self, words: Sequence[str]) -> tuple[str, builtins.list[str]]:
        """Logical command name and remaining arguments, for history records."""

        command, args = self.resolve(words)
        if command is not None and command.word_count > 1:
            return " ".join(words[: command.word_count]), args
        if not words:
            return "", []
        return words[0], list(words[1:])

    def kinds(self) -> builtins.list[str]:
        """Registered command kinds, plain built-ins first."""
        return sorted({command.kind for command in self.commands()}, key=lambda kind: (kind != "builtin", kind))

    def compact_rows(self, kind: str | None = None) -> builtins.list[str]:
        commands = [command for command in self.commands() if kind is None or command.kind == kind]
        width = max((len(command.name) for command in commands), default=0)
        return [f"{command.name.ljust(width)}  - {command.description}" for command in commands]

    def detail(self, name: str) -> str:
        command = self.get(name)
        if command is None:
            raise KeyError(name)
        text = f"{command.name} - {command.description}\n\nUsage: {command.usage}"
        if command.aliases:
            text += f"\nAliases: {', '.join(command.aliases)}"
        if command.examples:
            text += "\n\nExamples:\n" + "\n".join(f"  {example}" for example in command.examples)
        return text

    def _wrap_handler(self, command: ShellCommand) -> Handler:
        original = command

        async def _handler(invocation: Invocation) -> ExecutionResult:
            rendered = _shorten_text(" ".join(invocation.args), width=40)
            logger.debug("command.call.start name={} args={}", original.name, rendered)
            start = time.monotonic()
            try:
                return await original.run(invocation)
            except Exception:
                logger.exception("command.call.error name={}", original.name)
                raise
            finally:
                duration = time.monotonic() - start
                logger.debug("command.call.end name={} duration={:.3f}ms", original.name, duration * 1000)

        return _handler
