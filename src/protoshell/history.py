"""Command history stores."""

from __future__ import annotations

import json
import threading
from collections import deque
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from loguru import logger

from protoshell.core.types import HistoryEntry

DEFAULT_HISTORY_SIZE = 1000


class HistoryStore(Protocol):
    """Sink for executed commands. Lookups return newest entries first."""

    def append(self, entry: HistoryEntry) -> None: ...

    def recent(self, limit: int = 20) -> list[HistoryEntry]: ...

    def search(self, query: str) -> list[HistoryEntry]: ...

    def all(self) -> list[HistoryEntry]: ...

    def clear(self) -> None: ...


def _same_command(left: HistoryEntry, right: HistoryEntry) -> bool:
    return left.command == right.command and left.args == right.args


def _matches(entry: HistoryEntry, query: str) -> bool:
    needle = query.lower()
    return needle in entry.command.lower() or any(needle in arg.lower() for arg in entry.args)


class InMemoryHistory:
    """Bounded in-memory history that skips consecutive duplicates."""

    def __init__(self, max_size: int = DEFAULT_HISTORY_SIZE) -> None:
        self._entries: deque[HistoryEntry] = deque(maxlen=max_size)
        self._lock = threading.RLock()

    def append(self, entry: HistoryEntry) -> None:
        self._add(entry)

    def _add(self, entry: HistoryEntry) -> bool:
        with self._lock:
            if self._entries and _same_command(self._entries[-1], entry):
                return False
            self._entries.append(entry)
            return True

    def recent(self, limit: int = 20) -> list[HistoryEntry]:
        with self._lock:
            return list(reversed(self._entries))[: max(limit, 0)]

    def search(self, query: str) -> list[HistoryEntry]:
        with self._lock:
            return [entry for entry in reversed(self._entries) if _matches(entry, query)]

    def all(self) -> list[HistoryEntry]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


def _serialize(entry: HistoryEntry) -> dict[str, Any]:
    data = asdict(entry)
    data["timestamp"] = entry.timestamp.isoformat()
    return data


def _deserialize(data: dict[str, Any]) -> HistoryEntry:
    return HistoryEntry(
        id=str(data["id"]),
        command=str(data["command"]),
        args=[str(arg) for arg in data.get("args", [])],
        timestamp=datetime.fromisoformat(data["timestamp"]),
        cwd=str(data.get("cwd", "")),
        exit_code=int(data.get("exit_code", 0)),
        execution_time_ms=int(data.get("execution_time_ms", 0)),
        output=str(data.get("output", "")),
        error=data.get("error"),
    )


class JSONHistoryStore(InMemoryHistory):
    """
    History persisted to a JSON file.

    The whole file is rewritten after every change. Read and write errors
    are logged and the store keeps working from memory.
    """

    def __init__(self, file_path: str | Path, max_size: int = DEFAULT_HISTORY_SIZE) -> None:
        super().__init__(max_size=max_size)
        self.file_path = Path(file_path)
        for entry in self._load():
            self._entries.append(entry)

    def _load(self) -> list[HistoryEntry]:
        """Load entries from the JSON file."""
        if not self.file_path.exists():
            return []
        try:
            with open(self.file_path, encoding="utf-8") as f:
                raw = json.load(f)
            return [_deserialize(item) for item in raw]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error("history.load.error path={} error={}", self.file_path, e)
            return []

    def _save(self) -> None:
        """Write all entries to the JSON file."""
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.file_path, "w", encoding="utf-8") as f:
                json.dump([_serialize(entry) for entry in self._entries], f, ensure_ascii=False, indent=2)
        except OSError as e:
            logger.error("history.save.error path={} error={}", self.file_path, e)

    def append(self, entry: HistoryEntry) -> None:
        with self._lock:
            if self._add(entry):
                self._save()

    def clear(self) -> None:
        with self._lock:
            super().clear()
            self._save()
