import json
from datetime import UTC, datetime
from pathlib import Path

from protoshell.core.types import HistoryEntry
from protoshell.history import InMemoryHistory, JSONHistoryStore


def _entry(command: str, *args: str, exit_code: int = 0) -> HistoryEntry:
    return HistoryEntry(
        id=f"{command}-{len(args)}-{exit_code}",
        command=command,
        args=list(args),
        timestamp=datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC),
        cwd="/work",
        exit_code=exit_code,
        execution_time_ms=7,
        output="out",
        error=None if exit_code == 0 else "failed",
    )


def test_recent_is_newest_first_and_limited() -> None:
    history = InMemoryHistory()
    for name in ("one", "two", "three"):
        history.append(_entry("echo", name))

    assert [entry.args for entry in history.recent(2)] == [["three"], ["two"]]
    assert [entry.args for entry in history.all()] == [["one"], ["two"], ["three"]]
    assert history.recent(0) == []


def test_consecutive_duplicates_are_skipped() -> None:
    history = InMemoryHistory()
    history.append(_entry("ls"))
    history.append(_entry("ls", exit_code=1))
    history.append(_entry("pwd"))
    history.append(_entry("ls"))

    assert [entry.command for entry in history.all()] == ["ls", "pwd", "ls"]


def test_history_is_bounded() -> None:
    history = InMemoryHistory(max_size=2)
    for name in ("a", "b", "c"):
        history.append(_entry("echo", name))

    assert [entry.args for entry in history.all()] == [["b"], ["c"]]


def test_search_is_case_insensitive() -> None:
    history = InMemoryHistory()
    history.append(_entry("ping", "Router.local"))
    history.append(_entry("PING", "other"))
    history.append(_entry("ls"))

    assert [entry.command for entry in history.search("ping")] == ["PING", "ping"]
    assert [entry.command for entry in history.search("router")] == ["ping"]


def test_json_store_persists_and_reloads(tmp_path: Path) -> None:
    path = tmp_path / "state" / "history.json"
    store = JSONHistoryStore(path)
    store.append(_entry("echo", "saved"))
    store.append(_entry("false", exit_code=1))

    reloaded = JSONHistoryStore(path)

    assert reloaded.all() == store.all()
    assert json.loads(path.read_text(encoding="utf-8"))[0]["timestamp"] == "2026-01-02T03:04:05+00:00"

    reloaded.clear()
    assert JSONHistoryStore(path).all() == []


def test_json_store_survives_corrupt_file(tmp_path: Path, monkeypatch) -> None:
    errors: list[str] = []
    monkeypatch.setattr("protoshell.history.logger.error", lambda message, *args: errors.append(message))
    path = tmp_path / "history.json"
    path.write_text("{not json", encoding="utf-8")

    store = JSONHistoryStore(path)
    store.append(_entry("ls"))

    assert errors == ["history.load.error path={} error={}"]
    assert [entry.command for entry in JSONHistoryStore(path).all()] == ["ls"]
