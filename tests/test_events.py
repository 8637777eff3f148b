import pytest
from blinker import Signal

from protoshell.events import EVENT_NAMES, ShellEvents


def test_subscribe_and_disconnect() -> None:
    events = ShellEvents()
    seen: list[dict[str, object]] = []

    disconnect = events.subscribe("output", lambda sender, **payload: seen.append(payload))
    events.emit("output", None, session_id="s1", text="hi")
    disconnect()
    events.emit("output", None, session_id="s1", text="ignored")

    assert seen == [{"session_id": "s1", "text": "hi"}]


def test_every_event_has_a_signal() -> None:
    events = ShellEvents()

    signals = [events.signal(name) for name in EVENT_NAMES]

    assert all(isinstance(signal, Signal) for signal in signals)
    assert len({id(signal) for signal in signals}) == len(EVENT_NAMES)
    with pytest.raises(KeyError):
        events.signal("nope")


def test_instances_do_not_share_receivers() -> None:
    first, second = ShellEvents(), ShellEvents()
    seen: list[str] = []
    first.subscribe("job_end", lambda sender, **payload: seen.append("first"))

    second.emit("job_end", None, job=None, result=None)

    assert seen == []
