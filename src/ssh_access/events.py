"""
Structured JSONL events for ssh_access.

Every step of a run (dial, authentication, session, each batch command,
subsystem forwarding, disconnect) is recorded as an Event so a run can be
inspected after the fact without scraping log lines.

All events include:
- event_type: One of EventType
- timestamp: Unix timestamp in milliseconds
- data: Event-specific structured data
"""
from __future__ import annotations

import json
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import IO, Any, Iterator, Protocol

from ssh_access.errors import SSHError


class EventType(str, Enum):
    """Event categories."""
    CONNECT = "CONNECT"
    AUTH = "AUTH"
    SESSION = "SESSION"
    EXEC = "EXEC"
    SUBSYSTEM = "SUBSYSTEM"
    DISCONNECT = "DISCONNECT"
    ERROR = "ERROR"


@dataclass
class Event:
    """
    A single immutable record of something that happened during a run.
    """
    event_type: str
    timestamp: float = field(default_factory=lambda: time.time() * 1000)
    data: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        valid_types = {e.value for e in EventType}
        assert self.event_type in valid_types, \
            f"Invalid event_type '{self.event_type}'. Must be one of: {valid_types}"
        assert self.timestamp > 0, \
            f"Timestamp must be positive, got {self.timestamp}"

    def to_json(self) -> str:
        """Serialise event to a single JSON line."""
        return json.dumps(asdict(self), default=str)

    @classmethod
    def from_json(cls, json_str: str) -> "Event":
        """Deserialise event from JSON string."""
        data = json.loads(json_str)
        return cls(
            event_type=data["event_type"],
            timestamp=data["timestamp"],
            data=data.get("data", {}),
        )


class EventSink(Protocol):
    def emit(self, event: Event) -> None: ...


class EventCollector:
    """Keeps events in memory, for tests and for the CLI's --events dump."""

    def __init__(self) -> None:
        self._events: list[Event] = []

    def emit(self, event: Event) -> None:
        assert isinstance(event, Event), f"Expected Event, got {type(event)}"
        self._events.append(event)

    @property
    def events(self) -> list[Event]:
        """Return a copy of the collected events."""
        return list(self._events)

    def clear(self) -> None:
        self._events.clear()

    def get_by_type(self, event_type: str | EventType) -> list[Event]:
        """Get all events of a specific type."""
        if isinstance(event_type, EventType):
            event_type = event_type.value
        return [e for e in self._events if e.event_type == event_type]

    def dump(self, stream: IO[str]) -> None:
        """Write every collected event to ``stream`` as JSONL."""
        for event in self._events:
            stream.write(event.to_json() + "\n")
        stream.flush()


class JSONLEventWriter:
    """
    Appends events to a JSONL file, one event per line, flushed
    immediately so a crashed run still leaves a readable log.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._file: IO[str] | None = None

    def open(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self._path, "a", encoding="utf-8")

    def close(self) -> None:
        if self._file:
            self._file.close()
            self._file = None

    def emit(self, event: Event) -> None:
        assert self._file is not None, "Writer not opened. Call open() first."
        self._file.write(event.to_json() + "\n")
        self._file.flush()

    def __enter__(self) -> "JSONLEventWriter":
        self.open()
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class EventEmitter:
    """
    Dispatches events to any number of sinks.

    Components accept an optional emitter; passing None is never
    required because ``EventEmitter()`` with no sinks discards events.
    """

    def __init__(
        self,
        collector: EventCollector | None = None,
        jsonl_path: Path | str | None = None,
    ) -> None:
        self._sinks: list[EventSink] = []
        self._jsonl_writer: JSONLEventWriter | None = None

        if collector is not None:
            self._sinks.append(collector)

        if jsonl_path:
            self._jsonl_writer = JSONLEventWriter(jsonl_path)
            self._jsonl_writer.open()
            self._sinks.append(self._jsonl_writer)

    def emit(self, event_type: str | EventType, **data: Any) -> Event:
        """
        Create an event and hand it to every sink.

        Returns:
            The created event
        """
        if isinstance(event_type, EventType):
            event_type = event_type.value

        event = Event(event_type=event_type, data=data)
        for sink in self._sinks:
            sink.emit(event)
        return event

    def error(self, exc: BaseException, **data: Any) -> Event:
        """Emit an ERROR event describing ``exc``."""
        if isinstance(exc, SSHError):
            details = exc.to_dict()
        else:
            details = {"error_type": type(exc).__name__, "message": str(exc)}
        return self.emit(EventType.ERROR, **{**data, **details})

    def close(self) -> None:
        if self._jsonl_writer:
            self._jsonl_writer.close()
            self._jsonl_writer = None

    @contextmanager
    def timed_event(
        self,
        event_type: str | EventType,
        **initial_data: Any,
    ) -> Iterator[dict[str, Any]]:
        """
        Time the enclosed block and emit one event when it exits.

        The yielded dict is the event's data; fill it in as the operation
        progresses. ``duration_ms`` is added on exit, and ``error`` too if
        the block raised.

        Usage:
            with emitter.timed_event(EventType.EXEC, command=cmd) as data:
                status = await run(cmd)
                data["exit_status"] = status
        """
        start_ms = time.time() * 1000
        event_data = dict(initial_data)

        try:
            yield event_data
        except BaseException as e:
            event_data.setdefault("error", str(e) or type(e).__name__)
            raise
        finally:
            event_data["duration_ms"] = (time.time() * 1000) - start_ms
            self.emit(event_type, **event_data)


def read_jsonl_events(path: Path | str) -> list[Event]:
    """Read all events from a JSONL file."""
    path = Path(path)
    assert path.exists(), f"JSONL file not found: {path}"

    events = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                events.append(Event.from_json(line))

    return events
