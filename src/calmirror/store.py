"""
In-memory calendar store guarded by a single reader/writer lock.
"""

import copy
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from typing import Iterable
from typing import Iterator
from urllib.parse import unquote

from calmirror.models import Event
from calmirror.models import SyncToken
from calmirror.models import Todo


def uid_from_path(path: str) -> str:
    """Return the uid a resource path names: its last segment minus ``.ics``."""
    name = unquote(path.rstrip("/").rsplit("/", 1)[-1])
    return name[: -len(".ics")] if name.endswith(".ics") else name


def path_matches_uid(path: str, uid: str) -> bool:
    """Deleted resources are correlated with stored items by ``<uid>.ics``."""
    return path.rstrip("/").endswith(".ics") and uid_from_path(path) == uid


class ReadWriteLock:
    """Many concurrent readers or one writer.

    Waiting writers block new readers so a steady stream of queries cannot
    starve the sync engine.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self):
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self):
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self):
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self):
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read_locked(self):
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self):
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


@dataclass
class CalendarData:
    """Container for all mirrored calendar data.

    Mutating methods assume the caller holds the store's write lock.
    """

    events: list[Event] = field(default_factory=list)
    todos: list[Todo] = field(default_factory=list)
    last_sync: datetime | None = None
    sync_tokens: dict[str, SyncToken] = field(default_factory=dict)
    calendar_colors: dict[str, str] = field(default_factory=dict)

    # ------------------------------------------------------------------ #
    # Queries                                                              #
    # ------------------------------------------------------------------ #

    def events_in_range(self, start: datetime, end: datetime) -> list[Event]:
        """Events overlapping the half-open range [start, end)."""
        return [e for e in self.events if e.start < end and e.end > start]

    def todos_in_range(self, start: datetime, end: datetime) -> list[Todo]:
        """Todos due in range, else starting in range; undated todos always match."""
        result = []
        for todo in self.todos:
            if todo.due is not None:
                matches = start <= todo.due < end
            elif todo.start is not None:
                matches = start <= todo.start < end
            else:
                matches = True
            if matches:
                result.append(todo)
        return result

    def incomplete_todos(self) -> list[Todo]:
        return [t for t in self.todos if t.status not in ("COMPLETED", "CANCELLED")]

    def has_items(self, calendar_url: str) -> bool:
        return any(e.calendar_url == calendar_url for e in self.events) or any(
            t.calendar_url == calendar_url for t in self.todos
        )

    def token_for(self, calendar_url: str) -> SyncToken:
        return self.sync_tokens.get(calendar_url, SyncToken.never_synced())

    # ------------------------------------------------------------------ #
    # Mutations                                                            #
    # ------------------------------------------------------------------ #

    def replace_by_uid(self, records: Iterable[Event | Todo]) -> int:
        """Upsert records: drop every stored item sharing a uid, then insert.

        All records for one uid (e.g. expanded occurrences) are inserted
        together, so a uid is never left half-replaced. Returns the number
        of records inserted.
        """
        records = list(records)
        event_uids = {r.uid for r in records if isinstance(r, Event)}
        todo_uids = {r.uid for r in records if isinstance(r, Todo)}
        if event_uids:
            self.events = [e for e in self.events if e.uid not in event_uids]
        if todo_uids:
            self.todos = [t for t in self.todos if t.uid not in todo_uids]
        for record in records:
            if isinstance(record, Event):
                self.events.append(record)
            else:
                self.todos.append(record)
        return len(records)

    def replace_collection(
        self, calendar_url: str, events: Iterable[Event], todos: Iterable[Todo]
    ) -> None:
        """Swap a collection's entire contents for a freshly fetched snapshot."""
        events = list(events)
        todos = list(todos)
        incoming_events = {e.uid for e in events}
        incoming_todos = {t.uid for t in todos}
        # A uid moved in from another collection must not survive twice.
        self.events = [
            e
            for e in self.events
            if e.calendar_url != calendar_url and e.uid not in incoming_events
        ]
        self.todos = [
            t
            for t in self.todos
            if t.calendar_url != calendar_url and t.uid not in incoming_todos
        ]
        self.events.extend(events)
        self.todos.extend(todos)

    def remove_by_path(self, calendar_url: str, path: str) -> int:
        """Delete the event(s) and todo whose uid names the resource at ``path``."""
        before = len(self.events) + len(self.todos)
        self.events = [
            e
            for e in self.events
            if not (e.calendar_url == calendar_url and path_matches_uid(path, e.uid))
        ]
        self.todos = [
            t
            for t in self.todos
            if not (t.calendar_url == calendar_url and path_matches_uid(path, t.uid))
        ]
        return before - len(self.events) - len(self.todos)

    def purge_stale(self, live_urls: set[str]) -> int:
        """Drop items, tokens and colours of collections no longer discovered."""
        before = len(self.events) + len(self.todos)
        self.events = [e for e in self.events if e.calendar_url in live_urls]
        self.todos = [t for t in self.todos if t.calendar_url in live_urls]
        for url in [u for u in self.sync_tokens if u not in live_urls]:
            del self.sync_tokens[url]
        for url in [u for u in self.calendar_colors if u not in live_urls]:
            del self.calendar_colors[url]
        return before - len(self.events) - len(self.todos)

    def mark_synced(self, when: datetime) -> None:
        """Advance ``last_sync``; it never moves backwards."""
        if self.last_sync is None or when > self.last_sync:
            self.last_sync = when

    # ------------------------------------------------------------------ #
    # Serialisation                                                        #
    # ------------------------------------------------------------------ #

    def to_dict(self) -> dict:
        return {
            "events": [e.to_dict() for e in self.events],
            "todos": [t.to_dict() for t in self.todos],
            "last_sync": self.last_sync.isoformat() if self.last_sync else None,
            "sync_tokens": {url: tok.to_dict() for url, tok in self.sync_tokens.items()},
            "calendar_colors": dict(self.calendar_colors),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CalendarData":
        last_sync = data.get("last_sync")
        return cls(
            events=[Event.from_dict(e) for e in data.get("events", [])],
            todos=[Todo.from_dict(t) for t in data.get("todos", [])],
            last_sync=datetime.fromisoformat(last_sync) if last_sync else None,
            sync_tokens={
                url: SyncToken.from_dict(tok)
                for url, tok in (data.get("sync_tokens") or {}).items()
            },
            calendar_colors=dict(data.get("calendar_colors") or {}),
        )


class CalendarStore:
    """Owns a CalendarData and hands it out under the appropriate lock.

    The query layer uses ``read()``; only the sync engine uses ``write()``.
    Hold the write lock only for the mutation itself, never across network calls.
    """

    def __init__(self, data: CalendarData | None = None):
        self._data = data if data is not None else CalendarData()
        self._lock = ReadWriteLock()

    @contextmanager
    def read(self) -> Iterator[CalendarData]:
        with self._lock.read_locked():
            yield self._data

    @contextmanager
    def write(self) -> Iterator[CalendarData]:
        with self._lock.write_locked():
            yield self._data

    def snapshot(self) -> CalendarData:
        """Deep copy taken under the read lock, safe to serialise without locking."""
        with self.read() as data:
            return copy.deepcopy(data)
