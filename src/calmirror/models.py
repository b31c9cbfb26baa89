"""
Pure data models. No network, parsing or locking imports.
"""

import enum
from dataclasses import asdict
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from pathlib import Path

DEFAULT_CACHE_DIR = Path.home() / ".local/share/calmirror"
DEFAULT_CONFIG = Path.home() / ".config/calmirror.conf"

# Legacy on-disk marker for collections whose server never hands out sync tokens.
NO_SYNC_SENTINEL = "NO_SYNC"


class CalendarSyncError(Exception):
    """Base exception for calendar sync errors."""

    pass


class DiscoveryError(CalendarSyncError):
    """Remote collections could not be enumerated at all."""


class TransportError(CalendarSyncError):
    """A remote call for a single collection failed."""


class CacheError(CalendarSyncError):
    """The persisted snapshot could not be read or written."""


class ConfigError(CalendarSyncError):
    """Missing or invalid configuration."""


class InvalidDateRange(CalendarSyncError):
    """A query range expression could not be parsed."""


def _dt_to_str(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _dt_from_str(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass
class Event:
    """A calendar event; ``start`` and ``end`` are always UTC-aware."""

    uid: str
    summary: str
    start: datetime
    end: datetime
    calendar_name: str
    calendar_url: str
    description: str | None = None
    location: str | None = None
    calendar_color: str | None = None
    all_day: bool = False
    rrule: str | None = None
    exdates: list[datetime] = field(default_factory=list)
    status: str | None = None
    etag: str | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["start"] = _dt_to_str(self.start)
        data["end"] = _dt_to_str(self.end)
        data["exdates"] = [_dt_to_str(d) for d in self.exdates]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Event":
        data = dict(data)
        data["start"] = _dt_from_str(data["start"])
        data["end"] = _dt_from_str(data["end"])
        data["exdates"] = [_dt_from_str(d) for d in data.get("exdates") or []]
        return cls(**data)


@dataclass
class Todo:
    """A task. Priority is 1-9 and percent_complete 0-100 when present."""

    uid: str
    summary: str
    calendar_name: str
    calendar_url: str
    description: str | None = None
    due: datetime | None = None
    start: datetime | None = None
    completed: datetime | None = None
    priority: int | None = None
    percent_complete: int | None = None
    status: str = "NEEDS-ACTION"
    etag: str | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ("due", "start", "completed"):
            data[key] = _dt_to_str(getattr(self, key))
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Todo":
        data = dict(data)
        for key in ("due", "start", "completed"):
            data[key] = _dt_from_str(data.get(key))
        return cls(**data)


class TokenState(enum.Enum):
    NEVER_SYNCED = "never_synced"
    SYNCED_NO_TOKEN = "synced_no_token"
    HAS_TOKEN = "has_token"
    INCREMENTAL_UNSUPPORTED = "incremental_unsupported"


@dataclass(frozen=True)
class SyncToken:
    """Per-collection incremental sync cursor state."""

    state: TokenState
    value: str | None = None

    @classmethod
    def never_synced(cls) -> "SyncToken":
        return cls(TokenState.NEVER_SYNCED)

    @classmethod
    def synced_no_token(cls) -> "SyncToken":
        return cls(TokenState.SYNCED_NO_TOKEN)

    @classmethod
    def has_token(cls, value: str) -> "SyncToken":
        return cls(TokenState.HAS_TOKEN, value)

    @classmethod
    def unsupported(cls) -> "SyncToken":
        return cls(TokenState.INCREMENTAL_UNSUPPORTED)

    @property
    def allows_incremental(self) -> bool:
        return self.state is not TokenState.INCREMENTAL_UNSUPPORTED

    @property
    def cursor(self) -> str | None:
        """The value to hand to the server; None requests an initial diff."""
        return self.value if self.state is TokenState.HAS_TOKEN else None

    def to_dict(self) -> dict:
        return {"state": self.state.value, "value": self.value}

    @classmethod
    def from_dict(cls, data) -> "SyncToken":
        # Older snapshots stored bare strings: "" / "NO_SYNC" / "<token>".
        if isinstance(data, str):
            if data == "":
                return cls.synced_no_token()
            if data == NO_SYNC_SENTINEL:
                return cls.unsupported()
            return cls.has_token(data)
        return cls(TokenState(data["state"]), data.get("value"))


class ComponentKind(enum.Enum):
    EVENT = "VEVENT"
    TODO = "VTODO"


@dataclass
class CollectionInfo:
    """A remote calendar or task list as reported by discovery."""

    url: str
    name: str = "Unnamed"
    color: str | None = None
    supports_sync: bool = False


@dataclass
class RemoteObject:
    """Raw calendar-object text with its server path and version tag."""

    path: str
    data: str
    etag: str | None = None


@dataclass
class ChangedItem:
    """One entry of an incremental diff; ``data`` is None unless inlined."""

    path: str
    deleted: bool = False
    data: str | None = None
    etag: str | None = None


@dataclass
class SyncDelta:
    """Result of an incremental diff; a missing token means no incremental support."""

    items: list[ChangedItem] = field(default_factory=list)
    token: str | None = None


@dataclass
class RecurrenceConfig:
    """Expansion window around "now" for recurring events."""

    expand_forward_days: int = 730
    expand_backward_days: int = 365


@dataclass
class SyncConfig:
    """Configuration for the sync service."""

    server_url: str
    username: str
    password: str
    cache_dir: Path = field(default_factory=lambda: DEFAULT_CACHE_DIR)
    sync_interval_minutes: int = 15
    max_workers: int = 4
    batch_size: int = 500
    recurrence: RecurrenceConfig = field(default_factory=RecurrenceConfig)
    verbose: bool = False


@dataclass
class SyncStats:
    """Statistics for one reconciliation pass."""

    collections: int = 0
    full_fetches: int = 0
    incremental_fetches: int = 0
    fallbacks: int = 0
    upserted: int = 0
    deleted: int = 0
    purged: int = 0
    errors: int = 0

    def merge(self, other: "SyncStats") -> None:
        for name in self.__dataclass_fields__:
            setattr(self, name, getattr(self, name) + getattr(other, name))
