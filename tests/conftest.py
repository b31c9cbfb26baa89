"""
Shared pytest fixtures and iCal helpers.
"""

import logging
from datetime import datetime
from datetime import timedelta
from datetime import timezone

import pytest

from calmirror.cache import CacheManager
from calmirror.models import CollectionInfo
from calmirror.models import RecurrenceConfig
from calmirror.models import SyncConfig
from calmirror.models import SyncStats
from calmirror.store import CalendarStore

WORK_URL = "https://dav.example.com/calendars/alice/work/"
HOME_URL = "https://dav.example.com/calendars/alice/home/"
TASKS_URL = "https://dav.example.com/calendars/alice/tasks/"


def ical_stamp(value: datetime) -> str:
    """Format an aware datetime as an iCal UTC timestamp."""
    return value.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def make_vevent(
    uid: str,
    summary: str = "Test Event",
    dtstart: str = "20260301T100000Z",
    dtend: str | None = "20260301T110000Z",
    extra: tuple = (),
) -> str:
    """Return a minimal VEVENT iCal string (no VCALENDAR wrapper)."""
    lines = [
        "BEGIN:VEVENT",
        f"UID:{uid}",
        f"SUMMARY:{summary}",
        f"DTSTART:{dtstart}",
    ]
    if dtend is not None:
        lines.append(f"DTEND:{dtend}")
    lines.append("DTSTAMP:20260224T000000Z")
    lines.extend(extra)
    lines.append("END:VEVENT")
    return "\r\n".join(lines) + "\r\n"


def make_vtodo(uid: str, summary: str = "Test Todo", extra: tuple = ()) -> str:
    """Return a minimal VTODO iCal string (no VCALENDAR wrapper)."""
    lines = [
        "BEGIN:VTODO",
        f"UID:{uid}",
        f"SUMMARY:{summary}",
        "DTSTAMP:20260224T000000Z",
        *extra,
        "END:VTODO",
    ]
    return "\r\n".join(lines) + "\r\n"


def make_recurring_vevent(uid: str, start: datetime, rrule: str, summary: str = "Recurring") -> str:
    """Return a VEVENT starting at ``start`` lasting one hour with the given RRULE."""
    return make_vevent(
        uid,
        summary=summary,
        dtstart=ical_stamp(start),
        dtend=ical_stamp(start + timedelta(hours=1)),
        extra=(f"RRULE:{rrule}",),
    )


def wrap(*components: str) -> str:
    """Wrap components in a VCALENDAR."""
    return (
        "BEGIN:VCALENDAR\r\n"
        "VERSION:2.0\r\n"
        "PRODID:-//calmirror//tests//EN\r\n" + "".join(components) + "END:VCALENDAR\r\n"
    )


@pytest.fixture
def work_collection():
    return CollectionInfo(url=WORK_URL, name="Work", color="#3366FF", supports_sync=True)


@pytest.fixture
def home_collection():
    return CollectionInfo(url=HOME_URL, name="Home", color=None, supports_sync=False)


@pytest.fixture
def cache_dir(tmp_path):
    return tmp_path / "cache"


@pytest.fixture
def sync_config(cache_dir):
    return SyncConfig(
        server_url="https://dav.example.com/",
        username="alice",
        password="secret",
        cache_dir=cache_dir,
        recurrence=RecurrenceConfig(),
    )


@pytest.fixture
def cache(cache_dir):
    return CacheManager(cache_dir)


@pytest.fixture
def store():
    return CalendarStore()


@pytest.fixture
def sync_logger():
    return logging.getLogger("test_sync")


@pytest.fixture
def sync_stats():
    return SyncStats()
