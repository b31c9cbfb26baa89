"""
Stateless helpers shared by the full and incremental strategies.
"""

import logging
import re
from typing import Iterable
from typing import Iterator

from calmirror.models import CollectionInfo
from calmirror.models import Event
from calmirror.models import RecurrenceConfig
from calmirror.models import RemoteObject
from calmirror.models import Todo
from calmirror.parser import parse_calendar_object
from calmirror.recurrence import expand_recurring_event

_logger = logging.getLogger(__name__)

# Apple servers report calendar-color as #RRGGBBAA.
_COLOR_WITH_ALPHA_RE = re.compile(r"^#([0-9A-Fa-f]{6})[0-9A-Fa-f]{2}$")


def normalize_color(color: str | None) -> str | None:
    """Return a #RRGGBB colour, dropping an alpha channel if present."""
    if not color:
        return None
    color = color.strip()
    m = _COLOR_WITH_ALPHA_RE.match(color)
    if m:
        return f"#{m.group(1)}"
    return color or None


def chunked(items: list[str], size: int) -> Iterator[list[str]]:
    """Yield consecutive slices of at most ``size`` items."""
    if size < 1:
        raise ValueError("chunk size must be positive")
    for i in range(0, len(items), size):
        yield items[i : i + size]


def collect_records(
    objects: Iterable[RemoteObject],
    collection: CollectionInfo,
    recurrence: RecurrenceConfig,
) -> list[Event | Todo]:
    """Parse and expand fetched objects, keeping one record set per uid.

    If the server hands back the same uid twice, the object seen last wins.
    """
    events: dict[str, list[Event]] = {}
    todos: dict[str, Todo] = {}
    for obj in objects:
        for record in parse_calendar_object(obj.data, collection, obj.etag):
            if isinstance(record, Event):
                if record.uid in events:
                    _logger.warning("Duplicate event uid %s in %s", record.uid, collection.url)
                events[record.uid] = expand_recurring_event(record, recurrence)
            else:
                if record.uid in todos:
                    _logger.warning("Duplicate todo uid %s in %s", record.uid, collection.url)
                todos[record.uid] = record

    records: list[Event | Todo] = []
    for instances in events.values():
        records.extend(instances)
    records.extend(todos.values())
    return records
