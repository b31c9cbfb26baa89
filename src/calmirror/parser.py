"""
iCalendar text -> typed Event/Todo records.
"""

import logging
from datetime import date
from datetime import datetime
from datetime import timedelta
from datetime import timezone

from icalendar import Calendar

from calmirror.models import CollectionInfo
from calmirror.models import Event
from calmirror.models import Todo

logger = logging.getLogger(__name__)


class ItemParseError(ValueError):
    """A single component is missing a required field."""


def to_utc(value: date | datetime) -> datetime:
    """Normalise DATE, floating and zoned values to an aware UTC datetime.

    Bare dates become midnight UTC; floating times are taken as UTC.
    """
    if not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _text(component, name: str) -> str | None:
    value = component.get(name)
    if value is None:
        return None
    return str(value)


def _first(value):
    # Properties that may repeat come back as a list.
    if isinstance(value, list):
        return value[0] if value else None
    return value


def _bounded_int(component, name: str, low: int, high: int) -> int | None:
    value = component.get(name)
    if value is None:
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if low <= number <= high else None


def _exdates(component) -> list[datetime]:
    value = component.get("EXDATE")
    if value is None:
        return []
    groups = value if isinstance(value, list) else [value]
    result = []
    for group in groups:
        for item in getattr(group, "dts", []):
            result.append(to_utc(item.dt))
    return result


def _parse_event(component, collection: CollectionInfo, etag: str | None) -> Event:
    uid = _text(component, "UID")
    if not uid:
        raise ItemParseError("VEVENT has no UID")

    dtstart = component.get("DTSTART")
    if dtstart is None:
        raise ItemParseError(f"VEVENT {uid} has no DTSTART")

    all_day = not isinstance(dtstart.dt, datetime)
    start = to_utc(dtstart.dt)

    dtend = component.get("DTEND")
    duration = component.get("DURATION")
    if dtend is not None:
        end = to_utc(dtend.dt)
    elif duration is not None:
        end = start + duration.dt
    elif all_day:
        end = start + timedelta(days=1)
    else:
        end = start

    rrule = _first(component.get("RRULE"))

    return Event(
        uid=uid,
        summary=_text(component, "SUMMARY") or "",
        description=_text(component, "DESCRIPTION"),
        location=_text(component, "LOCATION"),
        start=start,
        end=end,
        calendar_name=collection.name,
        calendar_url=collection.url,
        calendar_color=collection.color,
        all_day=all_day,
        rrule=rrule.to_ical().decode("utf-8") if rrule is not None else None,
        exdates=_exdates(component),
        status=_text(component, "STATUS"),
        etag=etag,
    )


def _parse_todo(component, collection: CollectionInfo, etag: str | None) -> Todo:
    uid = _text(component, "UID")
    if not uid:
        raise ItemParseError("VTODO has no UID")

    def _when(name: str) -> datetime | None:
        prop = component.get(name)
        return to_utc(prop.dt) if prop is not None else None

    return Todo(
        uid=uid,
        summary=_text(component, "SUMMARY") or "",
        description=_text(component, "DESCRIPTION"),
        due=_when("DUE"),
        start=_when("DTSTART"),
        completed=_when("COMPLETED"),
        priority=_bounded_int(component, "PRIORITY", 1, 9),
        percent_complete=_bounded_int(component, "PERCENT-COMPLETE", 0, 100),
        status=_text(component, "STATUS") or "NEEDS-ACTION",
        calendar_name=collection.name,
        calendar_url=collection.url,
        etag=etag,
    )


def parse_calendar_object(
    ical_text: str, collection: CollectionInfo, etag: str | None = None
) -> list[Event | Todo]:
    """Parse one calendar object resource into zero or more records.

    Never raises: an unparseable object yields no records, and a component
    missing UID (or DTSTART for events) is dropped while its siblings are kept.
    Overridden instances (RECURRENCE-ID) are skipped; the master carries the series.
    """
    try:
        calendar = Calendar.from_ical(ical_text)
    except Exception as e:
        logger.warning("Skipping unparseable calendar object in %s: %s", collection.url, e)
        return []

    records: list[Event | Todo] = []
    for component in calendar.walk():
        if component.name not in ("VEVENT", "VTODO"):
            continue
        if component.get("RECURRENCE-ID") is not None:
            logger.debug("Skipping overridden instance of %s", component.get("UID"))
            continue
        try:
            if component.name == "VEVENT":
                records.append(_parse_event(component, collection, etag))
            else:
                records.append(_parse_todo(component, collection, etag))
        except (ItemParseError, ValueError, TypeError, AttributeError) as e:
            logger.warning("Dropping %s in %s: %s", component.name, collection.url, e)
    return records
