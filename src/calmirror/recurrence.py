"""
Recurring-event expansion into bounded-window occurrences.
"""

import dataclasses
import logging
import re
from datetime import datetime
from datetime import timedelta
from datetime import timezone

from dateutil.rrule import rrulestr

from calmirror.models import Event
from calmirror.models import RecurrenceConfig

logger = logging.getLogger(__name__)

# UNTIL given as a bare date (UNTIL=20260316) or a floating datetime
# (UNTIL=20260316T100000); values ending in Z are left alone.
_UNTIL_DATE_RE = re.compile(r"^\d{8}$")
_UNTIL_FLOATING_RE = re.compile(r"^\d{8}T\d{6}$")


def normalize_until_to_utc(rrule: str) -> str:
    """Rewrite UNTIL so it matches a UTC DTSTART.

    dateutil refuses a naive UNTIL when DTSTART is timezone-aware, and many
    servers emit UNTIL in date or floating form.
    """
    if "UNTIL=" not in rrule:
        return rrule

    parts = []
    for part in rrule.split(";"):
        if part.startswith("UNTIL="):
            value = part[len("UNTIL="):]
            if _UNTIL_DATE_RE.match(value):
                part = f"UNTIL={value}T000000Z"
            elif _UNTIL_FLOATING_RE.match(value):
                part = f"UNTIL={value}Z"
        parts.append(part)
    return ";".join(parts)


_FIXED_PERIODS = {
    "SECONDLY": timedelta(seconds=1),
    "MINUTELY": timedelta(minutes=1),
    "HOURLY": timedelta(hours=1),
    "DAILY": timedelta(days=1),
    "WEEKLY": timedelta(weeks=1),
}


def _fast_forward(start: datetime, rrule: str, window_start: datetime) -> datetime:
    """Move DTSTART forward by whole rule periods to just before the window.

    Only rules without COUNT and with a fixed-length frequency qualify;
    every BY* filter repeats identically from one period to the next, so the
    occurrences inside the window are unchanged.
    """
    fields = dict(part.split("=", 1) for part in rrule.upper().split(";") if "=" in part)
    step = _FIXED_PERIODS.get(fields.get("FREQ", ""))
    if step is None or "COUNT" in fields or start >= window_start:
        return start
    try:
        interval = int(fields.get("INTERVAL", "1"))
    except ValueError:
        return start
    if interval < 1:
        return start

    period = step * interval
    # One period of slack keeps occurrences expanded late within a period.
    skips = (window_start - start) // period - 1
    if skips <= 0:
        return start
    return start + period * skips


def expand_recurring_event(
    event: Event, config: RecurrenceConfig, now: datetime | None = None
) -> list[Event]:
    """Expand a recurring event into one copy per occurrence inside the window.

    The window is [now - backward days, now + forward days]. Each copy keeps
    every field of the master (RRULE included) except ``start`` and ``end``;
    the master's duration is carried over verbatim.

    Returns ``[event]`` unchanged when the event has no RRULE, when the rule
    cannot be parsed, or when no occurrence falls inside the window.

    EXDATE values are carried on the copies but not applied.
    """
    if not event.rrule:
        return [event]

    now = now or datetime.now(timezone.utc)
    window_start = now - timedelta(days=config.expand_backward_days)
    window_end = now + timedelta(days=config.expand_forward_days)

    try:
        rrule = normalize_until_to_utc(event.rrule)
        rule = rrulestr(rrule, dtstart=_fast_forward(event.start, rrule, window_start))
    except (ValueError, TypeError, KeyError) as e:
        logger.warning(
            "Failed to parse RRULE for event '%s': %s. Using original event only.",
            event.summary,
            e,
        )
        return [event]

    logger.debug(
        "Expanding recurring event '%s' from %s to %s", event.summary, window_start, window_end
    )

    duration = event.end - event.start
    instances = []
    try:
        for occurrence in rule:
            occurrence = occurrence.astimezone(timezone.utc)
            if occurrence > window_end:
                break
            if occurrence < window_start:
                continue
            instances.append(
                dataclasses.replace(
                    event,
                    start=occurrence,
                    end=occurrence + duration,
                    exdates=list(event.exdates),
                )
            )
    except (ValueError, TypeError) as e:
        logger.warning(
            "Failed to expand RRULE for event '%s': %s. Using original event only.",
            event.summary,
            e,
        )
        return [event]

    if not instances:
        logger.debug("No occurrences in window for '%s', including original event", event.summary)
        return [event]

    return instances
