"""
Student Dashboard - iCalendar Import
Reads VEVENT components from an uploaded .ics file into calendar events.
"""

import logging
from datetime import date, datetime, timedelta, tzinfo
from typing import List, Optional

from icalendar import Calendar

from models import CalendarEvent, EventCategory
from normalizer import EventNormalizationError, coerce_datetime, derive_event_id, localize_rule
from recurrence import parse_rrule

logger = logging.getLogger(__name__)


class IcsParseError(ValueError):
    """The uploaded document is not an iCalendar file."""


def _text(component, name: str) -> str:
    value = component.get(name)
    return str(value).strip() if value is not None else ""


def _exdates(component, tz: tzinfo) -> List[datetime]:
    """All EXDATE values; one property may list several, and it may repeat."""
    props = component.get("EXDATE")
    if props is None:
        return []
    if not isinstance(props, list):
        props = [props]
    return [coerce_datetime(value.dt, tz) for prop in props for value in prop.dts]


def _build_event(component, tz: tzinfo) -> Optional[CalendarEvent]:
    title = _text(component, "SUMMARY")
    dtstart = component.get("DTSTART")
    if not title or dtstart is None:
        logger.debug("Skipping VEVENT without SUMMARY or DTSTART")
        return None

    all_day = not isinstance(dtstart.dt, datetime) and isinstance(dtstart.dt, date)
    start = coerce_datetime(dtstart.dt, tz)

    dtend = component.get("DTEND")
    duration = component.get("DURATION")
    if dtend is not None:
        end = coerce_datetime(dtend.dt, tz)
    elif duration is not None:
        end = start + duration.dt
    else:
        end = start + timedelta(days=1) if all_day else start

    if end < start:
        raise EventNormalizationError(f"'{title}' ends before it starts")

    recurrence = None
    rrule = component.get("RRULE")
    if rrule is not None:
        recurrence = parse_rrule(rrule.to_ical().decode("utf-8"))
        recurrence = localize_rule(
            recurrence.model_copy(update={"exdates": _exdates(component, tz)}), tz
        )

    return CalendarEvent(
        id=_text(component, "UID") or derive_event_id(EventCategory.BASE, title, start),
        title=title,
        description=_text(component, "DESCRIPTION"),
        start=start,
        end=end,
        category=EventCategory.BASE,
        recurrence=recurrence,
        all_day=all_day,
    )


def parse_ics(text: str, tz: tzinfo) -> List[CalendarEvent]:
    """
    Parse every VEVENT in an iCalendar document.

    Events without a SUMMARY or DTSTART are skipped, as are events whose
    timestamps or RRULE cannot be used. Naive and floating times are read
    in ``tz``. Raises IcsParseError when the document itself is unreadable.
    """
    try:
        calendar = Calendar.from_ical(text)
    except ValueError as e:
        raise IcsParseError(f"Invalid iCalendar file: {e}")

    events: List[CalendarEvent] = []
    for component in calendar.walk("VEVENT"):
        try:
            event = _build_event(component, tz)
        except (ValueError, TypeError) as e:
            logger.warning(f"Skipping unparseable VEVENT {_text(component, 'UID')!r}: {e}")
            continue
        if event is not None:
            events.append(event)

    logger.info(f"Parsed {len(events)} events from iCalendar document")
    return events
