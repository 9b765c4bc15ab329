"""
Student Dashboard - Recurrence Expander
Turns a recurring event definition plus its rule into concrete dated instances.
"""

import logging
import re
from datetime import datetime, time
from typing import Dict, Iterable, List

from dateutil import parser as date_parser
from dateutil import rrule as du_rrule
from pydantic import ValidationError

from models import BY_DAY_PATTERN, WEEKDAY_CODES, CalendarEvent, Frequency, RecurrenceRule

logger = logging.getLogger(__name__)


class RecurrenceError(ValueError):
    """A recurrence rule could not be parsed or expanded."""


FREQ_CODES: Dict[str, Frequency] = {
    "DAILY": Frequency.DAILY,
    "WEEKLY": Frequency.WEEKLY,
    "MONTHLY": Frequency.MONTHLY,
    "YEARLY": Frequency.YEARLY,
}

DATEUTIL_FREQ = {
    Frequency.DAILY: du_rrule.DAILY,
    Frequency.WEEKLY: du_rrule.WEEKLY,
    Frequency.MONTHLY: du_rrule.MONTHLY,
    Frequency.YEARLY: du_rrule.YEARLY,
}

DATE_ONLY_UNTIL = re.compile(r"^\d{4}-?\d{2}-?\d{2}$")

DATEUTIL_WEEKDAYS = dict(zip(WEEKDAY_CODES, (
    du_rrule.MO, du_rrule.TU, du_rrule.WE, du_rrule.TH,
    du_rrule.FR, du_rrule.SA, du_rrule.SU,
)))


# ============================================
# RRULE TEXT PARSING
# ============================================

def _int_list(key: str, value: str) -> List[int]:
    try:
        return [int(part) for part in value.split(",") if part.strip()]
    except ValueError:
        raise RecurrenceError(f"{key} expects comma-separated integers, got {value!r}")


def _int(key: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise RecurrenceError(f"{key} expects an integer, got {value!r}")


def _parse_until(value: str) -> datetime:
    try:
        until = date_parser.isoparse(value)
    except (ValueError, OverflowError) as e:
        raise RecurrenceError(f"Invalid UNTIL value {value!r}: {e}")
    # A date-only UNTIL includes the whole day
    if DATE_ONLY_UNTIL.match(value):
        until = datetime.combine(until.date(), time(23, 59, 59))
    return until


def parse_rrule(text: str) -> RecurrenceRule:
    """
    Parse an iCalendar RRULE string into a RecurrenceRule.

    Example:
        parse_rrule("FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,WE;COUNT=10")
    """
    if not text or not text.strip():
        raise RecurrenceError("Empty recurrence rule")

    body = text.strip()
    if body.upper().startswith("RRULE:"):
        body = body[len("RRULE:"):]

    fields: Dict[str, object] = {}
    for part in body.split(";"):
        if not part.strip():
            continue
        if "=" not in part:
            raise RecurrenceError(f"Malformed rule part {part!r}")
        key, value = part.split("=", 1)
        key = key.strip().upper()
        value = value.strip()

        if key == "FREQ":
            if value.upper() not in FREQ_CODES:
                raise RecurrenceError(f"Unsupported frequency {value!r}")
            fields["frequency"] = FREQ_CODES[value.upper()]
        elif key == "INTERVAL":
            fields["interval"] = _int(key, value)
        elif key == "COUNT":
            fields["count"] = _int(key, value)
        elif key == "UNTIL":
            fields["until"] = _parse_until(value)
        elif key == "BYDAY":
            fields["by_day"] = [token for token in value.split(",") if token]
        elif key == "BYMONTH":
            fields["by_month"] = _int_list(key, value)
        elif key == "BYMONTHDAY":
            fields["by_month_day"] = _int_list(key, value)
        else:
            logger.debug(f"Ignoring unsupported rule part {key}")

    if "frequency" not in fields:
        raise RecurrenceError(f"Rule has no FREQ: {text!r}")

    try:
        return RecurrenceRule(**fields)
    except ValidationError as e:
        raise RecurrenceError(str(e))


# ============================================
# EXPANSION
# ============================================

def _weekday(token: str):
    match = BY_DAY_PATTERN.match(token)
    ordinal, code = match.group(1), match.group(2)
    weekday = DATEUTIL_WEEKDAYS[code]
    return weekday(int(ordinal)) if ordinal else weekday


def build_rrule(rule: RecurrenceRule, dtstart: datetime) -> du_rrule.rrule:
    """Translate a RecurrenceRule anchored at ``dtstart`` into a dateutil rrule."""
    kwargs = {
        "dtstart": dtstart,
        "interval": rule.interval,
    }
    if rule.count is not None:
        kwargs["count"] = rule.count
    if rule.until is not None:
        until = rule.until
        if dtstart.tzinfo is not None and until.tzinfo is None:
            until = until.replace(tzinfo=dtstart.tzinfo)
        elif dtstart.tzinfo is None and until.tzinfo is not None:
            until = until.replace(tzinfo=None)
        kwargs["until"] = until
    if rule.by_day:
        kwargs["byweekday"] = [_weekday(token) for token in rule.by_day]
    if rule.by_month:
        kwargs["bymonth"] = rule.by_month
    if rule.by_month_day:
        kwargs["bymonthday"] = rule.by_month_day

    try:
        return du_rrule.rrule(DATEUTIL_FREQ[rule.frequency], **kwargs)
    except (ValueError, TypeError) as e:
        raise RecurrenceError(f"Cannot expand rule {rule.to_rrule()}: {e}")


def intersects_window(start: datetime, end: datetime, window_start: datetime, window_end: datetime) -> bool:
    """Whether [start, end) touches the half-open window; instants count when inside it."""
    if start == end:
        return window_start <= start < window_end
    return start < window_end and window_start < end


def _exdate_set(rule: RecurrenceRule, dtstart: datetime) -> set:
    exdates = set()
    for exdate in rule.exdates:
        if exdate.tzinfo is None and dtstart.tzinfo is not None:
            exdate = exdate.replace(tzinfo=dtstart.tzinfo)
        exdates.add(exdate)
    return exdates


def make_instance(event: CalendarEvent, start: datetime) -> CalendarEvent:
    """A concrete occurrence of ``event`` starting at ``start``."""
    return event.model_copy(update={
        "id": f"{event.id}:{start.isoformat()}",
        "start": start,
        "end": start + event.duration,
        "recurrence": None,
        "parent_id": event.id,
    })


def expand_event(
    event: CalendarEvent,
    window_start: datetime,
    window_end: datetime,
    max_occurrences: int = 500
) -> List[CalendarEvent]:
    """
    Expand one event into the instances that intersect [window_start, window_end).

    Non-recurring events are returned as-is when they fall inside the window.
    Expansion stops at the rule's own end condition, the window end, or after
    ``max_occurrences`` instances.
    """
    if event.recurrence is None:
        if intersects_window(event.start, event.end, window_start, window_end):
            return [event]
        return []

    rule = build_rrule(event.recurrence, event.start)
    exdates = _exdate_set(event.recurrence, event.start)
    duration = event.duration

    # Occurrences starting up to one duration before the window still overlap it
    search_from = window_start - duration

    instances = []
    for occurrence in rule.xafter(search_from, inc=True):
        if occurrence >= window_end:
            break
        if occurrence in exdates:
            continue
        if not intersects_window(occurrence, occurrence + duration, window_start, window_end):
            continue
        instances.append(make_instance(event, occurrence))
        if len(instances) >= max_occurrences:
            logger.warning(
                f"Recurring event {event.id} hit the {max_occurrences} occurrence cap; "
                f"later instances are not shown"
            )
            break

    return instances


def expand_events(
    events: Iterable[CalendarEvent],
    window_start: datetime,
    window_end: datetime,
    max_occurrences: int = 500
) -> List[CalendarEvent]:
    """Expand every recurring event in ``events``; plain events pass through."""
    expanded = []
    for event in events:
        try:
            expanded.extend(expand_event(event, window_start, window_end, max_occurrences))
        except RecurrenceError as e:
            logger.warning(f"Skipping recurring event {event.id}: {e}")
    return expanded

