"""
Student Dashboard - Event Normalizer
Coerces stored rows into CalendarEvent values tagged with their source category.

Rows arrive in two shapes:
- flat columns from the event tables (start_time, end_time, rrule, ...)
- the document form written by the dashboard's import route, where the whole
  event sits in an ``eventvalue`` JSON column with camelCase keys
"""

import hashlib
import json
import logging
import re
from datetime import date, datetime, time, tzinfo
from typing import Any, Iterable, List, Mapping, Optional

from dateutil import parser as date_parser
from pydantic import ValidationError

from models import CalendarEvent, EventCategory, RecurrenceRule
from recurrence import RecurrenceError, parse_rrule

logger = logging.getLogger(__name__)


class EventNormalizationError(ValueError):
    """A stored row could not be turned into a CalendarEvent."""


# Aliases seen across the tables, the document store and ICS imports
FIELD_ALIASES = {
    "id": ("id", "uid"),
    "title": ("title", "summary"),
    "description": ("description",),
    "start": ("start", "start_time", "startDate", "start_date"),
    "end": ("end", "end_time", "endDate", "end_date"),
    "recurrence": ("recurrence", "rrule"),
    "all_day": ("all_day", "allDay"),
    "parent_id": ("parent_id", "parentId"),
    "user_id": ("user_id", "userId"),
}

DATE_ONLY_PATTERN = re.compile(r"^\d{4}-?\d{2}-?\d{2}$")


# ============================================
# TIMESTAMP COERCION
# ============================================

def is_date_only(value: Any) -> bool:
    """True for a bare date value or a date-only string (2024-09-01, 20240901)."""
    if isinstance(value, datetime):
        return False
    if isinstance(value, date):
        return True
    return isinstance(value, str) and bool(DATE_ONLY_PATTERN.match(value.strip()))


def coerce_datetime(value: Any, tz: tzinfo) -> datetime:
    """
    Coerce a stored timestamp into a timezone-aware datetime.

    Accepts datetime and date objects, ISO-8601 strings (with or without a
    trailing ``Z``) and iCalendar basic format (``20240901T090000Z``).
    Naive values are interpreted in ``tz``; dates become midnight. Aware
    values are converted to ``tz`` so recurrence expands on its wall clock.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            raise EventNormalizationError("Empty timestamp")
        try:
            parsed = date_parser.isoparse(text)
        except (ValueError, OverflowError) as e:
            raise EventNormalizationError(f"Unparseable timestamp {value!r}: {e}")
    else:
        raise EventNormalizationError(f"Unsupported timestamp value: {value!r}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=tz)
    return parsed.astimezone(tz)


def localize_rule(rule: RecurrenceRule, tz: tzinfo) -> RecurrenceRule:
    """Read a rule's naive exdates and UNTIL in ``tz`` before they are stored."""
    update = {"exdates": [coerce_datetime(value, tz) for value in rule.exdates]}
    if rule.until is not None and rule.until.tzinfo is None:
        update["until"] = rule.until.replace(tzinfo=tz)
    return rule.model_copy(update=update)


# ============================================
# ROW NORMALIZATION
# ============================================

def _lookup(row: Mapping[str, Any], field: str) -> Any:
    for key in FIELD_ALIASES[field]:
        if key in row and row[key] is not None:
            return row[key]
    return None


def _unwrap_document(row: Mapping[str, Any]) -> Mapping[str, Any]:
    """Merge the ``eventvalue`` document into the row, document keys winning."""
    document = row.get("eventvalue")
    if document is None:
        return row
    if isinstance(document, str):
        try:
            document = json.loads(document)
        except json.JSONDecodeError as e:
            raise EventNormalizationError(f"eventvalue is not valid JSON: {e}")
    if not isinstance(document, Mapping):
        raise EventNormalizationError("eventvalue must be a JSON object")
    merged = {k: v for k, v in row.items() if k != "eventvalue"}
    merged.update(document)
    return merged


def _coerce_recurrence(value: Any) -> Optional[RecurrenceRule]:
    if value is None or value == "":
        return None
    if isinstance(value, RecurrenceRule):
        return value
    try:
        if isinstance(value, str):
            return parse_rrule(value)
        if isinstance(value, Mapping) and "rrule" in value:
            # Stored form: RRULE text plus a separate list of excluded starts
            rule = parse_rrule(value["rrule"])
            return RecurrenceRule.model_validate({
                **rule.model_dump(),
                "exdates": list(value.get("exdates") or []),
            })
        if isinstance(value, Mapping):
            return RecurrenceRule.model_validate(value)
    except (RecurrenceError, ValidationError) as e:
        raise EventNormalizationError(f"Invalid recurrence rule: {e}")
    raise EventNormalizationError(f"Unsupported recurrence value: {value!r}")


def derive_event_id(category: EventCategory, title: str, start: datetime) -> str:
    """Stable id for rows that were stored without one."""
    digest = hashlib.sha1(f"{category.value}|{title}|{start.isoformat()}".encode("utf-8"))
    return f"{category.value}-{digest.hexdigest()[:16]}"


def normalize_event(row: Mapping[str, Any], category: EventCategory, tz: tzinfo) -> CalendarEvent:
    """Build a CalendarEvent from one stored row and tag it with ``category``."""
    row = _unwrap_document(row)

    raw_start = _lookup(row, "start")
    raw_end = _lookup(row, "end")
    if raw_start is None:
        raise EventNormalizationError("Event has no start timestamp")
    if raw_end is None:
        raise EventNormalizationError("Event has no end timestamp")

    start = coerce_datetime(raw_start, tz)
    end = coerce_datetime(raw_end, tz)
    if end < start:
        raise EventNormalizationError(f"Event ends before it starts ({start} > {end})")

    title = str(_lookup(row, "title") or "Untitled event").strip() or "Untitled event"
    all_day = _lookup(row, "all_day")
    if all_day is None:
        all_day = is_date_only(raw_start) and is_date_only(raw_end)

    event_id = _lookup(row, "id")
    if event_id is None or event_id == "":
        event_id = derive_event_id(category, title, start)

    parent_id = _lookup(row, "parent_id")
    user_id = _lookup(row, "user_id")
    recurrence = _coerce_recurrence(_lookup(row, "recurrence"))
    if recurrence is not None:
        recurrence = localize_rule(recurrence, tz)

    try:
        return CalendarEvent(
            id=str(event_id),
            title=title,
            description=str(_lookup(row, "description") or ""),
            start=start,
            end=end,
            category=category,
            recurrence=recurrence,
            all_day=bool(all_day),
            parent_id=str(parent_id) if parent_id is not None else None,
            user_id=str(user_id) if user_id is not None else None,
        )
    except ValidationError as e:
        raise EventNormalizationError(str(e))


def normalize_events(
    rows: Iterable[Mapping[str, Any]],
    category: EventCategory,
    tz: tzinfo
) -> List[CalendarEvent]:
    """Normalize a collection, skipping rows that cannot be normalized."""
    events = []
    skipped = 0
    for row in rows:
        try:
            events.append(normalize_event(row, category, tz))
        except EventNormalizationError as e:
            skipped += 1
            logger.warning(f"Skipping {category.value} event {row.get('id', '<no id>')}: {e}")
    if skipped:
        logger.info(f"Normalized {len(events)} {category.value} events ({skipped} skipped)")
    return events
