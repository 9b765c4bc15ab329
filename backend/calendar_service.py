"""
Student Dashboard - Calendar Service
Runs the calendar pipeline (fetch -> normalize -> expand -> resolve conflicts)
and guards inserts with the same precedence rules.
"""

import logging
import uuid
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Set

from calendar_sources import EventSource, EventStore, fetch_user_events
from calendar_view import render_view, view_title, view_window
from config import CalendarConfig, FetchConfig, get_calendar_config
from conflicts import EventConflictError, check_insert, resolve_conflicts
from ics_import import parse_ics
from models import (
    CalendarEvent, CalendarEventCreate, CalendarResponse, CalendarView, EventCategory,
    ImportFailure, ImportResult, InsertResult, ViewResponse
)
from normalizer import (
    EventNormalizationError, coerce_datetime, localize_rule, normalize_event, normalize_events
)
from recurrence import RecurrenceError, expand_event, expand_events

logger = logging.getLogger(__name__)


async def load_events(
    source: EventSource,
    user_id: str,
    window_start: datetime,
    window_end: datetime,
    config: CalendarConfig,
    fetch_config: Optional[FetchConfig] = None
) -> Dict[EventCategory, List[CalendarEvent]]:
    """Fetch, normalize and expand all three collections for the window."""
    fetched = await fetch_user_events(source, user_id, fetch_config)
    tz = config.tzinfo
    return {
        category: expand_events(
            normalize_events(rows, category, tz),
            window_start, window_end, config.max_occurrences_per_rule
        )
        for category, rows in fetched.by_category().items()
    }


# ============================================
# CALENDAR PIPELINE
# ============================================

async def build_calendar(
    source: EventSource,
    user_id: str,
    window_start: datetime,
    window_end: datetime,
    config: Optional[CalendarConfig] = None,
    fetch_config: Optional[FetchConfig] = None
) -> CalendarResponse:
    """
    Merge a user's base, free-time and assignment events into one filtered,
    non-conflicting event set for [window_start, window_end).
    """
    config = config or get_calendar_config()
    window_start = coerce_datetime(window_start, config.tzinfo)
    window_end = coerce_datetime(window_end, config.tzinfo)
    if window_end <= window_start:
        raise ValueError("Calendar window end must be after its start")

    events = await load_events(source, user_id, window_start, window_end, config, fetch_config)
    resolution = resolve_conflicts(
        events[EventCategory.BASE],
        events[EventCategory.FREE],
        events[EventCategory.ASSIGNMENT],
        require_free_window=config.require_free_window,
    )

    return CalendarResponse(
        user_id=user_id,
        window_start=window_start,
        window_end=window_end,
        events=resolution.events,
        dropped=resolution.dropped,
        warnings=resolution.warnings,
    )


async def build_view(
    source: EventSource,
    user_id: str,
    view: CalendarView,
    anchor: date,
    today: Optional[date] = None,
    config: Optional[CalendarConfig] = None,
    fetch_config: Optional[FetchConfig] = None
) -> ViewResponse:
    """Build the calendar for the range a view covers and bucket it into grid cells."""
    config = config or get_calendar_config()
    window_start, window_end = view_window(view, anchor, config.week_starts_on, config.tzinfo)
    calendar = await build_calendar(source, user_id, window_start, window_end, config, fetch_config)

    rows = render_view(
        view, calendar.events, anchor,
        week_starts_on=config.week_starts_on,
        tz=config.tzinfo,
        max_per_cell=config.max_events_per_cell,
        today=today,
    )
    return ViewResponse(
        view=view,
        anchor=anchor,
        title=view_title(view, anchor, config.week_starts_on),
        window_start=window_start,
        window_end=window_end,
        rows=rows,
        dropped=calendar.dropped,
        warnings=calendar.warnings,
    )


# ============================================
# INSERTS
# ============================================

def _placement_window(event: CalendarEvent, config: CalendarConfig):
    """The range over which a new event's placement has to be validated."""
    horizon = timedelta(days=config.expansion_horizon_days)
    if event.recurrence is None:
        return event.start, max(event.end, event.start + timedelta(minutes=1))
    return event.start, event.start + horizon


async def add_event(
    store: EventStore,
    user_id: str,
    payload: CalendarEventCreate,
    event_id: Optional[str] = None,
    config: Optional[CalendarConfig] = None,
    fetch_config: Optional[FetchConfig] = None
) -> InsertResult:
    """
    Insert an event after checking it against the user's existing calendar.

    Base events take precedence silently: overlapping free-time and assignment
    events are deleted and reported as pruned. Free-time and assignment
    events that would violate precedence raise EventConflictError.
    """
    config = config or get_calendar_config()
    tz = config.tzinfo

    event = CalendarEvent(
        **payload.model_dump(exclude={"start", "end", "recurrence"}),
        start=coerce_datetime(payload.start, tz),
        end=coerce_datetime(payload.end, tz),
        recurrence=localize_rule(payload.recurrence, tz) if payload.recurrence else None,
        id=event_id or uuid.uuid4().hex,
        user_id=user_id,
    )

    window_start, window_end = _placement_window(event, config)
    existing = await load_events(store, user_id, window_start, window_end, config, fetch_config)
    existing_events = [e for events in existing.values() for e in events]

    to_prune: Dict[EventCategory, Set[str]] = defaultdict(set)
    for instance in expand_event(event, window_start, window_end, config.max_occurrences_per_rule):
        for conflict in check_insert(instance, existing_events, config.require_free_window):
            # A collision with any instance removes the whole stored series
            to_prune[conflict.category].add(conflict.parent_id or conflict.id)

    pruned: List[str] = []
    for category, ids in to_prune.items():
        ids = sorted(ids)
        await store.delete_events(category, user_id, ids)
        pruned.extend(ids)
        logger.info(f"Base event '{event.title}' pruned {len(ids)} {category.value} events for {user_id}")

    row = await store.insert_event(event.category, user_id, event)
    stored = normalize_event(row, event.category, tz)
    logger.info(f"Added {event.category.value} event {stored.id} for {user_id}")
    return InsertResult(event=stored, pruned=pruned)


async def remove_event(store: EventStore, user_id: str, category: EventCategory, event_id: str) -> bool:
    deleted = await store.delete_events(category, user_id, [event_id])
    return deleted > 0


async def import_ics(
    store: EventStore,
    user_id: str,
    text: str,
    category: EventCategory = EventCategory.BASE,
    config: Optional[CalendarConfig] = None,
    fetch_config: Optional[FetchConfig] = None
) -> ImportResult:
    """Insert every VEVENT of an iCalendar document, collecting per-event failures."""
    config = config or get_calendar_config()
    result = ImportResult(imported=0)

    for parsed in parse_ics(text, config.tzinfo):
        payload = CalendarEventCreate(
            **parsed.model_dump(exclude={"id", "parent_id", "user_id", "category"}),
            category=category,
        )
        try:
            inserted = await add_event(store, user_id, payload, parsed.id, config, fetch_config)
        except (EventConflictError, EventNormalizationError, RecurrenceError) as e:
            logger.warning(f"Could not import '{parsed.title}': {e}")
            result.failures.append(ImportFailure(title=parsed.title, error=str(e)))
            continue
        result.events.append(inserted.event)
        result.pruned.extend(inserted.pruned)
        result.imported += 1

    logger.info(f"Imported {result.imported} events for {user_id} ({len(result.failures)} failed)")
    return result
