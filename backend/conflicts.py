"""
Student Dashboard - Conflict Filter
Enforces category precedence between base events, free-time windows and
assignment placements (base > free > assignment).

Intervals are half-open: an event occupying [start, end) does not collide with
one that starts exactly at its end.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from models import CalendarEvent, ConflictNotice, ConflictReason, EventCategory

logger = logging.getLogger(__name__)


class EventConflictError(Exception):
    """An event cannot be placed because a higher-precedence event occupies its slot."""

    def __init__(self, message: str, event: CalendarEvent, reason: ConflictReason,
                 blocking_event_id: Optional[str] = None):
        super().__init__(message)
        self.event = event
        self.reason = reason
        self.blocking_event_id = blocking_event_id


@dataclass
class ConflictResolution:
    events: List[CalendarEvent] = field(default_factory=list)
    dropped: List[ConflictNotice] = field(default_factory=list)
    warnings: List[ConflictNotice] = field(default_factory=list)


# ============================================
# INTERVAL HELPERS
# ============================================

def overlaps(a: CalendarEvent, b: CalendarEvent) -> bool:
    """Half-open overlap test; a zero-length event is an instant inside [start, end)."""
    a_instant = a.start == a.end
    b_instant = b.start == b.end
    if a_instant and b_instant:
        return a.start == b.start
    if a_instant:
        return b.start <= a.start < b.end
    if b_instant:
        return a.start <= b.start < a.end
    return a.start < b.end and b.start < a.end


def find_conflicts(candidate: CalendarEvent, events: Iterable[CalendarEvent]) -> List[CalendarEvent]:
    """Events from ``events`` that overlap ``candidate`` (the candidate itself excluded)."""
    return [e for e in events if e.id != candidate.id and overlaps(candidate, e)]


def first_conflict(candidate: CalendarEvent, events: Iterable[CalendarEvent]) -> Optional[CalendarEvent]:
    for event in events:
        if event.id != candidate.id and overlaps(candidate, event):
            return event
    return None


def sort_events(events: Iterable[CalendarEvent]) -> List[CalendarEvent]:
    """Chronological order; ties broken by category precedence, then title."""
    return sorted(events, key=lambda e: (e.start, e.category.precedence, e.title, e.id))


# ============================================
# CONFLICT RESOLUTION
# ============================================

def resolve_conflicts(
    base: Sequence[CalendarEvent],
    free: Sequence[CalendarEvent],
    assignments: Sequence[CalendarEvent],
    require_free_window: bool = True
) -> ConflictResolution:
    """
    Merge the three collections into one non-conflicting event set.

    - base events are always kept
    - free windows overlapping a base event are dropped
    - assignments overlapping a base event are dropped; assignments touching no
      surviving free window are dropped when ``require_free_window`` is set,
      otherwise kept and reported as warnings
    """
    result = ConflictResolution()

    kept_free = []
    for event in free:
        blocker = first_conflict(event, base)
        if blocker is not None:
            result.dropped.append(ConflictNotice(
                event=event, reason=ConflictReason.OVERLAPS_BASE, blocking_event_id=blocker.id
            ))
        else:
            kept_free.append(event)

    kept_assignments = []
    for event in assignments:
        blocker = first_conflict(event, base)
        if blocker is not None:
            result.dropped.append(ConflictNotice(
                event=event, reason=ConflictReason.OVERLAPS_BASE, blocking_event_id=blocker.id
            ))
            continue

        if first_conflict(event, kept_free) is None:
            notice = ConflictNotice(event=event, reason=ConflictReason.OUTSIDE_FREE_TIME)
            if require_free_window:
                result.dropped.append(notice)
                continue
            result.warnings.append(notice)

        kept_assignments.append(event)

    result.events = sort_events([*base, *kept_free, *kept_assignments])

    if result.dropped:
        logger.info(
            f"Conflict filter kept {len(result.events)} events, dropped {len(result.dropped)}"
        )
    return result


def check_insert(
    candidate: CalendarEvent,
    existing: Sequence[CalendarEvent],
    require_free_window: bool = True
) -> List[CalendarEvent]:
    """
    Validate placing ``candidate`` next to ``existing`` events.

    A base candidate always wins: the free/assignment events it overlaps are
    returned so the caller can prune them. A free or assignment candidate
    that overlaps a base event raises EventConflictError, as does an
    assignment outside every free window when ``require_free_window`` is set.
    """
    base = [e for e in existing if e.category == EventCategory.BASE]

    if candidate.category == EventCategory.BASE:
        return find_conflicts(candidate, [e for e in existing if e.category != EventCategory.BASE])

    blocker = first_conflict(candidate, base)
    if blocker is not None:
        raise EventConflictError(
            f"'{candidate.title}' overlaps base event '{blocker.title}'",
            candidate, ConflictReason.OVERLAPS_BASE, blocker.id
        )

    if candidate.category == EventCategory.ASSIGNMENT and require_free_window:
        free = [
            e for e in existing
            if e.category == EventCategory.FREE and first_conflict(e, base) is None
        ]
        if first_conflict(candidate, free) is None:
            raise EventConflictError(
                f"'{candidate.title}' is not inside any free-time window",
                candidate, ConflictReason.OUTSIDE_FREE_TIME
            )

    return []
