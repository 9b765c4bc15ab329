"""
Student Dashboard - View Renderer
Buckets the merged event set into month, week and day grid cells.
"""

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Iterable, List, Optional, Sequence, Tuple

from dateutil.relativedelta import relativedelta

from conflicts import sort_events
from models import CalendarEvent, CalendarView, ViewCell
from recurrence import intersects_window

HOURS_PER_DAY = 24
SUNDAY = 6


# ============================================
# DATE HELPERS
# ============================================

def start_of_week(day: date, week_starts_on: int = SUNDAY) -> date:
    """First day of the week containing ``day`` (0=Monday ... 6=Sunday)."""
    return day - timedelta(days=(day.weekday() - week_starts_on) % 7)


def month_bounds(anchor: date) -> Tuple[date, date]:
    first = anchor.replace(day=1)
    last = first + relativedelta(months=1) - timedelta(days=1)
    return first, last


def month_grid_bounds(anchor: date, week_starts_on: int = SUNDAY) -> Tuple[date, date]:
    """First and last day shown in the month grid, padded to whole weeks."""
    first, last = month_bounds(anchor)
    grid_start = start_of_week(first, week_starts_on)
    grid_end = start_of_week(last, week_starts_on) + timedelta(days=6)
    return grid_start, grid_end


def _at(day: date, tz: tzinfo, hour: int = 0) -> datetime:
    return datetime.combine(day, time(hour), tzinfo=tz)


def _events_between(events: Iterable[CalendarEvent], start: datetime, end: datetime) -> List[CalendarEvent]:
    return [e for e in events if intersects_window(e.start, e.end, start, end)]


def _today(tz: tzinfo, today: Optional[date]) -> date:
    return today if today is not None else datetime.now(tz).date()


# ============================================
# WINDOWS & NAVIGATION
# ============================================

def view_window(
    view: CalendarView,
    anchor: date,
    week_starts_on: int = SUNDAY,
    tz: tzinfo = timezone.utc
) -> Tuple[datetime, datetime]:
    """The [start, end) range a view needs events for."""
    if view == CalendarView.MONTH:
        grid_start, grid_end = month_grid_bounds(anchor, week_starts_on)
        return _at(grid_start, tz), _at(grid_end + timedelta(days=1), tz)
    if view == CalendarView.WEEK:
        week_start = start_of_week(anchor, week_starts_on)
        return _at(week_start, tz), _at(week_start + timedelta(days=7), tz)
    return _at(anchor, tz), _at(anchor + timedelta(days=1), tz)


def shift_anchor(view: CalendarView, anchor: date, steps: int = 1) -> date:
    """Move the anchor by whole months, weeks or days (negative steps go back)."""
    if view == CalendarView.MONTH:
        return anchor + relativedelta(months=steps)
    if view == CalendarView.WEEK:
        return anchor + timedelta(weeks=steps)
    return anchor + timedelta(days=steps)


def view_title(view: CalendarView, anchor: date, week_starts_on: int = SUNDAY) -> str:
    if view == CalendarView.MONTH:
        return anchor.strftime("%B %Y")
    if view == CalendarView.WEEK:
        first = start_of_week(anchor, week_starts_on)
        last = first + timedelta(days=6)
        return f"{first:%b} {first.day} - {last:%b} {last.day}, {last.year}"
    return f"{anchor:%B} {anchor.day}, {anchor.year}"


# ============================================
# RENDERERS
# ============================================

def render_month(
    events: Sequence[CalendarEvent],
    anchor: date,
    week_starts_on: int = SUNDAY,
    tz: tzinfo = timezone.utc,
    max_per_cell: int = 3,
    today: Optional[date] = None
) -> List[List[ViewCell]]:
    """Rows of seven day cells covering the anchor's month, padded to whole weeks."""
    grid_start, grid_end = month_grid_bounds(anchor, week_starts_on)
    current = _today(tz, today)
    ordered = sort_events(events)

    rows: List[List[ViewCell]] = []
    day = grid_start
    while day <= grid_end:
        if (day - grid_start).days % 7 == 0:
            rows.append([])
        day_events = _events_between(ordered, _at(day, tz), _at(day + timedelta(days=1), tz))
        rows[-1].append(ViewCell(
            day=day,
            in_month=(day.month == anchor.month and day.year == anchor.year),
            is_today=(day == current),
            events=day_events[:max_per_cell],
            more=max(len(day_events) - max_per_cell, 0),
        ))
        day += timedelta(days=1)
    return rows


def _hour_rows(
    events: Sequence[CalendarEvent],
    days: Sequence[date],
    tz: tzinfo,
    current: date
) -> List[List[ViewCell]]:
    ordered = sort_events(events)
    rows = []
    for hour in range(HOURS_PER_DAY):
        row = []
        for day in days:
            slot_start = _at(day, tz, hour)
            slot_end = slot_start + timedelta(hours=1)
            row.append(ViewCell(
                day=day,
                hour=hour,
                is_today=(day == current),
                events=_events_between(ordered, slot_start, slot_end),
            ))
        rows.append(row)
    return rows


def render_week(
    events: Sequence[CalendarEvent],
    anchor: date,
    week_starts_on: int = SUNDAY,
    tz: tzinfo = timezone.utc,
    today: Optional[date] = None
) -> List[List[ViewCell]]:
    """24 hourly rows, each with one cell per day of the anchor's week."""
    first = start_of_week(anchor, week_starts_on)
    days = [first + timedelta(days=i) for i in range(7)]
    return _hour_rows(events, days, tz, _today(tz, today))


def render_day(
    events: Sequence[CalendarEvent],
    anchor: date,
    tz: tzinfo = timezone.utc,
    today: Optional[date] = None
) -> List[List[ViewCell]]:
    """24 hourly rows with a single cell for the anchor day."""
    return _hour_rows(events, [anchor], tz, _today(tz, today))


def render_view(
    view: CalendarView,
    events: Sequence[CalendarEvent],
    anchor: date,
    week_starts_on: int = SUNDAY,
    tz: tzinfo = timezone.utc,
    max_per_cell: int = 3,
    today: Optional[date] = None
) -> List[List[ViewCell]]:
    if view == CalendarView.MONTH:
        return render_month(events, anchor, week_starts_on, tz, max_per_cell, today)
    if view == CalendarView.WEEK:
        return render_week(events, anchor, week_starts_on, tz, today)
    return render_day(events, anchor, tz, today)
