"""Shared fixtures: event factories, an in-memory event store and fast configs."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Sequence

import pytest

from config import CalendarConfig, FetchConfig, reload_config
from models import CalendarEvent, EventCategory, RecurrenceRule

UTC = timezone.utc


def at(day: int, hour: int, minute: int = 0, month: int = 9, year: int = 2024) -> datetime:
    """Aware UTC timestamp in September 2024 unless told otherwise."""
    return datetime(year, month, day, hour, minute, tzinfo=UTC)


def make_event(
    event_id: str,
    category: EventCategory,
    start: datetime,
    end: datetime,
    title: str | None = None,
    recurrence: RecurrenceRule | None = None,
) -> CalendarEvent:
    return CalendarEvent(
        id=event_id,
        title=title or event_id,
        start=start,
        end=end,
        category=category,
        recurrence=recurrence,
    )


def as_timestamptz(value: datetime) -> datetime:
    """A timestamp as a ``timestamptz`` column hands it back: aware, in UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class InMemoryEventStore:
    """EventStore double keeping rows per category; can be told to fail reads."""

    def __init__(self):
        self.rows: Dict[EventCategory, List[Dict[str, Any]]] = {c: [] for c in EventCategory}
        self.failures: Dict[EventCategory, int] = {}
        self.reads: List[EventCategory] = []
        self.deleted: List[tuple] = []

    def add(self, category: EventCategory, user_id: str, **fields) -> Dict[str, Any]:
        row = {"user_id": user_id, **fields}
        self.rows[category].append(row)
        return row

    def ids(self, category: EventCategory) -> List[str]:
        return [row["id"] for row in self.rows[category]]

    async def _read(self, category: EventCategory, user_id: str) -> List[Dict[str, Any]]:
        self.reads.append(category)
        if self.failures.get(category):
            self.failures[category] -= 1
            raise ConnectionError(f"{category.value} table unavailable")
        return [dict(row) for row in self.rows[category] if row.get("user_id") == user_id]

    async def fetch_base_events(self, user_id: str) -> List[Dict[str, Any]]:
        return await self._read(EventCategory.BASE, user_id)

    async def fetch_free_time_events(self, user_id: str) -> List[Dict[str, Any]]:
        return await self._read(EventCategory.FREE, user_id)

    async def fetch_assignment_events(self, user_id: str) -> List[Dict[str, Any]]:
        return await self._read(EventCategory.ASSIGNMENT, user_id)

    async def insert_event(self, category: EventCategory, user_id: str,
                           event: CalendarEvent) -> Dict[str, Any]:
        self.rows[category] = [
            r for r in self.rows[category]
            if not (r["user_id"] == user_id and r["id"] == event.id)
        ]
        rule = event.recurrence
        row = {
            "id": event.id,
            "user_id": user_id,
            "title": event.title,
            "description": event.description,
            "start_time": as_timestamptz(event.start),
            "end_time": as_timestamptz(event.end),
            "all_day": event.all_day,
        }
        # Same columns the event tables keep: RRULE text plus UTC exdates
        if rule is not None:
            exdates = [as_timestamptz(d) for d in rule.exdates]
            row["recurrence"] = (
                {"rrule": rule.to_rrule(), "exdates": exdates} if exdates else rule.to_rrule()
            )
        self.rows[category].append(row)
        return dict(row)

    async def delete_events(self, category: EventCategory, user_id: str,
                            ids: Sequence[str]) -> int:
        before = len(self.rows[category])
        self.rows[category] = [
            r for r in self.rows[category]
            if not (r["user_id"] == user_id and r["id"] in ids)
        ]
        removed = before - len(self.rows[category])
        self.deleted.append((category, tuple(ids)))
        return removed


@pytest.fixture
def store() -> InMemoryEventStore:
    return InMemoryEventStore()


@pytest.fixture
def calendar_config() -> CalendarConfig:
    return CalendarConfig(
        timezone="UTC",
        week_starts_on=6,
        expansion_horizon_days=60,
        max_occurrences_per_rule=500,
        max_events_per_cell=3,
        require_free_window=True,
    )


@pytest.fixture
def fetch_config() -> FetchConfig:
    return FetchConfig(retry_count=2, retry_base_delay_seconds=0.0, retry_max_delay_seconds=0.0)


@pytest.fixture(autouse=True)
def clean_config(monkeypatch, tmp_path):
    """Keep the developer's .env and CALENDAR_* variables out of the tests."""
    monkeypatch.chdir(tmp_path)
    for key in ("CALENDAR_TIMEZONE", "CALENDAR_WEEK_STARTS_ON", "CALENDAR_REQUIRE_FREE_WINDOW",
                "CALENDAR_EXPANSION_HORIZON_DAYS", "CALENDAR_MAX_OCCURRENCES_PER_RULE",
                "FETCH_RETRY_COUNT", "FETCH_RETRY_BASE_DELAY_SECONDS",
                "EMAIL_SERVICE_URL", "CANVAS_SERVICE_URL", "CALENDAR_SERVICE_URL",
                "VECTOR_DB_SERVICE_URL"):
        monkeypatch.delenv(key, raising=False)
    reload_config()
    yield
    reload_config()
