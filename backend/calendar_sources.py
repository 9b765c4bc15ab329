"""
Student Dashboard - Event Sources (Fetcher)
Issues the three per-user reads (base, free-time, assignment) concurrently,
each wrapped in retry with exponential backoff.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence

import asyncpg

import database
from config import FetchConfig, get_fetch_config
from models import CalendarEvent, EventCategory

logger = logging.getLogger(__name__)

# Transient failures worth another attempt
RETRYABLE_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
)


class EventFetchError(Exception):
    """A category read still failed after all retries."""

    def __init__(self, category: EventCategory, cause: BaseException):
        super().__init__(f"Failed to fetch {category.value} events: {cause}")
        self.category = category
        self.cause = cause


@dataclass
class FetchedEvents:
    """Raw rows of the three event collections for one user."""

    base: List[Dict[str, Any]] = field(default_factory=list)
    free: List[Dict[str, Any]] = field(default_factory=list)
    assignments: List[Dict[str, Any]] = field(default_factory=list)

    def by_category(self) -> Dict[EventCategory, List[Dict[str, Any]]]:
        return {
            EventCategory.BASE: self.base,
            EventCategory.FREE: self.free,
            EventCategory.ASSIGNMENT: self.assignments,
        }


# ============================================
# SOURCE INTERFACES
# ============================================

class EventSource(Protocol):
    async def fetch_base_events(self, user_id: str) -> List[Dict[str, Any]]: ...

    async def fetch_free_time_events(self, user_id: str) -> List[Dict[str, Any]]: ...

    async def fetch_assignment_events(self, user_id: str) -> List[Dict[str, Any]]: ...


class EventStore(EventSource, Protocol):
    async def insert_event(self, category: EventCategory, user_id: str,
                           event: CalendarEvent) -> Dict[str, Any]: ...

    async def delete_events(self, category: EventCategory, user_id: str,
                            ids: Sequence[str]) -> int: ...


class DatabaseEventSource:
    """Event store backed by the Postgres event tables."""

    async def fetch_base_events(self, user_id: str) -> List[Dict[str, Any]]:
        return await database.get_events(EventCategory.BASE, user_id)

    async def fetch_free_time_events(self, user_id: str) -> List[Dict[str, Any]]:
        return await database.get_events(EventCategory.FREE, user_id)

    async def fetch_assignment_events(self, user_id: str) -> List[Dict[str, Any]]:
        return await database.get_events(EventCategory.ASSIGNMENT, user_id)

    async def insert_event(self, category: EventCategory, user_id: str,
                           event: CalendarEvent) -> Dict[str, Any]:
        return await database.insert_event(category, user_id, event)

    async def delete_events(self, category: EventCategory, user_id: str,
                            ids: Sequence[str]) -> int:
        return await database.delete_events(category, user_id, ids)


# ============================================
# FETCHING
# ============================================

def backoff_delay(attempt: int, config: FetchConfig) -> float:
    """Delay before retry ``attempt`` (0-based): base * 2**attempt, capped."""
    return min(config.retry_base_delay_seconds * (2 ** attempt), config.retry_max_delay_seconds)


async def fetch_with_retry(
    category: EventCategory,
    fetch_fn: Callable[[str], Awaitable[List[Dict[str, Any]]]],
    user_id: str,
    config: FetchConfig
) -> List[Dict[str, Any]]:
    """Run one category read, retrying transient failures with exponential backoff."""
    attempt = 0
    while True:
        try:
            return list(await fetch_fn(user_id))
        except RETRYABLE_ERRORS as e:
            if attempt >= config.retry_count:
                logger.error(f"Giving up on {category.value} events for {user_id}: {e}")
                raise EventFetchError(category, e) from e
            wait_time = backoff_delay(attempt, config)
            logger.warning(
                f"Fetching {category.value} events failed ({e}), "
                f"retry {attempt + 1}/{config.retry_count} in {wait_time}s"
            )
            await asyncio.sleep(wait_time)
            attempt += 1


async def fetch_user_events(
    source: EventSource,
    user_id: str,
    config: Optional[FetchConfig] = None
) -> FetchedEvents:
    """Issue the base, free-time and assignment reads in parallel."""
    config = config or get_fetch_config()
    base, free, assignments = await asyncio.gather(
        fetch_with_retry(EventCategory.BASE, source.fetch_base_events, user_id, config),
        fetch_with_retry(EventCategory.FREE, source.fetch_free_time_events, user_id, config),
        fetch_with_retry(EventCategory.ASSIGNMENT, source.fetch_assignment_events, user_id, config),
    )
    logger.debug(
        f"Fetched events for {user_id}: {len(base)} base, {len(free)} free, "
        f"{len(assignments)} assignment"
    )
    return FetchedEvents(base=base, free=free, assignments=assignments)
