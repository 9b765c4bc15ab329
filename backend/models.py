"""
Student Dashboard - Pydantic Models (v2 syntax)
"""

import re
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ============================================
# ENUMS
# ============================================

class EventCategory(str, Enum):
    BASE = "base"              # Classes, fixed commitments (immovable)
    FREE = "free"              # Declared free-time windows
    ASSIGNMENT = "assignment"  # Assignment work placed into free time

    @property
    def precedence(self) -> int:
        """Lower wins: base > free > assignment."""
        return _PRECEDENCE[self]


_PRECEDENCE = {
    EventCategory.BASE: 0,
    EventCategory.FREE: 1,
    EventCategory.ASSIGNMENT: 2,
}


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class ConflictReason(str, Enum):
    OVERLAPS_BASE = "overlaps_base"
    OUTSIDE_FREE_TIME = "outside_free_time"


class CalendarView(str, Enum):
    MONTH = "month"
    WEEK = "week"
    DAY = "day"


WEEKDAY_CODES = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")
BY_DAY_PATTERN = re.compile(r"^([+-]?\d{1,2})?(MO|TU|WE|TH|FR|SA|SU)$")


# ============================================
# RECURRENCE MODELS
# ============================================

class RecurrenceRule(BaseModel):
    """A recurring-event rule: FREQ/INTERVAL/COUNT|UNTIL/BYDAY/BYMONTH/BYMONTHDAY."""

    frequency: Frequency
    interval: int = Field(default=1, ge=1)
    count: Optional[int] = Field(default=None, ge=1)
    until: Optional[datetime] = None
    by_day: List[str] = Field(default_factory=list)
    by_month: List[int] = Field(default_factory=list)
    by_month_day: List[int] = Field(default_factory=list)
    exdates: List[datetime] = Field(default_factory=list)

    @field_validator("by_day")
    @classmethod
    def _check_by_day(cls, value: List[str]) -> List[str]:
        tokens = []
        for raw in value:
            token = raw.strip().upper()
            match = BY_DAY_PATTERN.match(token)
            if not match:
                raise ValueError(f"Invalid by_day token: {raw!r}")
            ordinal = match.group(1)
            if ordinal is not None and not 1 <= abs(int(ordinal)) <= 53:
                raise ValueError(f"by_day ordinal out of range: {raw!r}")
            tokens.append(token)
        return tokens

    @field_validator("by_month")
    @classmethod
    def _check_by_month(cls, value: List[int]) -> List[int]:
        for month in value:
            if not 1 <= month <= 12:
                raise ValueError(f"by_month must be within 1..12, got {month}")
        return value

    @field_validator("by_month_day")
    @classmethod
    def _check_by_month_day(cls, value: List[int]) -> List[int]:
        for day in value:
            if day == 0 or not -31 <= day <= 31:
                raise ValueError(f"by_month_day must be within ±1..31, got {day}")
        return value

    @model_validator(mode="after")
    def _single_end_condition(self):
        if self.count is not None and self.until is not None:
            raise ValueError("A recurrence rule takes either count or until, not both")
        return self

    def to_rrule(self) -> str:
        """Render the rule in iCalendar RRULE form."""
        parts = [f"FREQ={self.frequency.value.upper()}"]
        if self.interval != 1:
            parts.append(f"INTERVAL={self.interval}")
        if self.count is not None:
            parts.append(f"COUNT={self.count}")
        if self.until is not None:
            until = self.until
            if until.tzinfo is not None:
                until = until.astimezone(timezone.utc)
                parts.append(f"UNTIL={until:%Y%m%dT%H%M%S}Z")
            else:
                parts.append(f"UNTIL={until:%Y%m%dT%H%M%S}")
        if self.by_day:
            parts.append("BYDAY=" + ",".join(self.by_day))
        if self.by_month:
            parts.append("BYMONTH=" + ",".join(str(m) for m in self.by_month))
        if self.by_month_day:
            parts.append("BYMONTHDAY=" + ",".join(str(d) for d in self.by_month_day))
        return ";".join(parts)


# ============================================
# EVENT MODELS
# ============================================

class CalendarEventBase(BaseModel):
    title: str = Field(min_length=1)
    description: str = ""
    start: datetime
    end: datetime
    category: EventCategory = EventCategory.BASE
    recurrence: Optional[RecurrenceRule] = None
    all_day: bool = False

    @model_validator(mode="after")
    def _end_not_before_start(self):
        if (self.start.tzinfo is None) != (self.end.tzinfo is None):
            raise ValueError("Event start and end must both carry a timezone, or neither")
        if self.end < self.start:
            raise ValueError("Event end must not be before its start")
        return self


class CalendarEventCreate(CalendarEventBase):
    pass


class CalendarEvent(CalendarEventBase):
    model_config = ConfigDict(from_attributes=True)

    id: str
    parent_id: Optional[str] = None
    user_id: Optional[str] = None

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def is_recurring(self) -> bool:
        return self.recurrence is not None


# ============================================
# CONFLICT / CALENDAR RESPONSE MODELS
# ============================================

class ConflictNotice(BaseModel):
    event: CalendarEvent
    reason: ConflictReason
    blocking_event_id: Optional[str] = None


class CalendarResponse(BaseModel):
    user_id: str
    window_start: datetime
    window_end: datetime
    events: List[CalendarEvent]
    dropped: List[ConflictNotice] = Field(default_factory=list)
    warnings: List[ConflictNotice] = Field(default_factory=list)


class ViewCell(BaseModel):
    day: date
    hour: Optional[int] = None
    in_month: bool = True
    is_today: bool = False
    events: List[CalendarEvent] = Field(default_factory=list)
    more: int = 0


class ViewResponse(BaseModel):
    view: CalendarView
    anchor: date
    title: str
    window_start: datetime
    window_end: datetime
    rows: List[List[ViewCell]]
    dropped: List[ConflictNotice] = Field(default_factory=list)
    warnings: List[ConflictNotice] = Field(default_factory=list)


class InsertResult(BaseModel):
    event: CalendarEvent
    pruned: List[str] = Field(default_factory=list)


class ImportFailure(BaseModel):
    title: str
    error: str


class ImportResult(BaseModel):
    imported: int
    events: List[CalendarEvent] = Field(default_factory=list)
    pruned: List[str] = Field(default_factory=list)
    failures: List[ImportFailure] = Field(default_factory=list)


# ============================================
# PROXY REQUEST MODELS
# ============================================

class EmailPollingRequest(BaseModel):
    access_token: Optional[str] = None
    user_id: Optional[str] = None


class CanvasRequest(BaseModel):
    access_token: Optional[str] = None
    user_id: Optional[str] = None


class CalendarScheduleRequest(BaseModel):
    user_id: Optional[str] = None


class VectorStoreRequest(BaseModel):
    user_id: Optional[str] = None
    access_token: Optional[str] = None
    provider: Optional[str] = None


# ============================================
# API RESPONSE MODELS
# ============================================

class HealthStatus(BaseModel):
    status: str = "healthy"
    version: str = "1.0.0"
    database: str = "connected"


class SettingUpdate(BaseModel):
    key: str
    value: str
