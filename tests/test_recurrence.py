"""Tests for RRULE parsing and recurring-event expansion."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from conftest import UTC, at, make_event
from models import EventCategory, Frequency, RecurrenceRule
from recurrence import RecurrenceError, expand_event, expand_events, parse_rrule

WIDE_START = datetime(2024, 1, 1, tzinfo=UTC)
WIDE_END = datetime(2025, 1, 1, tzinfo=UTC)


def recurring(rule: str, start: datetime, hours: float = 1, event_id: str = "lecture"):
    return make_event(
        event_id, EventCategory.BASE, start, start + timedelta(hours=hours),
        recurrence=parse_rrule(rule),
    )


class TestParseRRule:
    def test_parses_all_supported_parts(self):
        rule = parse_rrule("RRULE:FREQ=MONTHLY;INTERVAL=2;BYMONTHDAY=15,-1;BYMONTH=1,6;UNTIL=20241231T000000Z")
        assert rule.frequency == Frequency.MONTHLY
        assert rule.interval == 2
        assert rule.by_month_day == [15, -1]
        assert rule.by_month == [1, 6]
        assert rule.until == datetime(2024, 12, 31, tzinfo=UTC)
        assert rule.count is None

    def test_lowercase_byday_tokens_are_normalized(self):
        rule = parse_rrule("FREQ=WEEKLY;BYDAY=mo,we")
        assert rule.by_day == ["MO", "WE"]

    def test_date_only_until_covers_whole_day(self):
        rule = parse_rrule("FREQ=DAILY;UNTIL=20240905")
        assert rule.until == datetime(2024, 9, 5, 23, 59, 59)

    def test_renders_back_to_rrule_text(self):
        rule = RecurrenceRule(frequency=Frequency.WEEKLY, interval=2, count=10, by_day=["MO", "WE"])
        assert rule.to_rrule() == "FREQ=WEEKLY;INTERVAL=2;COUNT=10;BYDAY=MO,WE"
        assert parse_rrule(rule.to_rrule()) == rule

    @pytest.mark.parametrize("text", [
        "",
        "INTERVAL=2",
        "FREQ=HOURLY",
        "FREQ=DAILY;INTERVAL=0",
        "FREQ=DAILY;COUNT=abc",
        "FREQ=WEEKLY;BYDAY=XX",
        "FREQ=DAILY;COUNT=3;UNTIL=20241231",
        "FREQ=DAILY;BOGUS",
    ])
    def test_rejects_invalid_rules(self, text):
        with pytest.raises(RecurrenceError):
            parse_rrule(text)


class TestExpandEvent:
    def test_weekly_by_day_with_count(self):
        event = recurring("FREQ=WEEKLY;BYDAY=MO,WE;COUNT=4", at(2, 9))
        starts = [i.start for i in expand_event(event, WIDE_START, WIDE_END)]
        assert starts == [at(2, 9), at(4, 9), at(9, 9), at(11, 9)]

    def test_every_other_week(self):
        event = recurring("FREQ=WEEKLY;INTERVAL=2;COUNT=3", at(2, 9))
        starts = [i.start for i in expand_event(event, WIDE_START, WIDE_END)]
        assert starts == [at(2, 9), at(16, 9), at(30, 9)]

    def test_until_is_inclusive(self):
        event = recurring("FREQ=DAILY;UNTIL=20240905", at(2, 9))
        assert len(expand_event(event, WIDE_START, WIDE_END)) == 4

    def test_monthly_on_31st_skips_short_months(self):
        start = datetime(2024, 1, 31, 10, tzinfo=UTC)
        event = recurring("FREQ=MONTHLY;COUNT=4", start)
        months = [i.start.month for i in expand_event(event, WIDE_START, WIDE_END)]
        assert months == [1, 3, 5, 7]

    def test_last_friday_of_month(self):
        event = recurring("FREQ=MONTHLY;BYDAY=-1FR;COUNT=3", at(27, 15))
        starts = [i.start.date().isoformat() for i in expand_event(event, WIDE_START, WIDE_END)]
        assert starts == ["2024-09-27", "2024-10-25", "2024-11-29"]

    def test_exdates_are_skipped(self):
        event = recurring("FREQ=DAILY;COUNT=5", at(2, 9))
        event.recurrence.exdates.append(at(3, 9))
        starts = [i.start for i in expand_event(event, WIDE_START, WIDE_END)]
        assert at(3, 9) not in starts
        assert len(starts) == 4

    def test_instances_keep_duration_and_point_at_parent(self):
        event = recurring("FREQ=DAILY;COUNT=2", at(2, 9), hours=1.5)
        first, second = expand_event(event, WIDE_START, WIDE_END)
        assert first.parent_id == "lecture"
        assert first.id == "lecture:2024-09-02T09:00:00+00:00"
        assert first.recurrence is None
        assert second.end - second.start == timedelta(hours=1, minutes=30)
        assert second.category == EventCategory.BASE

    def test_window_includes_instance_running_into_it(self):
        event = recurring("FREQ=DAILY", at(1, 23), hours=2)
        instances = expand_event(event, at(3, 0), at(4, 0))
        assert [i.start for i in instances] == [at(2, 23), at(3, 23)]

    def test_open_ended_rule_is_capped(self):
        event = recurring("FREQ=DAILY", at(2, 9))
        instances = expand_event(event, at(1, 0), at(1, 0) + timedelta(days=100), max_occurrences=10)
        assert len(instances) == 10

    def test_plain_event_passes_through_only_inside_window(self):
        event = make_event("essay", EventCategory.ASSIGNMENT, at(2, 9), at(2, 10))
        assert expand_event(event, at(1, 0), at(3, 0)) == [event]
        assert expand_event(event, at(3, 0), at(4, 0)) == []

    def test_expand_events_mixes_plain_and_recurring(self):
        plain = make_event("essay", EventCategory.ASSIGNMENT, at(2, 9), at(2, 10))
        series = recurring("FREQ=DAILY;COUNT=3", at(2, 12))
        expanded = expand_events([plain, series], WIDE_START, WIDE_END)
        assert len(expanded) == 4
        assert expanded[0] is plain
