"""
Unit Tests for Deadline Calculation

Tests for calendar-time and business-hours due dates, overrides and fallbacks.
"""

from datetime import datetime, date, time, timedelta, timezone
from uuid import uuid4

import pytest

from agency_sla.core import ValidationException
from agency_sla.sla.application import DeadlineCalculator, IBusinessCalendarProvider
from agency_sla.sla.domain import BusinessCalendar, BusinessHour, CalendarOverride, day_of_week

AGENCY = uuid4()
FRIDAY_1600 = datetime(2024, 1, 19, 16, 0, tzinfo=timezone.utc)
MONDAY = date(2024, 1, 22)


def weekday_hours(start=time(8, 0), end=time(17, 0)):
    return [BusinessHour(AGENCY, d, start, end) for d in (1, 2, 3, 4, 5)]


class InMemoryCalendar(IBusinessCalendarProvider):
    """Calendar provider backed by lists."""

    def __init__(self, hours, overrides=()):
        self.hours = list(hours)
        self.overrides = list(overrides)
        self.requested_range = None

    async def get_business_hours(self, agency_id):
        return list(self.hours)

    async def get_overrides(self, agency_id, start_date, end_date):
        self.requested_range = (start_date, end_date)
        return [o for o in self.overrides if start_date <= o.override_date <= end_date]


class TestDayOfWeek:
    """Test day numbering."""

    def test_sunday_is_zero(self):
        assert day_of_week(date(2024, 1, 21)) == 0
        assert day_of_week(date(2024, 1, 22)) == 1
        assert day_of_week(date(2024, 1, 20)) == 6


class TestBusinessCalendar:
    """Test the business-hours walk."""

    def test_weekend_is_skipped(self):
        calendar = BusinessCalendar(weekday_hours())

        due = calendar.add_business_minutes(FRIDAY_1600, 120)

        assert due == datetime(2024, 1, 22, 9, 0, tzinfo=timezone.utc)
        assert due.tzinfo == timezone.utc

    def test_start_before_window_advances_to_opening(self):
        calendar = BusinessCalendar(weekday_hours())
        start = datetime(2024, 1, 22, 6, 30, tzinfo=timezone.utc)

        assert calendar.add_business_minutes(start, 60) == datetime(2024, 1, 22, 9, 0, tzinfo=timezone.utc)

    def test_start_after_window_moves_to_next_day(self):
        calendar = BusinessCalendar(weekday_hours())
        start = datetime(2024, 1, 22, 18, 0, tzinfo=timezone.utc)

        assert calendar.add_business_minutes(start, 60) == datetime(2024, 1, 23, 9, 0, tzinfo=timezone.utc)

    def test_duration_ending_at_close(self):
        calendar = BusinessCalendar(weekday_hours())
        start = datetime(2024, 1, 22, 16, 0, tzinfo=timezone.utc)

        assert calendar.add_business_minutes(start, 60) == datetime(2024, 1, 22, 17, 0, tzinfo=timezone.utc)

    def test_multi_day_duration(self):
        calendar = BusinessCalendar(weekday_hours())
        start = datetime(2024, 1, 22, 8, 0, tzinfo=timezone.utc)

        # Two full 9-hour days plus one hour
        due = calendar.add_business_minutes(start, 2 * 540 + 60)

        assert due == datetime(2024, 1, 24, 9, 0, tzinfo=timezone.utc)

    def test_holiday_override_is_skipped(self):
        holiday = CalendarOverride(AGENCY, MONDAY, is_working_day=False)
        calendar = BusinessCalendar(weekday_hours(), [holiday])

        due = calendar.add_business_minutes(FRIDAY_1600, 120)

        assert due == datetime(2024, 1, 23, 9, 0, tzinfo=timezone.utc)

    def test_working_override_without_hours_is_non_working(self):
        override = CalendarOverride(AGENCY, MONDAY, is_working_day=True)
        calendar = BusinessCalendar(weekday_hours(), [override])

        assert calendar.window_for(MONDAY) is None
        assert calendar.add_business_minutes(FRIDAY_1600, 120) == datetime(2024, 1, 23, 9, 0, tzinfo=timezone.utc)

    def test_special_hours_on_weekend(self):
        saturday = CalendarOverride(
            AGENCY, date(2024, 1, 20), is_working_day=True,
            start_time=time(10, 0), end_time=time(12, 0)
        )
        calendar = BusinessCalendar(weekday_hours(), [saturday])

        due = calendar.add_business_minutes(FRIDAY_1600, 120)

        assert due == datetime(2024, 1, 20, 11, 0, tzinfo=timezone.utc)

    def test_inactive_hours_are_ignored(self):
        hours = weekday_hours()
        hours[0] = BusinessHour(AGENCY, 1, time(8, 0), time(17, 0), is_active=False)
        calendar = BusinessCalendar(hours)

        assert calendar.window_for(MONDAY) is None

    def test_local_timezone_hours(self):
        eastern = timezone(timedelta(hours=-5))
        calendar = BusinessCalendar(weekday_hours(), tz=eastern)
        # Friday 16:00 local
        start = datetime(2024, 1, 19, 21, 0, tzinfo=timezone.utc)

        due = calendar.add_business_minutes(start, 120)

        assert due == datetime(2024, 1, 22, 14, 0, tzinfo=timezone.utc)

    def test_iteration_cap_returns_none(self):
        calendar = BusinessCalendar(weekday_hours())

        assert calendar.add_business_minutes(FRIDAY_1600, 100_000, max_iterations=10) is None


class TestDeadlineCalculator:
    """Test due-date calculation with the calendar provider."""

    @pytest.mark.asyncio
    async def test_calendar_time_identity(self):
        provider = InMemoryCalendar(weekday_hours())
        calculator = DeadlineCalculator(provider)

        for minutes in (0, 1, 60, 480, 10_000):
            due = await calculator.calculate_due_at(FRIDAY_1600, minutes, False, AGENCY)
            assert due == FRIDAY_1600 + timedelta(minutes=minutes)

        assert provider.requested_range is None

    @pytest.mark.asyncio
    async def test_business_hours_mode(self):
        calculator = DeadlineCalculator(InMemoryCalendar(weekday_hours()))

        due = await calculator.calculate_due_at(FRIDAY_1600, 120, True, AGENCY)

        assert due == datetime(2024, 1, 22, 9, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_zero_minutes_returns_start(self):
        calculator = DeadlineCalculator(InMemoryCalendar(weekday_hours()))

        assert await calculator.calculate_due_at(FRIDAY_1600, 0, True, AGENCY) == FRIDAY_1600

    @pytest.mark.asyncio
    async def test_negative_minutes_rejected(self):
        calculator = DeadlineCalculator(InMemoryCalendar(weekday_hours()))

        with pytest.raises(ValidationException):
            await calculator.calculate_due_at(FRIDAY_1600, -5, False, AGENCY)

    @pytest.mark.asyncio
    async def test_no_business_hours_falls_back_to_calendar_time(self, caplog):
        calculator = DeadlineCalculator(InMemoryCalendar([]))

        due = await calculator.calculate_due_at(FRIDAY_1600, 120, True, AGENCY)

        assert due == FRIDAY_1600 + timedelta(minutes=120)
        assert "No business hours configured" in caplog.text

    @pytest.mark.asyncio
    async def test_iteration_cap_falls_back_to_calendar_time(self, caplog):
        calculator = DeadlineCalculator(InMemoryCalendar(weekday_hours()), max_iterations=5)

        due = await calculator.calculate_due_at(FRIDAY_1600, 100_000, True, AGENCY)

        assert due == FRIDAY_1600 + timedelta(minutes=100_000)
        assert "exhausted" in caplog.text

    @pytest.mark.asyncio
    async def test_lookahead_window_starts_on_start_date(self):
        provider = InMemoryCalendar(weekday_hours())
        calculator = DeadlineCalculator(provider, lookahead_days=90)

        await calculator.calculate_due_at(FRIDAY_1600, 30, True, AGENCY)

        assert provider.requested_range == (date(2024, 1, 19), date(2024, 4, 18))

    @pytest.mark.asyncio
    async def test_override_on_start_date_applies(self):
        holiday = CalendarOverride(AGENCY, date(2024, 1, 19), is_working_day=False)
        calculator = DeadlineCalculator(InMemoryCalendar(weekday_hours(), [holiday]))

        due = await calculator.calculate_due_at(FRIDAY_1600, 30, True, AGENCY)

        assert due == datetime(2024, 1, 22, 8, 30, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_override_beyond_lookahead_is_ignored(self):
        far_holiday = CalendarOverride(AGENCY, date(2024, 1, 22), is_working_day=False)
        provider = InMemoryCalendar(weekday_hours(), [far_holiday])
        calculator = DeadlineCalculator(provider, lookahead_days=2)

        due = await calculator.calculate_due_at(FRIDAY_1600, 120, True, AGENCY)

        # Monday is outside the two-day window, so it stays a working day
        assert due == datetime(2024, 1, 22, 9, 0, tzinfo=timezone.utc)
