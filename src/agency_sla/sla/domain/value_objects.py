"""
SLA Value Objects
==================

Immutable value objects and pure calculations for the SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Dict, Iterable, List, Optional, Sequence
from uuid import UUID
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field, field_validator, model_validator

from agency_sla.sla.domain.entities import BusinessHour, CalendarOverride, SlaRule


def resolve_timezone(name: str) -> tzinfo:
    """Map a configured timezone name to a tzinfo."""
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def day_of_week(day: date) -> int:
    """Day index used by agency business hours: 0 = Sunday .. 6 = Saturday."""
    return day.isoweekday() % 7


class RuleMatcher:
    """
    Deterministic rule specificity.

    Order: exact (priority + category), priority-only, category-only,
    catch-all, then the first rule of the policy.
    """

    @staticmethod
    def select_rule(
        rules: Sequence[SlaRule],
        priority_id: Optional[UUID],
        category_id: Optional[UUID]
    ) -> Optional[SlaRule]:
        if not rules:
            return None

        if priority_id is not None and category_id is not None:
            for rule in rules:
                if rule.priority_id == priority_id and rule.category_id == category_id:
                    return rule

        if priority_id is not None:
            for rule in rules:
                if rule.priority_id == priority_id and rule.category_id is None:
                    return rule

        if category_id is not None:
            for rule in rules:
                if rule.category_id == category_id and rule.priority_id is None:
                    return rule

        for rule in rules:
            if rule.is_catch_all:
                return rule

        return rules[0]


@dataclass(frozen=True)
class WorkingWindow:
    """Working hours of a single day, in agency local time."""
    start: time
    end: time

    @property
    def is_empty(self) -> bool:
        return self.end <= self.start


class BusinessCalendar:
    """
    An agency's working calendar over a bounded period.

    Calendar overrides take precedence over the weekly table. An override
    marked as working but without explicit hours counts as non-working.
    """

    def __init__(
        self,
        business_hours: Iterable[BusinessHour],
        overrides: Iterable[CalendarOverride] = (),
        tz: tzinfo = timezone.utc
    ):
        self._weekly: Dict[int, WorkingWindow] = {
            bh.day_of_week: WorkingWindow(bh.start_time, bh.end_time)
            for bh in business_hours
            if bh.is_active
        }
        self._overrides: Dict[date, CalendarOverride] = {
            o.override_date: o for o in overrides
        }
        self._tz = tz

    @property
    def has_working_hours(self) -> bool:
        return bool(self._weekly)

    def window_for(self, day: date) -> Optional[WorkingWindow]:
        """Working window for a calendar date, or None for a non-working day."""
        override = self._overrides.get(day)
        if override is not None:
            if not override.is_working_day or override.start_time is None or override.end_time is None:
                return None
            return WorkingWindow(override.start_time, override.end_time)
        return self._weekly.get(day_of_week(day))

    def add_business_minutes(
        self,
        start: datetime,
        minutes: int,
        max_iterations: int = 365
    ) -> Optional[datetime]:
        """
        Walk forward from start consuming minutes only inside working windows.

        Args:
            start: Timezone-aware start instant
            minutes: Business minutes to consume
            max_iterations: Cap on day-walk iterations

        Returns:
            The due instant in UTC, or None when the cap was hit before the
            duration was consumed.
        """
        if minutes <= 0:
            return start.astimezone(timezone.utc)

        remaining = timedelta(minutes=minutes)
        # Walk on local wall-clock time; localise once at the end
        cursor = start.astimezone(self._tz).replace(tzinfo=None)
        iterations = 0

        while remaining > timedelta(0):
            if iterations >= max_iterations:
                return None
            iterations += 1

            window = self.window_for(cursor.date())
            if window is None or window.is_empty:
                cursor = _start_of_next_day(cursor)
                continue

            window_start = datetime.combine(cursor.date(), window.start)
            window_end = datetime.combine(cursor.date(), window.end)

            if cursor < window_start:
                cursor = window_start

            if cursor >= window_end:
                cursor = _start_of_next_day(cursor)
                continue

            available = window_end - cursor
            if remaining <= available:
                cursor += remaining
                remaining = timedelta(0)
            else:
                remaining -= available
                cursor = _start_of_next_day(cursor)

        return cursor.replace(tzinfo=self._tz).astimezone(timezone.utc)


def _start_of_next_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date() + timedelta(days=1), time.min)


# ========== Seed configuration (loaded from YAML) ==========

def _require_time_string(value):
    # Unquoted HH:MM is read by YAML as a base-60 integer
    if isinstance(value, (int, float)):
        raise ValueError("times must be quoted strings such as \"09:00\"")
    return value


class SlaRuleSeed(BaseModel):
    """Rule definition inside a seeded policy."""
    priority_id: Optional[UUID] = None
    category_id: Optional[UUID] = None
    response_time_minutes: int = Field(ge=1)
    resolution_time_minutes: int = Field(ge=1)
    escalation_after_minutes: Optional[int] = Field(default=None, ge=1)


class SlaPolicySeed(BaseModel):
    """Policy definition for an agency."""
    policy_name: str = Field(min_length=1)
    description: Optional[str] = None
    is_active: bool = True
    applies_business_hours: bool = True
    rules: List[SlaRuleSeed] = Field(default_factory=list)


class BusinessHourSeed(BaseModel):
    """Weekly working window; 0 = Sunday .. 6 = Saturday."""
    day_of_week: int = Field(ge=0, le=6)
    start_time: time
    end_time: time
    is_active: bool = True

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def validate_time_format(cls, v):
        return _require_time_string(v)

    @model_validator(mode="after")
    def validate_window(self) -> "BusinessHourSeed":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class CalendarOverrideSeed(BaseModel):
    """Holiday or special working hours for one date."""
    override_date: date
    is_working_day: bool = False
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    description: Optional[str] = None

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def validate_time_format(cls, v):
        return _require_time_string(v)


class EscalationLevelSeed(BaseModel):
    """Configuration for a single escalation level."""
    level_number: int = Field(ge=1, description="Escalation level (1-based)")
    escalation_role: Optional[str] = None
    escalation_department_id: Optional[UUID] = None
    notify_via_email: bool = True
    notify_via_sms: bool = False


class EscalationMatrixSeed(BaseModel):
    """Escalation matrix for an agency, optionally scoped to a priority."""
    matrix_name: Optional[str] = None
    priority_id: Optional[UUID] = None
    max_response_time_minutes: Optional[int] = Field(default=None, ge=1)
    max_resolution_time_minutes: Optional[int] = Field(default=None, ge=1)
    auto_escalation_enabled: bool = True
    levels: List[EscalationLevelSeed] = Field(default_factory=list)

    @field_validator("levels")
    @classmethod
    def validate_unique_levels(cls, v: List[EscalationLevelSeed]) -> List[EscalationLevelSeed]:
        numbers = [level.level_number for level in v]
        if len(numbers) != len(set(numbers)):
            raise ValueError("escalation level numbers must be unique within a matrix")
        return sorted(v, key=lambda level: level.level_number)


class AgencySeed(BaseModel):
    """Everything the SLA engine needs to know about one agency."""
    agency_id: UUID
    business_hours: List[BusinessHourSeed] = Field(default_factory=list)
    calendar_overrides: List[CalendarOverrideSeed] = Field(default_factory=list)
    sla_policies: List[SlaPolicySeed] = Field(default_factory=list)
    escalation_matrices: List[EscalationMatrixSeed] = Field(default_factory=list)


class SlaSeedConfig(BaseModel):
    """
    SLA seed data loaded from YAML.

    This is a value object - immutable and defined by its attributes.
    """
    agencies: List[AgencySeed] = Field(default_factory=list)
