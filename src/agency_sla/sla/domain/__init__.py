"""
SLA Domain Layer
================

Domain layer for SLA tracking.

Contains:
- Entities: Core business objects with identity (SlaPolicy, SlaTracking, BreachLog, ...)
- Value Objects: Immutable objects and pure calculations (BusinessCalendar, RuleMatcher)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from agency_sla.sla.domain.entities import (
    TicketSnapshot,
    SlaPolicy,
    SlaRule,
    SlaTracking,
    BusinessHour,
    CalendarOverride,
    CommitmentStatus,
    LiveStatus,
    BreachLog,
    EscalationLevel,
    EscalationEvent,
)
from agency_sla.sla.domain.value_objects import (
    RuleMatcher,
    WorkingWindow,
    BusinessCalendar,
    SlaSeedConfig,
    resolve_timezone,
    day_of_week,
)

__all__ = [
    # Entities
    "TicketSnapshot",
    "SlaPolicy",
    "SlaRule",
    "SlaTracking",
    "BusinessHour",
    "CalendarOverride",
    "CommitmentStatus",
    "LiveStatus",
    "BreachLog",
    "EscalationLevel",
    "EscalationEvent",
    # Value Objects & Calculations
    "RuleMatcher",
    "WorkingWindow",
    "BusinessCalendar",
    "SlaSeedConfig",
    "resolve_timezone",
    "day_of_week",
]
