"""
SLA Domain Entities
====================

Pure Python domain entities for SLA tracking.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime, date, time
from typing import Optional, List
from uuid import UUID

from agency_sla.config import (
    BreachType, CommitmentState, TriggeredBy, EventType,
    CLOSED_TICKET_STATUSES
)


def _minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from start to end, rounded to the nearest minute."""
    return round((end - start).total_seconds() / 60)


@dataclass
class TicketSnapshot:
    """
    Read-only view of a ticket owned by the ticket collaborator.

    Carries only the fields SLA tracking needs.
    """

    id: UUID
    agency_id: UUID
    created_at: datetime
    priority_id: Optional[UUID] = None
    category_id: Optional[UUID] = None
    status: Optional[str] = None
    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    is_escalated: bool = False
    escalation_level: int = 0

    @property
    def is_closed(self) -> bool:
        """Check if ticket is in a closed terminal status."""
        return self.status in CLOSED_TICKET_STATUSES

    def qualifying_at(self, breach_type: str) -> Optional[datetime]:
        """Timestamp of the event that satisfies the given commitment."""
        if breach_type == BreachType.RESPONSE:
            return self.first_response_at
        return self.resolved_at


@dataclass
class SlaRule:
    """Response/resolution targets, optionally scoped to a priority and/or category."""

    id: UUID
    policy_id: UUID
    response_time_minutes: int
    resolution_time_minutes: int
    priority_id: Optional[UUID] = None
    category_id: Optional[UUID] = None
    escalation_after_minutes: Optional[int] = None
    created_at: Optional[datetime] = None

    @property
    def is_catch_all(self) -> bool:
        return self.priority_id is None and self.category_id is None


@dataclass
class SlaPolicy:
    """An agency's SLA policy and its rules (in creation order)."""

    id: UUID
    agency_id: UUID
    policy_name: str
    is_active: bool = True
    applies_business_hours: bool = True
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    rules: List[SlaRule] = field(default_factory=list)


@dataclass
class BusinessHour:
    """Weekly working window; day_of_week runs 0 (Sunday) to 6 (Saturday)."""

    agency_id: UUID
    day_of_week: int
    start_time: time
    end_time: time
    is_active: bool = True


@dataclass
class CalendarOverride:
    """Date-specific exception to the weekly working hours."""

    agency_id: UUID
    override_date: date
    is_working_day: bool
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    description: Optional[str] = None


@dataclass
class CommitmentStatus:
    """
    Live status of one commitment, computed on read.

    Never persisted.
    """

    state: CommitmentState
    due_at: datetime
    is_overdue: bool
    minutes_remaining: int
    minutes_overdue: int
    breached_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "state": self.state,
            "due_at": self.due_at.isoformat(),
            "is_overdue": self.is_overdue,
            "minutes_remaining": self.minutes_remaining,
            "minutes_overdue": self.minutes_overdue,
            "breached_at": self.breached_at.isoformat() if self.breached_at else None,
        }


@dataclass
class SlaTracking:
    """
    Per-ticket SLA state.

    Each commitment is PENDING until it is reconciled against its
    qualifying event (MET, or MISSED when the event came after the due
    instant) or transitioned to BREACHED. All three end states are terminal.
    """

    id: Optional[UUID]
    ticket_id: UUID
    policy_id: UUID
    response_due_at: datetime
    resolution_due_at: datetime
    response_met: Optional[bool] = None
    response_breached: bool = False
    response_breach_at: Optional[datetime] = None
    resolution_met: Optional[bool] = None
    resolution_breached: bool = False
    resolution_breach_at: Optional[datetime] = None
    escalation_level: int = 0
    last_escalated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def due_at(self, breach_type: str) -> datetime:
        if breach_type == BreachType.RESPONSE:
            return self.response_due_at
        return self.resolution_due_at

    def state_of(self, breach_type: str) -> str:
        """Current state of the given commitment."""
        if breach_type == BreachType.RESPONSE:
            met, breached = self.response_met, self.response_breached
        else:
            met, breached = self.resolution_met, self.resolution_breached

        if breached:
            return CommitmentState.BREACHED
        if met:
            return CommitmentState.MET
        if met is False:
            return CommitmentState.MISSED
        return CommitmentState.PENDING

    def is_terminal(self, breach_type: str) -> bool:
        if breach_type == BreachType.RESPONSE:
            return self.response_breached or self.response_met is not None
        return self.resolution_breached or self.resolution_met is not None

    def commitment_status(self, breach_type: str, now: datetime) -> CommitmentStatus:
        state = self.state_of(breach_type)
        due_at = self.due_at(breach_type)
        breached_at = (
            self.response_breach_at if breach_type == BreachType.RESPONSE
            else self.resolution_breach_at
        )

        is_overdue = state == CommitmentState.PENDING and now > due_at
        if state in (CommitmentState.MET, CommitmentState.MISSED):
            remaining, overdue = 0, 0
        elif is_overdue or state == CommitmentState.BREACHED:
            remaining, overdue = 0, max(0, _minutes_between(due_at, now))
        else:
            remaining, overdue = max(0, _minutes_between(now, due_at)), 0

        return CommitmentStatus(
            state=state,
            due_at=due_at,
            is_overdue=is_overdue,
            minutes_remaining=remaining,
            minutes_overdue=overdue,
            breached_at=breached_at,
        )


@dataclass
class LiveStatus:
    """Derived response/resolution status of a tracking record."""

    response: CommitmentStatus
    resolution: CommitmentStatus
    evaluated_at: datetime

    @classmethod
    def for_tracking(cls, tracking: SlaTracking, now: datetime) -> "LiveStatus":
        return cls(
            response=tracking.commitment_status(BreachType.RESPONSE, now),
            resolution=tracking.commitment_status(BreachType.RESOLUTION, now),
            evaluated_at=now,
        )

    @property
    def is_any_breached(self) -> bool:
        return CommitmentState.BREACHED in (self.response.state, self.resolution.state)

    def to_dict(self) -> dict:
        return {
            "response": self.response.to_dict(),
            "resolution": self.resolution.to_dict(),
            "evaluated_at": self.evaluated_at.isoformat(),
            "is_any_breached": self.is_any_breached,
        }


@dataclass
class BreachLog:
    """Append-only record of one commitment transitioning to BREACHED."""

    id: Optional[UUID]
    ticket_id: UUID
    sla_tracking_id: UUID
    breach_type: str
    breach_timestamp: datetime
    breach_duration_minutes: int
    recorded_at: Optional[datetime] = None

    def to_event(self) -> dict:
        """Payload published to the notification and audit collaborators."""
        return {
            "event_type": EventType.BREACH,
            "breach_log_id": str(self.id) if self.id else None,
            "ticket_id": str(self.ticket_id),
            "sla_tracking_id": str(self.sla_tracking_id),
            "breach_type": self.breach_type,
            "breach_timestamp": self.breach_timestamp.isoformat(),
            "breach_duration_minutes": self.breach_duration_minutes,
        }


@dataclass
class EscalationLevel:
    """One rung of an agency escalation matrix."""

    id: UUID
    matrix_id: UUID
    level_number: int
    escalation_role: Optional[str] = None
    escalation_department_id: Optional[UUID] = None
    notify_via_email: bool = True
    notify_via_sms: bool = False


@dataclass
class EscalationEvent:
    """Append-only record of one escalation transition on a ticket."""

    id: Optional[UUID]
    ticket_id: UUID
    sla_tracking_id: UUID
    previous_level: int
    new_level: int
    escalation_reason: str
    escalated_to_role: Optional[str] = None
    triggered_by: str = TriggeredBy.SYSTEM
    created_at: Optional[datetime] = None
    # Notification preferences of the level, forwarded to the notification collaborator
    notify_via_email: bool = True
    notify_via_sms: bool = False

    def to_event(self) -> dict:
        return {
            "event_type": EventType.ESCALATION,
            "escalation_event_id": str(self.id) if self.id else None,
            "ticket_id": str(self.ticket_id),
            "sla_tracking_id": str(self.sla_tracking_id),
            "previous_level": self.previous_level,
            "new_level": self.new_level,
            "escalated_to_role": self.escalated_to_role,
            "escalation_reason": self.escalation_reason,
            "triggered_by": self.triggered_by,
            "notify_via_email": self.notify_via_email,
            "notify_via_sms": self.notify_via_sms,
        }
