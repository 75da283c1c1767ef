"""
SLA Application DTOs
=====================

Data Transfer Objects for the SLA API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses.
"""

from pydantic import BaseModel, Field
from typing import List, Optional, Literal
from datetime import datetime
from uuid import UUID


# ========== Type Aliases for Literals ==========
BreachTypeStr = Literal["RESPONSE", "RESOLUTION"]
CommitmentStateStr = Literal["PENDING", "MET", "MISSED", "BREACHED"]


# ========== Request DTOs ==========

class TrackingAttachRequest(BaseModel):
    """Request model for attaching SLA tracking to a stored ticket."""
    ticket_id: UUID = Field(..., description="Ticket UUID")


class BreachQueryDTO(BaseModel):
    """Query parameters for the breach log endpoint."""
    agency_id: Optional[UUID] = None
    breach_type: Optional[BreachTypeStr] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)


# ========== Response DTOs ==========

class CommitmentStatusResponse(BaseModel):
    """Live status of one commitment."""
    state: CommitmentStateStr
    due_at: datetime = Field(..., description="Due instant")
    is_overdue: bool = Field(..., description="Pending and past due")
    minutes_remaining: int = Field(..., description="Minutes until due (0 once due or met)")
    minutes_overdue: int = Field(..., description="Minutes past due (0 if not overdue)")
    breached_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, status) -> "CommitmentStatusResponse":
        return cls(
            state=status.state,
            due_at=status.due_at,
            is_overdue=status.is_overdue,
            minutes_remaining=status.minutes_remaining,
            minutes_overdue=status.minutes_overdue,
            breached_at=status.breached_at
        )


class BreachLogResponse(BaseModel):
    """Response model for a breach log."""
    id: UUID
    ticket_id: UUID
    sla_tracking_id: UUID
    breach_type: BreachTypeStr
    breach_timestamp: datetime
    breach_duration_minutes: int
    recorded_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, breach_log) -> "BreachLogResponse":
        return cls(
            id=breach_log.id,
            ticket_id=breach_log.ticket_id,
            sla_tracking_id=breach_log.sla_tracking_id,
            breach_type=breach_log.breach_type,
            breach_timestamp=breach_log.breach_timestamp,
            breach_duration_minutes=breach_log.breach_duration_minutes,
            recorded_at=breach_log.recorded_at
        )


class EscalationEventResponse(BaseModel):
    """Response model for an escalation event."""
    id: UUID
    ticket_id: UUID
    sla_tracking_id: UUID
    previous_level: int
    new_level: int
    escalated_to_role: Optional[str] = None
    escalation_reason: str
    triggered_by: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, event) -> "EscalationEventResponse":
        return cls(
            id=event.id,
            ticket_id=event.ticket_id,
            sla_tracking_id=event.sla_tracking_id,
            previous_level=event.previous_level,
            new_level=event.new_level,
            escalated_to_role=event.escalated_to_role,
            escalation_reason=event.escalation_reason,
            triggered_by=event.triggered_by,
            created_at=event.created_at
        )


class SlaTrackingResponse(BaseModel):
    """Response model for a ticket's SLA tracking record."""
    id: UUID = Field(..., description="Tracking UUID")
    ticket_id: UUID
    sla_policy_id: UUID
    response_due_at: datetime
    resolution_due_at: datetime
    response_met: Optional[bool] = None
    response_breached: bool = False
    resolution_met: Optional[bool] = None
    resolution_breached: bool = False
    escalation_level: int = 0
    last_escalated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, tracking) -> "SlaTrackingResponse":
        return cls(
            id=tracking.id,
            ticket_id=tracking.ticket_id,
            sla_policy_id=tracking.policy_id,
            response_due_at=tracking.response_due_at,
            resolution_due_at=tracking.resolution_due_at,
            response_met=tracking.response_met,
            response_breached=tracking.response_breached,
            resolution_met=tracking.resolution_met,
            resolution_breached=tracking.resolution_breached,
            escalation_level=tracking.escalation_level,
            last_escalated_at=tracking.last_escalated_at
        )


class TrackingAttachResponse(BaseModel):
    """Outcome of an attach call; no tracking when no SLA policy applies."""
    attached: bool
    tracking: Optional[SlaTrackingResponse] = None


class TrackingStatusResponse(BaseModel):
    """Tracking record, live status and recent history of a ticket."""
    tracking: SlaTrackingResponse
    response_status: CommitmentStatusResponse
    resolution_status: CommitmentStatusResponse
    evaluated_at: datetime
    breach_logs: List[BreachLogResponse] = Field(default_factory=list)
    escalation_events: List[EscalationEventResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, status) -> "TrackingStatusResponse":
        return cls(
            tracking=SlaTrackingResponse.from_domain(status.tracking),
            response_status=CommitmentStatusResponse.from_domain(status.live_status.response),
            resolution_status=CommitmentStatusResponse.from_domain(status.live_status.resolution),
            evaluated_at=status.live_status.evaluated_at,
            breach_logs=[BreachLogResponse.from_domain(b) for b in status.breach_logs],
            escalation_events=[EscalationEventResponse.from_domain(e) for e in status.escalation_events]
        )


class BreachPageResponse(BaseModel):
    """Paginated breach logs."""
    items: List[BreachLogResponse]
    total: int = Field(..., description="Total number of breach logs matching filter")
    page: int
    limit: int
    total_pages: int


class BreachScanResponse(BaseModel):
    """Summary of a breach scan."""
    started_at: datetime
    evaluated: int
    met: int
    missed: int
    response_breaches: int
    resolution_breaches: int
    escalations: int
    skipped: int
    failures: int
    duration_ms: int
