"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for the SLA module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, date, time, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    String, Boolean, Integer, Text, Uuid, Date, Time,
    ForeignKey, UniqueConstraint, Index
)
from sqlalchemy.orm import Mapped, mapped_column

from agency_sla.infrastructure.database import Base, UTCDateTime
from agency_sla.config import TicketStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TicketModel(Base):
    """
    Ticket row owned by the ticket collaborator.

    The SLA engine reads it and only writes the escalation and SLA due-date
    columns. Maps to the 'tickets' table.
    """
    __tablename__ = "tickets"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    agency_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    priority_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    category_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default=TicketStatus.OPEN)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    first_response_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Escalation state
    is_escalated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    escalation_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # SLA due dates, stamped at attach time
    sla_response_due_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    sla_resolution_due_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)


class SlaPolicyModel(Base):
    """Maps to the 'sla_policies' table. Soft deactivation only."""
    __tablename__ = "sla_policies"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    agency_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    policy_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    applies_business_hours: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow)


class SlaRuleModel(Base):
    """Maps to the 'sla_rules' table."""
    __tablename__ = "sla_rules"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    sla_policy_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("sla_policies.id"), nullable=False, index=True)
    priority_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    category_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    response_time_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    resolution_time_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    escalation_after_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)


class SlaTrackingModel(Base):
    """
    Per-ticket SLA state.

    Maps to the 'sla_tracking' table; one row per ticket.
    """
    __tablename__ = "sla_tracking"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ticket_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("tickets.id"), nullable=False, unique=True)
    sla_policy_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("sla_policies.id"), nullable=False)

    response_due_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    resolution_due_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    # None until reconciled
    response_met: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    response_breached: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    response_breach_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    resolution_met: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    resolution_breached: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolution_breach_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    escalation_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_escalated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("ix_sla_tracking_response_scan", "response_breached", "response_due_at"),
        Index("ix_sla_tracking_resolution_scan", "resolution_breached", "resolution_due_at"),
    )


class BreachLogModel(Base):
    """
    Append-only breach records.

    Maps to the 'breach_logs' table. The unique constraint backs the
    at-most-once guarantee of the breach transition.
    """
    __tablename__ = "breach_logs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ticket_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    sla_tracking_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("sla_tracking.id"), nullable=False)
    breach_type: Mapped[str] = mapped_column(String(20), nullable=False)
    breach_timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    breach_duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("sla_tracking_id", "breach_type", name="uq_breach_logs_tracking_type"),
    )


class EscalationMatrixModel(Base):
    """Maps to the 'escalation_matrices' table."""
    __tablename__ = "escalation_matrices"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    agency_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    matrix_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    priority_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    max_response_time_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_resolution_time_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    auto_escalation_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)


class EscalationLevelModel(Base):
    """Maps to the 'escalation_levels' table."""
    __tablename__ = "escalation_levels"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    escalation_matrix_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("escalation_matrices.id"), nullable=False)
    level_number: Mapped[int] = mapped_column(Integer, nullable=False)
    escalation_role: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    escalation_department_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    notify_via_email: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notify_via_sms: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("escalation_matrix_id", "level_number", name="uq_escalation_levels_matrix_level"),
    )


class EscalationEventModel(Base):
    """Append-only escalation history. Maps to the 'escalation_events' table."""
    __tablename__ = "escalation_events"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ticket_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    sla_tracking_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("sla_tracking.id"), nullable=False)
    previous_level: Mapped[int] = mapped_column(Integer, nullable=False)
    new_level: Mapped[int] = mapped_column(Integer, nullable=False)
    escalated_to_role: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    escalation_reason: Mapped[str] = mapped_column(Text, nullable=False)
    triggered_by: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)


class AgencyBusinessHourModel(Base):
    """Weekly working hours; day_of_week 0 = Sunday. Maps to 'agency_business_hours'."""
    __tablename__ = "agency_business_hours"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    agency_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("agency_id", "day_of_week", name="uq_agency_business_hours_day"),
    )


class BusinessCalendarOverrideModel(Base):
    """Holidays and special hours. Maps to 'business_calendar_overrides'."""
    __tablename__ = "business_calendar_overrides"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    agency_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    override_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_working_day: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    start_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    end_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        UniqueConstraint("agency_id", "override_date", name="uq_calendar_overrides_date"),
    )
