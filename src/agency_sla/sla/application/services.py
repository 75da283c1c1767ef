"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations
"""

import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, date, timedelta, timezone, tzinfo
from typing import Callable, List, Optional, Tuple
from uuid import UUID

from agency_sla.config import BreachType, TriggeredBy, VALID_BREACH_TYPES
from agency_sla.core import ResourceNotFoundException, ValidationException
from agency_sla.shared.infrastructure.logging import get_logger, log_latency
from agency_sla.sla.domain import (
    TicketSnapshot, SlaPolicy, SlaRule, SlaTracking, LiveStatus,
    BusinessHour, CalendarOverride, BreachLog,
    EscalationLevel, EscalationEvent,
    RuleMatcher, BusinessCalendar
)

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class IPolicyRepository(ABC):
    """Interface for SLA policy data access."""

    @abstractmethod
    async def get_active_policy(self, agency_id: UUID) -> Optional[SlaPolicy]:
        """Most recently created active policy of the agency, rules in creation order."""


class IBusinessCalendarProvider(ABC):
    """Read-through lookup of agency working calendars."""

    @abstractmethod
    async def get_business_hours(self, agency_id: UUID) -> List[BusinessHour]:
        """Active weekly working hours of the agency."""

    @abstractmethod
    async def get_overrides(
        self,
        agency_id: UUID,
        start_date: date,
        end_date: date
    ) -> List[CalendarOverride]:
        """Calendar overrides dated within [start_date, end_date]."""


class ITrackingRepository(ABC):
    """Interface for SLA tracking and breach log data access."""

    @abstractmethod
    async def get_ticket(self, ticket_id: UUID) -> Optional[TicketSnapshot]:
        """Get the ticket as seen by SLA tracking."""

    @abstractmethod
    async def get_by_ticket_id(self, ticket_id: UUID) -> Optional[SlaTracking]:
        """Get the tracking record of a ticket."""

    @abstractmethod
    async def create(self, tracking: SlaTracking) -> SlaTracking:
        """Persist a new tracking record."""

    @abstractmethod
    async def stamp_ticket_due_dates(
        self,
        ticket_id: UUID,
        response_due_at: datetime,
        resolution_due_at: datetime
    ) -> None:
        """Copy the due dates onto the ticket row, when it exists."""

    @abstractmethod
    async def find_overdue(self, breach_type: str, now: datetime) -> List[UUID]:
        """Ids of tracking records whose commitment is pending and past due."""

    @abstractmethod
    async def get_for_evaluation(
        self,
        tracking_id: UUID
    ) -> Optional[Tuple[SlaTracking, TicketSnapshot]]:
        """Tracking record together with its ticket."""

    @abstractmethod
    async def mark_met(self, tracking_id: UUID, breach_type: str, met: bool = True) -> bool:
        """Conditionally record whether the commitment was met; False if no longer pending."""

    @abstractmethod
    async def mark_breached(self, tracking_id: UUID, breach_type: str, breached_at: datetime) -> bool:
        """Conditionally set the commitment BREACHED; False if no longer pending."""

    @abstractmethod
    async def add_breach_log(self, breach_log: BreachLog) -> BreachLog:
        """Append a breach log."""

    @abstractmethod
    async def list_breach_logs(
        self,
        agency_id: Optional[UUID] = None,
        breach_type: Optional[str] = None,
        limit: int = 20,
        offset: int = 0
    ) -> Tuple[List[BreachLog], int]:
        """Breach logs, newest first, with the total count."""

    @abstractmethod
    async def recent_breach_logs(self, tracking_id: UUID, limit: int = 10) -> List[BreachLog]:
        """Newest breach logs of one tracking record."""


class IEscalationRepository(ABC):
    """Interface for escalation matrix and event data access."""

    @abstractmethod
    async def find_level(
        self,
        agency_id: UUID,
        priority_id: Optional[UUID],
        level_number: int
    ) -> Optional[EscalationLevel]:
        """Level of the agency's auto-escalation matrix with the given number."""

    @abstractmethod
    async def advance_tracking_level(
        self,
        tracking_id: UUID,
        expected_level: int,
        new_level: int,
        escalated_at: datetime
    ) -> bool:
        """Conditionally move the tracking to new_level; False if the level changed."""

    @abstractmethod
    async def mark_ticket_escalated(self, ticket_id: UUID, new_level: int) -> None:
        """Flag the ticket as escalated at new_level."""

    @abstractmethod
    async def add_event(self, event: EscalationEvent) -> EscalationEvent:
        """Append an escalation event."""

    @abstractmethod
    async def list_events(self, ticket_id: UUID, limit: Optional[int] = None) -> List[EscalationEvent]:
        """Escalation events of a ticket, newest first."""


class ISlaUnitOfWork(ABC):
    """
    One transaction over the SLA repositories.

    Commits when the block exits cleanly, rolls back otherwise.
    """

    policies: IPolicyRepository
    calendar: IBusinessCalendarProvider
    tracking: ITrackingRepository
    escalations: IEscalationRepository

    @abstractmethod
    async def __aenter__(self) -> "ISlaUnitOfWork":
        """Open the transaction."""

    @abstractmethod
    async def __aexit__(self, exc_type, exc, tb) -> None:
        """Commit or roll back."""


class ISlaEventPublisher(ABC):
    """Outbound channel to the notification and audit collaborators."""

    @abstractmethod
    async def publish(self, event: dict) -> bool:
        """Publish an event; never raises. Returns True when delivered."""


UnitOfWorkFactory = Callable[[], ISlaUnitOfWork]


# ========== Policy Resolution ==========

@dataclass
class ResolvedPolicy:
    """Policy and rule selected for a ticket."""
    policy: SlaPolicy
    rule: SlaRule


class PolicyResolver:
    """Selects the single applicable SLA policy and rule for a ticket."""

    def __init__(self, policy_repository: IPolicyRepository):
        self._policy_repo = policy_repository

    async def resolve(
        self,
        agency_id: UUID,
        priority_id: Optional[UUID] = None,
        category_id: Optional[UUID] = None
    ) -> Optional[ResolvedPolicy]:
        """
        Resolve the policy and rule for a ticket.

        Returns:
            ResolvedPolicy, or None when the agency has no active policy or
            the policy has no rules
        """
        policy = await self._policy_repo.get_active_policy(agency_id)
        if policy is None:
            logger.warning(f"No active SLA policy found for agency {agency_id}")
            return None

        rule = RuleMatcher.select_rule(policy.rules, priority_id, category_id)
        if rule is None:
            logger.warning(
                f"No matching SLA rule found in policy {policy.id}",
                extra={"agency_id": str(agency_id), "policy_id": str(policy.id)}
            )
            return None

        return ResolvedPolicy(policy=policy, rule=rule)


# ========== Deadline Calculation ==========

class DeadlineCalculator:
    """
    Computes due instants, in calendar time or agency business time.

    Business-hours mode walks the agency calendar day by day and falls back
    to calendar time when no hours are configured or the walk cap is hit.
    """

    def __init__(
        self,
        calendar_provider: IBusinessCalendarProvider,
        tz: tzinfo = timezone.utc,
        lookahead_days: int = 90,
        max_iterations: int = 365
    ):
        self._calendar_provider = calendar_provider
        self._tz = tz
        self._lookahead_days = lookahead_days
        self._max_iterations = max_iterations

    async def calculate_due_at(
        self,
        start: datetime,
        minutes: int,
        applies_business_hours: bool,
        agency_id: UUID
    ) -> datetime:
        """
        Calculate the due instant for a commitment.

        Args:
            start: Timezone-aware start instant
            minutes: Duration in minutes
            applies_business_hours: Count only agency working time
            agency_id: Agency whose calendar applies

        Returns:
            The due instant
        """
        if minutes < 0:
            raise ValidationException(
                "SLA duration cannot be negative",
                {"minutes": minutes}
            )

        calendar_due = start + timedelta(minutes=minutes)
        if not applies_business_hours:
            return calendar_due

        business_hours = await self._calendar_provider.get_business_hours(agency_id)
        if not business_hours:
            logger.warning(
                f"No business hours configured for agency {agency_id}, using calendar time"
            )
            return calendar_due

        first_day = start.astimezone(self._tz).date()
        overrides = await self._calendar_provider.get_overrides(
            agency_id,
            first_day,
            first_day + timedelta(days=self._lookahead_days)
        )

        calendar = BusinessCalendar(business_hours, overrides, self._tz)
        due_at = calendar.add_business_minutes(start, minutes, self._max_iterations)
        if due_at is None:
            logger.warning(
                f"Business calendar for agency {agency_id} exhausted after "
                f"{self._max_iterations} days, using calendar time",
                extra={"agency_id": str(agency_id), "minutes": minutes}
            )
            return calendar_due

        return due_at


# ========== Tracking ==========

@dataclass
class TrackingStatus:
    """Tracking record with its derived live status and recent history."""
    tracking: SlaTracking
    live_status: LiveStatus
    breach_logs: List[BreachLog] = field(default_factory=list)
    escalation_events: List[EscalationEvent] = field(default_factory=list)


@dataclass
class BreachPage:
    """One page of breach logs."""
    items: List[BreachLog]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


class SlaTrackingService:
    """
    Attaches SLA tracking to new tickets and serves tracking queries.

    Each call runs in its own unit of work.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        tz: tzinfo = timezone.utc,
        lookahead_days: int = 90,
        max_iterations: int = 365
    ):
        self._uow_factory = uow_factory
        self._tz = tz
        self._lookahead_days = lookahead_days
        self._max_iterations = max_iterations

    async def attach_to_ticket(self, ticket: TicketSnapshot) -> Optional[SlaTracking]:
        """
        Create the SLA tracking record of a newly created ticket.

        Returns:
            The tracking record (existing one if already attached), or None
            when no policy or rule applies
        """
        async with self._uow_factory() as uow:
            existing = await uow.tracking.get_by_ticket_id(ticket.id)
            if existing is not None:
                logger.info(f"SLA already attached to ticket {ticket.id}")
                return existing

            resolved = await PolicyResolver(uow.policies).resolve(
                ticket.agency_id, ticket.priority_id, ticket.category_id
            )
            if resolved is None:
                return None

            calculator = DeadlineCalculator(
                uow.calendar, self._tz, self._lookahead_days, self._max_iterations
            )
            applies_business_hours = resolved.policy.applies_business_hours
            response_due_at = await calculator.calculate_due_at(
                ticket.created_at,
                resolved.rule.response_time_minutes,
                applies_business_hours,
                ticket.agency_id
            )
            resolution_due_at = await calculator.calculate_due_at(
                ticket.created_at,
                resolved.rule.resolution_time_minutes,
                applies_business_hours,
                ticket.agency_id
            )

            tracking = await uow.tracking.create(SlaTracking(
                id=None,
                ticket_id=ticket.id,
                policy_id=resolved.policy.id,
                response_due_at=response_due_at,
                resolution_due_at=resolution_due_at,
            ))
            await uow.tracking.stamp_ticket_due_dates(
                ticket.id, response_due_at, resolution_due_at
            )

        logger.info(
            f"SLA attached to ticket {ticket.id}: response due {response_due_at.isoformat()}, "
            f"resolution due {resolution_due_at.isoformat()}",
            extra={"ticket_id": str(ticket.id), "policy_id": str(resolved.policy.id)}
        )
        return tracking

    async def attach_by_ticket_id(self, ticket_id: UUID) -> Optional[SlaTracking]:
        """
        Attach SLA tracking to a stored ticket.

        Raises:
            ResourceNotFoundException: Ticket does not exist
        """
        async with self._uow_factory() as uow:
            ticket = await uow.tracking.get_ticket(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", str(ticket_id))
        return await self.attach_to_ticket(ticket)

    async def get_tracking_status(
        self,
        ticket_id: UUID,
        now: Optional[datetime] = None
    ) -> TrackingStatus:
        """
        Tracking of a ticket with live status and its ten latest breaches/escalations.

        Raises:
            ResourceNotFoundException: Ticket has no SLA tracking
        """
        now = now or datetime.now(timezone.utc)

        async with self._uow_factory() as uow:
            tracking = await uow.tracking.get_by_ticket_id(ticket_id)
            if tracking is None:
                raise ResourceNotFoundException("SLA tracking for ticket", str(ticket_id))

            breach_logs = await uow.tracking.recent_breach_logs(tracking.id, limit=10)
            events = await uow.escalations.list_events(ticket_id, limit=10)

        return TrackingStatus(
            tracking=tracking,
            live_status=LiveStatus.for_tracking(tracking, now),
            breach_logs=breach_logs,
            escalation_events=events,
        )

    async def list_breaches(
        self,
        agency_id: Optional[UUID] = None,
        breach_type: Optional[str] = None,
        page: int = 1,
        limit: int = 20
    ) -> BreachPage:
        """Paginated breach log query."""
        if breach_type is not None and breach_type not in VALID_BREACH_TYPES:
            raise ValidationException(f"Unknown breach type: {breach_type}")
        if page < 1 or limit < 1:
            raise ValidationException("page and limit must be positive")

        async with self._uow_factory() as uow:
            items, total = await uow.tracking.list_breach_logs(
                agency_id=agency_id,
                breach_type=breach_type,
                limit=limit,
                offset=(page - 1) * limit
            )

        return BreachPage(items=items, total=total, page=page, limit=limit)

    async def list_escalations(self, ticket_id: UUID) -> List[EscalationEvent]:
        """Full escalation history of a ticket, newest first."""
        async with self._uow_factory() as uow:
            return await uow.escalations.list_events(ticket_id)


# ========== Escalation ==========

class EscalationEngine:
    """
    Moves a ticket one level up its agency's escalation matrix.

    Runs inside the caller's transaction so the escalation commits or rolls
    back together with the breach that caused it.
    """

    def __init__(
        self,
        tracking_repository: ITrackingRepository,
        escalation_repository: IEscalationRepository
    ):
        self._tracking_repo = tracking_repository
        self._escalation_repo = escalation_repository

    async def escalate(
        self,
        ticket_id: UUID,
        tracking_id: UUID,
        breach_type: str,
        now: Optional[datetime] = None
    ) -> Optional[EscalationEvent]:
        """
        Escalate to the next matrix level.

        Returns:
            The recorded EscalationEvent, or None when the matrix is undefined
            or exhausted
        """
        now = now or datetime.now(timezone.utc)

        loaded = await self._tracking_repo.get_for_evaluation(tracking_id)
        if loaded is None:
            return None
        tracking, ticket = loaded

        current_level = tracking.escalation_level
        new_level = current_level + 1

        level = await self._escalation_repo.find_level(
            ticket.agency_id, ticket.priority_id, new_level
        )
        if level is None:
            logger.debug(
                f"No escalation level {new_level} defined for agency {ticket.agency_id}"
            )
            return None

        advanced = await self._escalation_repo.advance_tracking_level(
            tracking_id, current_level, new_level, now
        )
        if not advanced:
            logger.info(
                f"Escalation of ticket {ticket_id} already advanced past level {current_level}"
            )
            return None

        await self._escalation_repo.mark_ticket_escalated(ticket_id, new_level)
        event = await self._escalation_repo.add_event(EscalationEvent(
            id=None,
            ticket_id=ticket_id,
            sla_tracking_id=tracking_id,
            previous_level=current_level,
            new_level=new_level,
            escalated_to_role=level.escalation_role,
            escalation_reason=f"{breach_type} SLA breached - auto-escalation to level {new_level}",
            triggered_by=TriggeredBy.SYSTEM,
            created_at=now,
            notify_via_email=level.notify_via_email,
            notify_via_sms=level.notify_via_sms,
        ))

        logger.info(
            f"Ticket {ticket_id} escalated to level {new_level} due to {breach_type} breach",
            extra={"ticket_id": str(ticket_id), "escalation_role": level.escalation_role}
        )
        return event


# ========== Breach Detection ==========

class CommitmentOutcome:
    """Result of evaluating one commitment."""
    SKIPPED = "skipped"
    MET = "met"
    MISSED = "missed"
    BREACHED = "breached"


@dataclass
class BreachScanResult:
    """Summary of one detector pass."""
    started_at: datetime
    evaluated: int = 0
    met: int = 0
    missed: int = 0
    response_breaches: int = 0
    resolution_breaches: int = 0
    escalations: int = 0
    skipped: int = 0
    failures: int = 0
    duration_ms: int = 0

    @property
    def breaches(self) -> int:
        return self.response_breaches + self.resolution_breaches

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "evaluated": self.evaluated,
            "met": self.met,
            "missed": self.missed,
            "response_breaches": self.response_breaches,
            "resolution_breaches": self.resolution_breaches,
            "escalations": self.escalations,
            "skipped": self.skipped,
            "failures": self.failures,
            "duration_ms": self.duration_ms,
        }


class BreachDetector:
    """
    Periodic scan for overdue SLA commitments.

    Every candidate commitment is evaluated in its own transaction. The
    BREACHED transition is a conditional write; only the writer that wins it
    records the breach log and escalates, in that same transaction.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        publisher: Optional[ISlaEventPublisher] = None
    ):
        self._uow_factory = uow_factory
        self._publisher = publisher

    async def run_scan(self, now: Optional[datetime] = None) -> BreachScanResult:
        """
        Evaluate all overdue pending commitments.

        Returns:
            Summary of the pass
        """
        now = now or datetime.now(timezone.utc)
        result = BreachScanResult(started_at=now)
        start_time = time.perf_counter()

        logger.debug("Running SLA breach check...")

        with log_latency(logger, "breach_scan"):
            for breach_type in VALID_BREACH_TYPES:
                async with self._uow_factory() as uow:
                    candidates = await uow.tracking.find_overdue(breach_type, now)

                for tracking_id in candidates:
                    result.evaluated += 1
                    try:
                        outcome = await self._evaluate_commitment(tracking_id, breach_type, now, result)
                    except Exception:
                        result.failures += 1
                        logger.exception(
                            f"Failed to evaluate {breach_type} SLA for tracking {tracking_id}",
                            extra={"sla_tracking_id": str(tracking_id), "breach_type": breach_type}
                        )
                        continue

                    if outcome == CommitmentOutcome.MET:
                        result.met += 1
                    elif outcome == CommitmentOutcome.MISSED:
                        result.missed += 1
                    elif outcome == CommitmentOutcome.SKIPPED:
                        result.skipped += 1
                    elif breach_type == BreachType.RESPONSE:
                        result.response_breaches += 1
                    else:
                        result.resolution_breaches += 1

        result.duration_ms = int((time.perf_counter() - start_time) * 1000)

        if result.breaches > 0 or result.failures > 0:
            logger.info(
                f"Breach check complete: {result.response_breaches} response breaches, "
                f"{result.resolution_breaches} resolution breaches",
                extra=result.to_dict()
            )

        return result

    async def _evaluate_commitment(
        self,
        tracking_id: UUID,
        breach_type: str,
        now: datetime,
        result: BreachScanResult
    ) -> str:
        """Evaluate one commitment of one tracking record in its own transaction."""
        events: List[dict] = []

        async with self._uow_factory() as uow:
            loaded = await uow.tracking.get_for_evaluation(tracking_id)
            if loaded is None:
                return CommitmentOutcome.SKIPPED
            tracking, ticket = loaded

            if tracking.is_terminal(breach_type):
                return CommitmentOutcome.SKIPPED

            due_at = tracking.due_at(breach_type)
            if now <= due_at:
                return CommitmentOutcome.SKIPPED

            qualifying_at = ticket.qualifying_at(breach_type)
            if qualifying_at is not None:
                # An event after the due instant is recorded as missed, never breached
                met = qualifying_at <= due_at
                if not await uow.tracking.mark_met(tracking_id, breach_type, met):
                    return CommitmentOutcome.SKIPPED
                return CommitmentOutcome.MET if met else CommitmentOutcome.MISSED

            if ticket.is_closed:
                return CommitmentOutcome.SKIPPED

            if not await uow.tracking.mark_breached(tracking_id, breach_type, now):
                # Another pass won the transition
                return CommitmentOutcome.SKIPPED

            breach_log = await uow.tracking.add_breach_log(BreachLog(
                id=None,
                ticket_id=ticket.id,
                sla_tracking_id=tracking_id,
                breach_type=breach_type,
                breach_timestamp=now,
                breach_duration_minutes=round((now - due_at).total_seconds() / 60),
            ))
            events.append(breach_log.to_event())

            engine = EscalationEngine(uow.tracking, uow.escalations)
            escalation = await engine.escalate(ticket.id, tracking_id, breach_type, now)
            if escalation is not None:
                result.escalations += 1
                events.append(escalation.to_event())

        logger.warning(
            f"{breach_type} SLA breached for ticket {ticket.id} "
            f"({breach_log.breach_duration_minutes} minutes overdue)",
            extra={"ticket_id": str(ticket.id), "breach_type": breach_type}
        )

        if self._publisher is not None:
            for event in events:
                await self._publisher.publish(event)

        return CommitmentOutcome.BREACHED
