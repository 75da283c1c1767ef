"""
SLA Infrastructure Repositories
=================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database.

State transitions on sla_tracking are conditional UPDATEs that report
whether this writer won; callers must check the returned flag.
"""

from datetime import datetime, date, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from uuid import UUID, uuid4

import yaml
from pydantic import ValidationError
from sqlalchemy import select, update, delete, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agency_sla.config import BreachType, CLOSED_TICKET_STATUSES
from agency_sla.core import RepositoryException, ConfigurationException
from agency_sla.shared.infrastructure.logging import get_logger
from agency_sla.sla.application.services import (
    IPolicyRepository, IBusinessCalendarProvider, ITrackingRepository,
    IEscalationRepository, ISlaUnitOfWork
)
from agency_sla.sla.domain import (
    TicketSnapshot, SlaPolicy, SlaRule, SlaTracking,
    BusinessHour, CalendarOverride, BreachLog,
    EscalationLevel, EscalationEvent, SlaSeedConfig
)
from agency_sla.sla.infrastructure.models import (
    TicketModel, SlaPolicyModel, SlaRuleModel, SlaTrackingModel,
    BreachLogModel, EscalationMatrixModel, EscalationLevelModel,
    EscalationEventModel, AgencyBusinessHourModel, BusinessCalendarOverrideModel
)

logger = get_logger(__name__)


# ========== Model -> entity mapping ==========

def _to_ticket(model: TicketModel) -> TicketSnapshot:
    return TicketSnapshot(
        id=model.id,
        agency_id=model.agency_id,
        created_at=model.created_at,
        priority_id=model.priority_id,
        category_id=model.category_id,
        status=model.status,
        first_response_at=model.first_response_at,
        resolved_at=model.resolved_at,
        is_escalated=model.is_escalated,
        escalation_level=model.escalation_level
    )


def _to_tracking(model: SlaTrackingModel) -> SlaTracking:
    return SlaTracking(
        id=model.id,
        ticket_id=model.ticket_id,
        policy_id=model.sla_policy_id,
        response_due_at=model.response_due_at,
        resolution_due_at=model.resolution_due_at,
        response_met=model.response_met,
        response_breached=model.response_breached,
        response_breach_at=model.response_breach_at,
        resolution_met=model.resolution_met,
        resolution_breached=model.resolution_breached,
        resolution_breach_at=model.resolution_breach_at,
        escalation_level=model.escalation_level,
        last_escalated_at=model.last_escalated_at,
        created_at=model.created_at
    )


def _to_breach_log(model: BreachLogModel) -> BreachLog:
    return BreachLog(
        id=model.id,
        ticket_id=model.ticket_id,
        sla_tracking_id=model.sla_tracking_id,
        breach_type=model.breach_type,
        breach_timestamp=model.breach_timestamp,
        breach_duration_minutes=model.breach_duration_minutes,
        recorded_at=model.recorded_at
    )


def _to_escalation_event(model: EscalationEventModel) -> EscalationEvent:
    return EscalationEvent(
        id=model.id,
        ticket_id=model.ticket_id,
        sla_tracking_id=model.sla_tracking_id,
        previous_level=model.previous_level,
        new_level=model.new_level,
        escalation_reason=model.escalation_reason,
        escalated_to_role=model.escalated_to_role,
        triggered_by=model.triggered_by,
        created_at=model.created_at
    )


def _commitment_columns(breach_type: str):
    """(due, met, breached, breach_at) columns of one commitment."""
    if breach_type == BreachType.RESPONSE:
        return (
            SlaTrackingModel.response_due_at,
            SlaTrackingModel.response_met,
            SlaTrackingModel.response_breached,
            SlaTrackingModel.response_breach_at,
        )
    return (
        SlaTrackingModel.resolution_due_at,
        SlaTrackingModel.resolution_met,
        SlaTrackingModel.resolution_breached,
        SlaTrackingModel.resolution_breach_at,
    )


# ========== Repositories ==========

class SQLAlchemyPolicyRepository(IPolicyRepository):
    """SQLAlchemy implementation of the SLA policy repository."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_active_policy(self, agency_id: UUID) -> Optional[SlaPolicy]:
        stmt = (
            select(SlaPolicyModel)
            .where(SlaPolicyModel.agency_id == agency_id, SlaPolicyModel.is_active == True)
            .order_by(SlaPolicyModel.created_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        if model is None:
            return None

        rules_stmt = (
            select(SlaRuleModel)
            .where(SlaRuleModel.sla_policy_id == model.id)
            .order_by(SlaRuleModel.created_at.asc())
        )
        rules_result = await self._session.execute(rules_stmt)

        return SlaPolicy(
            id=model.id,
            agency_id=model.agency_id,
            policy_name=model.policy_name,
            is_active=model.is_active,
            applies_business_hours=model.applies_business_hours,
            description=model.description,
            created_at=model.created_at,
            rules=[
                SlaRule(
                    id=rule.id,
                    policy_id=rule.sla_policy_id,
                    response_time_minutes=rule.response_time_minutes,
                    resolution_time_minutes=rule.resolution_time_minutes,
                    priority_id=rule.priority_id,
                    category_id=rule.category_id,
                    escalation_after_minutes=rule.escalation_after_minutes,
                    created_at=rule.created_at
                )
                for rule in rules_result.scalars().all()
            ]
        )


class SQLAlchemyBusinessCalendarProvider(IBusinessCalendarProvider):
    """Reads agency working hours and overrides straight from the database."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_business_hours(self, agency_id: UUID) -> List[BusinessHour]:
        stmt = (
            select(AgencyBusinessHourModel)
            .where(
                AgencyBusinessHourModel.agency_id == agency_id,
                AgencyBusinessHourModel.is_active == True
            )
            .order_by(AgencyBusinessHourModel.day_of_week.asc())
        )
        result = await self._session.execute(stmt)
        return [
            BusinessHour(
                agency_id=model.agency_id,
                day_of_week=model.day_of_week,
                start_time=model.start_time,
                end_time=model.end_time,
                is_active=model.is_active
            )
            for model in result.scalars().all()
        ]

    async def get_overrides(
        self,
        agency_id: UUID,
        start_date: date,
        end_date: date
    ) -> List[CalendarOverride]:
        stmt = (
            select(BusinessCalendarOverrideModel)
            .where(
                BusinessCalendarOverrideModel.agency_id == agency_id,
                BusinessCalendarOverrideModel.override_date >= start_date,
                BusinessCalendarOverrideModel.override_date <= end_date
            )
            .order_by(BusinessCalendarOverrideModel.override_date.asc())
        )
        result = await self._session.execute(stmt)
        return [
            CalendarOverride(
                agency_id=model.agency_id,
                override_date=model.override_date,
                is_working_day=model.is_working_day,
                start_time=model.start_time,
                end_time=model.end_time,
                description=model.description
            )
            for model in result.scalars().all()
        ]


class SQLAlchemyTrackingRepository(ITrackingRepository):
    """
    SQLAlchemy implementation of the tracking repository.

    Handles sla_tracking rows, breach logs and the SLA columns of tickets.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_ticket(self, ticket_id: UUID) -> Optional[TicketSnapshot]:
        model = await self._session.get(TicketModel, ticket_id)
        return _to_ticket(model) if model else None

    async def get_by_ticket_id(self, ticket_id: UUID) -> Optional[SlaTracking]:
        stmt = select(SlaTrackingModel).where(SlaTrackingModel.ticket_id == ticket_id)
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return _to_tracking(model) if model else None

    async def create(self, tracking: SlaTracking) -> SlaTracking:
        model = SlaTrackingModel(
            id=tracking.id or uuid4(),
            ticket_id=tracking.ticket_id,
            sla_policy_id=tracking.policy_id,
            response_due_at=tracking.response_due_at,
            resolution_due_at=tracking.resolution_due_at,
            escalation_level=tracking.escalation_level
        )
        self._session.add(model)

        try:
            await self._session.flush()
        except IntegrityError as e:
            raise RepositoryException(
                f"SLA tracking already exists for ticket {tracking.ticket_id}",
                {"ticket_id": str(tracking.ticket_id)}
            ) from e

        return _to_tracking(model)

    async def stamp_ticket_due_dates(
        self,
        ticket_id: UUID,
        response_due_at: datetime,
        resolution_due_at: datetime
    ) -> None:
        stmt = (
            update(TicketModel)
            .where(TicketModel.id == ticket_id)
            .values(
                sla_response_due_at=response_due_at,
                sla_resolution_due_at=resolution_due_at
            )
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)

    async def find_overdue(self, breach_type: str, now: datetime) -> List[UUID]:
        due_col, met_col, breached_col, _ = _commitment_columns(breach_type)
        event_col = (
            TicketModel.first_response_at if breach_type == BreachType.RESPONSE
            else TicketModel.resolved_at
        )

        stmt = (
            select(SlaTrackingModel.id)
            .join(TicketModel, TicketModel.id == SlaTrackingModel.ticket_id)
            .where(
                breached_col == False,
                met_col.is_(None),
                due_col < now,
                or_(
                    TicketModel.status.not_in(CLOSED_TICKET_STATUSES),
                    event_col.is_not(None)
                )
            )
            .order_by(due_col.asc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get_for_evaluation(
        self,
        tracking_id: UUID
    ) -> Optional[Tuple[SlaTracking, TicketSnapshot]]:
        stmt = (
            select(SlaTrackingModel, TicketModel)
            .join(TicketModel, TicketModel.id == SlaTrackingModel.ticket_id)
            .where(SlaTrackingModel.id == tracking_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        row = result.one_or_none()
        if row is None:
            return None

        tracking_model, ticket_model = row
        return _to_tracking(tracking_model), _to_ticket(ticket_model)

    async def mark_met(self, tracking_id: UUID, breach_type: str, met: bool = True) -> bool:
        _, met_col, breached_col, _ = _commitment_columns(breach_type)
        stmt = (
            update(SlaTrackingModel)
            .where(
                SlaTrackingModel.id == tracking_id,
                breached_col == False,
                met_col.is_(None)
            )
            .values({met_col: met, SlaTrackingModel.updated_at: datetime.now(timezone.utc)})
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def mark_breached(self, tracking_id: UUID, breach_type: str, breached_at: datetime) -> bool:
        _, met_col, breached_col, breach_at_col = _commitment_columns(breach_type)
        stmt = (
            update(SlaTrackingModel)
            .where(
                SlaTrackingModel.id == tracking_id,
                breached_col == False,
                met_col.is_(None)
            )
            .values({
                breached_col: True,
                breach_at_col: breached_at,
                SlaTrackingModel.updated_at: breached_at
            })
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def add_breach_log(self, breach_log: BreachLog) -> BreachLog:
        model = BreachLogModel(
            id=breach_log.id or uuid4(),
            ticket_id=breach_log.ticket_id,
            sla_tracking_id=breach_log.sla_tracking_id,
            breach_type=breach_log.breach_type,
            breach_timestamp=breach_log.breach_timestamp,
            breach_duration_minutes=breach_log.breach_duration_minutes
        )
        self._session.add(model)

        try:
            await self._session.flush()
        except IntegrityError as e:
            raise RepositoryException(
                f"{breach_log.breach_type} breach already logged for tracking {breach_log.sla_tracking_id}",
                {"sla_tracking_id": str(breach_log.sla_tracking_id)}
            ) from e

        return _to_breach_log(model)

    async def list_breach_logs(
        self,
        agency_id: Optional[UUID] = None,
        breach_type: Optional[str] = None,
        limit: int = 20,
        offset: int = 0
    ) -> Tuple[List[BreachLog], int]:
        conditions = []
        if agency_id is not None:
            conditions.append(TicketModel.agency_id == agency_id)
        if breach_type is not None:
            conditions.append(BreachLogModel.breach_type == breach_type)

        stmt = (
            select(BreachLogModel)
            .join(TicketModel, TicketModel.id == BreachLogModel.ticket_id)
            .where(*conditions)
            .order_by(BreachLogModel.breach_timestamp.desc())
            .limit(limit)
            .offset(offset)
        )
        count_stmt = (
            select(func.count(BreachLogModel.id))
            .join(TicketModel, TicketModel.id == BreachLogModel.ticket_id)
            .where(*conditions)
        )

        result = await self._session.execute(stmt)
        total = await self._session.scalar(count_stmt)

        return [_to_breach_log(m) for m in result.scalars().all()], total or 0

    async def recent_breach_logs(self, tracking_id: UUID, limit: int = 10) -> List[BreachLog]:
        stmt = (
            select(BreachLogModel)
            .where(BreachLogModel.sla_tracking_id == tracking_id)
            .order_by(BreachLogModel.breach_timestamp.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [_to_breach_log(m) for m in result.scalars().all()]


class SQLAlchemyEscalationRepository(IEscalationRepository):
    """SQLAlchemy implementation of the escalation repository."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def find_level(
        self,
        agency_id: UUID,
        priority_id: Optional[UUID],
        level_number: int
    ) -> Optional[EscalationLevel]:
        matrix_id = await self._select_matrix(agency_id, priority_id)
        if matrix_id is None:
            return None

        stmt = select(EscalationLevelModel).where(
            EscalationLevelModel.escalation_matrix_id == matrix_id,
            EscalationLevelModel.level_number == level_number
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        if model is None:
            return None

        return EscalationLevel(
            id=model.id,
            matrix_id=model.escalation_matrix_id,
            level_number=model.level_number,
            escalation_role=model.escalation_role,
            escalation_department_id=model.escalation_department_id,
            notify_via_email=model.notify_via_email,
            notify_via_sms=model.notify_via_sms
        )

    async def _select_matrix(self, agency_id: UUID, priority_id: Optional[UUID]) -> Optional[UUID]:
        """The one matrix a ticket escalates through, or None."""
        base = (
            select(EscalationMatrixModel.id)
            .where(
                EscalationMatrixModel.agency_id == agency_id,
                EscalationMatrixModel.auto_escalation_enabled == True
            )
            .order_by(EscalationMatrixModel.created_at.desc())
            .limit(1)
        )

        # Priority-specific matrix first, then priority-agnostic, then any
        candidates = []
        if priority_id is not None:
            candidates.append(base.where(EscalationMatrixModel.priority_id == priority_id))
        candidates.append(base.where(EscalationMatrixModel.priority_id.is_(None)))
        candidates.append(base)

        for stmt in candidates:
            matrix_id = await self._session.scalar(stmt)
            if matrix_id is not None:
                return matrix_id

        return None

    async def advance_tracking_level(
        self,
        tracking_id: UUID,
        expected_level: int,
        new_level: int,
        escalated_at: datetime
    ) -> bool:
        stmt = (
            update(SlaTrackingModel)
            .where(
                SlaTrackingModel.id == tracking_id,
                SlaTrackingModel.escalation_level == expected_level
            )
            .values(
                escalation_level=new_level,
                last_escalated_at=escalated_at,
                updated_at=escalated_at
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def mark_ticket_escalated(self, ticket_id: UUID, new_level: int) -> None:
        stmt = (
            update(TicketModel)
            .where(TicketModel.id == ticket_id)
            .values(is_escalated=True, escalation_level=new_level)
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)

    async def add_event(self, event: EscalationEvent) -> EscalationEvent:
        model = EscalationEventModel(
            id=event.id or uuid4(),
            ticket_id=event.ticket_id,
            sla_tracking_id=event.sla_tracking_id,
            previous_level=event.previous_level,
            new_level=event.new_level,
            escalated_to_role=event.escalated_to_role,
            escalation_reason=event.escalation_reason,
            triggered_by=event.triggered_by,
            created_at=event.created_at or datetime.now(timezone.utc)
        )
        self._session.add(model)
        await self._session.flush()

        event.id = model.id
        event.created_at = model.created_at
        return event

    async def list_events(self, ticket_id: UUID, limit: Optional[int] = None) -> List[EscalationEvent]:
        stmt = (
            select(EscalationEventModel)
            .where(EscalationEventModel.ticket_id == ticket_id)
            .order_by(EscalationEventModel.created_at.desc(), EscalationEventModel.new_level.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)

        result = await self._session.execute(stmt)
        return [_to_escalation_event(m) for m in result.scalars().all()]


# ========== Unit of work ==========

class SQLAlchemyUnitOfWork(ISlaUnitOfWork):
    """
    One AsyncSession shared by all SLA repositories.

    Usage:
        async with SQLAlchemyUnitOfWork(session_maker) as uow:
            tracking = await uow.tracking.get_by_ticket_id(ticket_id)
    """

    def __init__(self, session_maker: async_sessionmaker):
        self._session_maker = session_maker
        self._session: Optional[AsyncSession] = None

    @property
    def session(self) -> AsyncSession:
        if self._session is None:
            raise RepositoryException("Unit of work is not active")
        return self._session

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        self._session = self._session_maker()
        self.policies = SQLAlchemyPolicyRepository(self._session)
        self.calendar = SQLAlchemyBusinessCalendarProvider(self._session)
        self.tracking = SQLAlchemyTrackingRepository(self._session)
        self.escalations = SQLAlchemyEscalationRepository(self._session)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is None:
                await self._session.commit()
            else:
                await self._session.rollback()
        except SQLAlchemyError as e:
            await self._session.rollback()
            raise RepositoryException(f"Transaction failed: {e}") from e
        finally:
            await self._session.close()
            self._session = None


# ========== Seed data ==========

class YAMLSeedLoader:
    """
    Loads SLA seed data (policies, calendars, escalation matrices) from YAML.

    Times must be quoted in the file; PyYAML reads an unquoted 17:00 as a
    base-60 integer.
    """

    def __init__(self, seed_path: str):
        self._seed_path = Path(seed_path)

    def load(self) -> SlaSeedConfig:
        if not self._seed_path.exists():
            raise ConfigurationException(f"SLA seed file not found: {self._seed_path}")

        try:
            with open(self._seed_path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationException(f"Invalid SLA seed YAML: {e}") from e

        try:
            return SlaSeedConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigurationException(
                "Invalid SLA seed data",
                {"errors": e.errors(include_url=False)}
            ) from e


class SQLAlchemySeedWriter:
    """
    Writes seed data for each agency.

    Weekly hours and overrides of a seeded agency are replaced; policies and
    matrices are added only when no row with the same name exists.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def apply(self, config: SlaSeedConfig) -> Dict[str, int]:
        counts = {"business_hours": 0, "calendar_overrides": 0, "sla_policies": 0, "escalation_matrices": 0}

        for agency in config.agencies:
            agency_id = agency.agency_id

            if agency.business_hours:
                await self._session.execute(
                    delete(AgencyBusinessHourModel).where(AgencyBusinessHourModel.agency_id == agency_id)
                )
                for bh in agency.business_hours:
                    self._session.add(AgencyBusinessHourModel(
                        agency_id=agency_id,
                        day_of_week=bh.day_of_week,
                        start_time=bh.start_time,
                        end_time=bh.end_time,
                        is_active=bh.is_active
                    ))
                    counts["business_hours"] += 1

            if agency.calendar_overrides:
                await self._session.execute(
                    delete(BusinessCalendarOverrideModel)
                    .where(BusinessCalendarOverrideModel.agency_id == agency_id)
                )
                for override in agency.calendar_overrides:
                    self._session.add(BusinessCalendarOverrideModel(
                        agency_id=agency_id,
                        override_date=override.override_date,
                        is_working_day=override.is_working_day,
                        start_time=override.start_time,
                        end_time=override.end_time,
                        description=override.description
                    ))
                    counts["calendar_overrides"] += 1

            for policy in agency.sla_policies:
                exists = await self._session.scalar(
                    select(SlaPolicyModel.id).where(
                        SlaPolicyModel.agency_id == agency_id,
                        SlaPolicyModel.policy_name == policy.policy_name
                    )
                )
                if exists:
                    continue

                policy_model = SlaPolicyModel(
                    id=uuid4(),
                    agency_id=agency_id,
                    policy_name=policy.policy_name,
                    description=policy.description,
                    is_active=policy.is_active,
                    applies_business_hours=policy.applies_business_hours
                )
                self._session.add(policy_model)
                await self._session.flush()

                for rule in policy.rules:
                    self._session.add(SlaRuleModel(
                        sla_policy_id=policy_model.id,
                        priority_id=rule.priority_id,
                        category_id=rule.category_id,
                        response_time_minutes=rule.response_time_minutes,
                        resolution_time_minutes=rule.resolution_time_minutes,
                        escalation_after_minutes=rule.escalation_after_minutes
                    ))
                    # Flush per rule so creation order is preserved
                    await self._session.flush()
                counts["sla_policies"] += 1

            for matrix in agency.escalation_matrices:
                name_filter = (
                    EscalationMatrixModel.matrix_name == matrix.matrix_name
                    if matrix.matrix_name is not None
                    else EscalationMatrixModel.matrix_name.is_(None)
                )
                exists = await self._session.scalar(
                    select(EscalationMatrixModel.id).where(
                        EscalationMatrixModel.agency_id == agency_id,
                        name_filter
                    )
                )
                if exists:
                    continue

                matrix_model = EscalationMatrixModel(
                    id=uuid4(),
                    agency_id=agency_id,
                    matrix_name=matrix.matrix_name,
                    priority_id=matrix.priority_id,
                    max_response_time_minutes=matrix.max_response_time_minutes,
                    max_resolution_time_minutes=matrix.max_resolution_time_minutes,
                    auto_escalation_enabled=matrix.auto_escalation_enabled
                )
                self._session.add(matrix_model)
                for level in matrix.levels:
                    self._session.add(EscalationLevelModel(
                        escalation_matrix_id=matrix_model.id,
                        level_number=level.level_number,
                        escalation_role=level.escalation_role,
                        escalation_department_id=level.escalation_department_id,
                        notify_via_email=level.notify_via_email,
                        notify_via_sms=level.notify_via_sms
                    ))
                counts["escalation_matrices"] += 1

        await self._session.flush()
        logger.info("SLA seed data applied", extra=counts)
        return counts
