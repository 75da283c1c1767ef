"""Pytest configuration and shared fixtures."""

from datetime import datetime, date, time, timedelta, timezone
from typing import Iterable, List, Optional
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import create_async_engine

from agency_sla.config import TicketStatus
from agency_sla.infrastructure.database import build_session_maker, create_tables
from agency_sla.sla.domain import TicketSnapshot
from agency_sla.sla.infrastructure import SQLAlchemyUnitOfWork
from agency_sla.sla.infrastructure.models import (
    TicketModel, SlaPolicyModel, SlaRuleModel, SlaTrackingModel,
    BreachLogModel, EscalationMatrixModel, EscalationLevelModel,
    EscalationEventModel, AgencyBusinessHourModel, BusinessCalendarOverrideModel
)

# Monday 15 January 2024, 10:00 UTC
MONDAY = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
WEEKDAYS = (1, 2, 3, 4, 5)


class SlaDataBuilder:
    """Inserts rows directly, bypassing the services under test."""

    def __init__(self, session_maker):
        self._session_maker = session_maker

    async def _add(self, *models) -> None:
        async with self._session_maker() as session:
            session.add_all(models)
            await session.commit()

    async def business_hours(
        self,
        agency_id: UUID,
        days: Iterable[int] = WEEKDAYS,
        start: time = time(8, 0),
        end: time = time(17, 0)
    ) -> None:
        await self._add(*[
            AgencyBusinessHourModel(agency_id=agency_id, day_of_week=d, start_time=start, end_time=end)
            for d in days
        ])

    async def override(
        self,
        agency_id: UUID,
        override_date: date,
        is_working_day: bool = False,
        start: Optional[time] = None,
        end: Optional[time] = None
    ) -> None:
        await self._add(BusinessCalendarOverrideModel(
            agency_id=agency_id,
            override_date=override_date,
            is_working_day=is_working_day,
            start_time=start,
            end_time=end
        ))

    async def policy(
        self,
        agency_id: UUID,
        rules: List[dict],
        applies_business_hours: bool = False,
        is_active: bool = True,
        created_at: Optional[datetime] = None,
        name: str = "Default policy"
    ) -> UUID:
        """Create a policy; rules are dicts of SlaRuleModel columns, kept in list order."""
        policy_id = uuid4()
        created_at = created_at or datetime.now(timezone.utc)
        models = [SlaPolicyModel(
            id=policy_id,
            agency_id=agency_id,
            policy_name=name,
            is_active=is_active,
            applies_business_hours=applies_business_hours,
            created_at=created_at
        )]
        for index, rule in enumerate(rules):
            models.append(SlaRuleModel(
                sla_policy_id=policy_id,
                created_at=created_at + timedelta(seconds=index),
                **rule
            ))
        await self._add(*models)
        return policy_id

    async def matrix(
        self,
        agency_id: UUID,
        levels: int = 3,
        priority_id: Optional[UUID] = None,
        auto_escalation_enabled: bool = True,
        created_at: Optional[datetime] = None,
        role_prefix: str = "LEVEL"
    ) -> UUID:
        matrix_id = uuid4()
        models = [EscalationMatrixModel(
            id=matrix_id,
            agency_id=agency_id,
            matrix_name=f"{role_prefix} matrix",
            priority_id=priority_id,
            auto_escalation_enabled=auto_escalation_enabled,
            created_at=created_at or datetime.now(timezone.utc)
        )]
        for number in range(1, levels + 1):
            models.append(EscalationLevelModel(
                escalation_matrix_id=matrix_id,
                level_number=number,
                escalation_role=f"{role_prefix}_{number}"
            ))
        await self._add(*models)
        return matrix_id

    async def ticket(
        self,
        agency_id: UUID,
        created_at: datetime = MONDAY,
        priority_id: Optional[UUID] = None,
        category_id: Optional[UUID] = None,
        status: str = TicketStatus.OPEN,
        first_response_at: Optional[datetime] = None,
        resolved_at: Optional[datetime] = None
    ) -> TicketSnapshot:
        model = TicketModel(
            id=uuid4(),
            agency_id=agency_id,
            created_at=created_at,
            priority_id=priority_id,
            category_id=category_id,
            status=status,
            first_response_at=first_response_at,
            resolved_at=resolved_at
        )
        await self._add(model)
        return TicketSnapshot(
            id=model.id,
            agency_id=agency_id,
            created_at=created_at,
            priority_id=priority_id,
            category_id=category_id,
            status=status,
            first_response_at=first_response_at,
            resolved_at=resolved_at
        )

    async def update_ticket(self, ticket_id: UUID, **values) -> None:
        async with self._session_maker() as session:
            model = await session.get(TicketModel, ticket_id)
            for key, value in values.items():
                setattr(model, key, value)
            await session.commit()

    async def tracking_row(self, ticket_id: UUID) -> Optional[SlaTrackingModel]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(SlaTrackingModel).where(SlaTrackingModel.ticket_id == ticket_id)
            )
            return result.scalar_one_or_none()

    async def ticket_row(self, ticket_id: UUID) -> TicketModel:
        async with self._session_maker() as session:
            return await session.get(TicketModel, ticket_id)

    async def breach_logs(self, tracking_id: UUID) -> List[BreachLogModel]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(BreachLogModel).where(BreachLogModel.sla_tracking_id == tracking_id)
            )
            return list(result.scalars().all())

    async def escalation_events(self, ticket_id: UUID) -> List[EscalationEventModel]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(EscalationEventModel)
                .where(EscalationEventModel.ticket_id == ticket_id)
                .order_by(EscalationEventModel.new_level.asc())
            )
            return list(result.scalars().all())

    async def count(self, model) -> int:
        async with self._session_maker() as session:
            return await session.scalar(select(func.count()).select_from(model))


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Temporary SQLite database with all SLA tables."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'sla_test.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return build_session_maker(engine)


@pytest.fixture
def uow_factory(session_maker):
    return lambda: SQLAlchemyUnitOfWork(session_maker)


@pytest.fixture
def data(session_maker):
    return SlaDataBuilder(session_maker)


@pytest.fixture
def agency_id():
    return uuid4()
