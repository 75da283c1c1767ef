"""
Integration Tests for Escalation

Tests for matrix selection, +1 level advancement and exhaustion.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from agency_sla.config import BreachType
from agency_sla.sla.application import EscalationEngine, SlaTrackingService

from conftest import MONDAY

RULE = {"response_time_minutes": 60, "resolution_time_minutes": 480}


@pytest.fixture
def tracking_service(uow_factory):
    return SlaTrackingService(uow_factory)


async def escalate(uow_factory, ticket_id, tracking_id, breach_type=BreachType.RESPONSE):
    async with uow_factory() as uow:
        engine = EscalationEngine(uow.tracking, uow.escalations)
        return await engine.escalate(ticket_id, tracking_id, breach_type, MONDAY + timedelta(hours=2))


class TestEscalationEngine:
    """Test escalation along the agency matrix."""

    @pytest.mark.asyncio
    async def test_levels_advance_by_one_until_exhausted(self, data, tracking_service, uow_factory, agency_id, caplog):
        await data.policy(agency_id, [RULE])
        await data.matrix(agency_id, levels=2)
        ticket = await data.ticket(agency_id)
        tracking = await tracking_service.attach_to_ticket(ticket)

        first = await escalate(uow_factory, ticket.id, tracking.id)
        second = await escalate(uow_factory, ticket.id, tracking.id, BreachType.RESOLUTION)
        with caplog.at_level("DEBUG"):
            third = await escalate(uow_factory, ticket.id, tracking.id)

        assert (first.previous_level, first.new_level) == (0, 1)
        assert (second.previous_level, second.new_level) == (1, 2)
        assert second.escalation_reason == "RESOLUTION SLA breached - auto-escalation to level 2"
        assert third is None
        assert "No escalation level 3" in caplog.text

        row = await data.tracking_row(ticket.id)
        assert row.escalation_level == 2
        assert row.last_escalated_at == MONDAY + timedelta(hours=2)
        assert len(await data.escalation_events(ticket.id)) == 2

    @pytest.mark.asyncio
    async def test_priority_specific_matrix_preferred(self, data, tracking_service, uow_factory, agency_id):
        priority_id = uuid4()
        await data.policy(agency_id, [RULE])
        now = datetime.now(timezone.utc)
        await data.matrix(agency_id, role_prefix="GENERAL", created_at=now)
        await data.matrix(agency_id, priority_id=priority_id, role_prefix="URGENT",
                          created_at=now - timedelta(days=1))
        ticket = await data.ticket(agency_id, priority_id=priority_id)
        tracking = await tracking_service.attach_to_ticket(ticket)

        event = await escalate(uow_factory, ticket.id, tracking.id)

        assert event.escalated_to_role == "URGENT_1"

    @pytest.mark.asyncio
    async def test_priority_agnostic_matrix_before_other_priority(self, data, tracking_service, uow_factory, agency_id):
        await data.policy(agency_id, [RULE])
        now = datetime.now(timezone.utc)
        await data.matrix(agency_id, priority_id=uuid4(), role_prefix="OTHER", created_at=now)
        await data.matrix(agency_id, role_prefix="GENERAL", created_at=now - timedelta(days=1))
        ticket = await data.ticket(agency_id, priority_id=uuid4())
        tracking = await tracking_service.attach_to_ticket(ticket)

        event = await escalate(uow_factory, ticket.id, tracking.id)

        assert event.escalated_to_role == "GENERAL_1"

    @pytest.mark.asyncio
    async def test_most_recent_matrix_wins(self, data, tracking_service, uow_factory, agency_id):
        await data.policy(agency_id, [RULE])
        now = datetime.now(timezone.utc)
        await data.matrix(agency_id, role_prefix="OLD", created_at=now - timedelta(days=1))
        await data.matrix(agency_id, role_prefix="NEW", created_at=now)
        ticket = await data.ticket(agency_id)
        tracking = await tracking_service.attach_to_ticket(ticket)

        event = await escalate(uow_factory, ticket.id, tracking.id)

        assert event.escalated_to_role == "NEW_1"

    @pytest.mark.asyncio
    async def test_disabled_matrix_is_ignored(self, data, tracking_service, uow_factory, agency_id):
        await data.policy(agency_id, [RULE])
        await data.matrix(agency_id, auto_escalation_enabled=False)
        ticket = await data.ticket(agency_id)
        tracking = await tracking_service.attach_to_ticket(ticket)

        assert await escalate(uow_factory, ticket.id, tracking.id) is None
        assert (await data.tracking_row(ticket.id)).escalation_level == 0
        assert (await data.ticket_row(ticket.id)).is_escalated is False

    @pytest.mark.asyncio
    async def test_level_write_is_conditional(self, data, tracking_service, uow_factory, agency_id):
        await data.policy(agency_id, [RULE])
        ticket = await data.ticket(agency_id)
        tracking = await tracking_service.attach_to_ticket(ticket)
        at = MONDAY + timedelta(hours=1)

        async with uow_factory() as uow:
            assert await uow.escalations.advance_tracking_level(tracking.id, 0, 1, at) is True
        async with uow_factory() as uow:
            assert await uow.escalations.advance_tracking_level(tracking.id, 0, 1, at) is False

        assert (await data.tracking_row(ticket.id)).escalation_level == 1

    @pytest.mark.asyncio
    async def test_exhausted_matrix_does_not_fall_through(self, data, tracking_service, uow_factory, agency_id):
        priority_id = uuid4()
        await data.policy(agency_id, [RULE])
        await data.matrix(agency_id, levels=1, priority_id=priority_id, role_prefix="URGENT")
        await data.matrix(agency_id, levels=3, role_prefix="GENERAL")
        ticket = await data.ticket(agency_id, priority_id=priority_id)
        tracking = await tracking_service.attach_to_ticket(ticket)

        first = await escalate(uow_factory, ticket.id, tracking.id)
        second = await escalate(uow_factory, ticket.id, tracking.id, BreachType.RESOLUTION)

        assert first.escalated_to_role == "URGENT_1"
        assert second is None
        assert (await data.tracking_row(ticket.id)).escalation_level == 1
        assert len(await data.escalation_events(ticket.id)) == 1
