"""
Integration Tests for SLA Tracking

Tests for attaching tracking to tickets and the tracking queries.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from agency_sla.config import BreachType, CommitmentState
from agency_sla.core import ResourceNotFoundException, ValidationException
from agency_sla.sla.application import SlaTrackingService, BreachDetector

from conftest import MONDAY

RULE = {"response_time_minutes": 60, "resolution_time_minutes": 480}


class TestAttach:
    """Test attaching SLA tracking at ticket creation."""

    @pytest.fixture
    def service(self, uow_factory):
        return SlaTrackingService(uow_factory)

    @pytest.mark.asyncio
    async def test_attach_in_calendar_time(self, service, data, agency_id):
        policy_id = await data.policy(agency_id, [RULE], applies_business_hours=False)
        ticket = await data.ticket(agency_id)

        tracking = await service.attach_to_ticket(ticket)

        assert tracking.policy_id == policy_id
        assert tracking.response_due_at == MONDAY + timedelta(minutes=60)
        assert tracking.resolution_due_at == MONDAY + timedelta(minutes=480)
        assert tracking.escalation_level == 0

        row = await data.tracking_row(ticket.id)
        assert row.response_met is None
        assert row.response_breached is False

        ticket_row = await data.ticket_row(ticket.id)
        assert ticket_row.sla_response_due_at == tracking.response_due_at
        assert ticket_row.sla_resolution_due_at == tracking.resolution_due_at

    @pytest.mark.asyncio
    async def test_attach_in_business_hours(self, service, data, agency_id):
        await data.business_hours(agency_id)
        await data.policy(agency_id, [RULE], applies_business_hours=True)
        # Friday 16:00
        ticket = await data.ticket(agency_id, created_at=datetime(2024, 1, 19, 16, 0, tzinfo=timezone.utc))

        tracking = await service.attach_to_ticket(ticket)

        assert tracking.response_due_at == datetime(2024, 1, 19, 17, 0, tzinfo=timezone.utc)
        # 60 minutes Friday, remaining 420 from Monday 08:00
        assert tracking.resolution_due_at == datetime(2024, 1, 22, 15, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_attach_honours_stored_holiday(self, service, data, agency_id):
        await data.business_hours(agency_id)
        await data.override(agency_id, datetime(2024, 1, 22).date())
        await data.policy(agency_id, [RULE], applies_business_hours=True)
        ticket = await data.ticket(agency_id, created_at=datetime(2024, 1, 19, 16, 30, tzinfo=timezone.utc))

        tracking = await service.attach_to_ticket(ticket)

        assert tracking.response_due_at == datetime(2024, 1, 23, 8, 30, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_attach_is_idempotent(self, service, data, agency_id):
        await data.policy(agency_id, [RULE])
        ticket = await data.ticket(agency_id)

        first = await service.attach_to_ticket(ticket)
        second = await service.attach_to_ticket(ticket)

        assert first.id == second.id

    @pytest.mark.asyncio
    async def test_no_policy_creates_no_tracking(self, service, data, agency_id, caplog):
        ticket = await data.ticket(agency_id)

        assert await service.attach_to_ticket(ticket) is None
        assert await data.tracking_row(ticket.id) is None
        assert "No active SLA policy" in caplog.text

    @pytest.mark.asyncio
    async def test_attach_by_ticket_id(self, service, data, agency_id):
        await data.policy(agency_id, [RULE])
        ticket = await data.ticket(agency_id)

        tracking = await service.attach_by_ticket_id(ticket.id)

        assert tracking.ticket_id == ticket.id

    @pytest.mark.asyncio
    async def test_attach_unknown_ticket(self, service):
        with pytest.raises(ResourceNotFoundException):
            await service.attach_by_ticket_id(uuid4())


class TestTrackingQueries:
    """Test tracking status, breach and escalation queries."""

    @pytest.fixture
    def service(self, uow_factory):
        return SlaTrackingService(uow_factory)

    @pytest.mark.asyncio
    async def test_tracking_status_with_live_status(self, service, data, agency_id):
        await data.policy(agency_id, [RULE])
        ticket = await data.ticket(agency_id)
        await service.attach_to_ticket(ticket)

        status = await service.get_tracking_status(ticket.id, now=MONDAY + timedelta(minutes=45))

        assert status.tracking.ticket_id == ticket.id
        assert status.live_status.response.state == CommitmentState.PENDING
        assert status.live_status.response.minutes_remaining == 15
        assert status.live_status.resolution.minutes_remaining == 435
        assert status.breach_logs == []
        assert status.escalation_events == []

    @pytest.mark.asyncio
    async def test_tracking_status_unknown_ticket(self, service):
        with pytest.raises(ResourceNotFoundException):
            await service.get_tracking_status(uuid4())

    @pytest.mark.asyncio
    async def test_history_after_breach(self, service, data, uow_factory, agency_id):
        await data.policy(agency_id, [RULE])
        await data.matrix(agency_id)
        ticket = await data.ticket(agency_id)
        await service.attach_to_ticket(ticket)

        await BreachDetector(uow_factory).run_scan(now=MONDAY + timedelta(minutes=90))
        status = await service.get_tracking_status(ticket.id, now=MONDAY + timedelta(minutes=90))

        assert status.live_status.response.state == CommitmentState.BREACHED
        assert status.live_status.response.minutes_overdue == 30
        assert [b.breach_type for b in status.breach_logs] == [BreachType.RESPONSE]
        assert [e.new_level for e in status.escalation_events] == [1]

        escalations = await service.list_escalations(ticket.id)
        assert len(escalations) == 1
        assert escalations[0].escalated_to_role == "LEVEL_1"

    @pytest.mark.asyncio
    async def test_breach_pagination_and_filters(self, service, data, uow_factory, agency_id):
        other_agency = uuid4()
        await data.policy(agency_id, [RULE])
        await data.policy(other_agency, [RULE])
        for _ in range(3):
            await service.attach_to_ticket(await data.ticket(agency_id))
        await service.attach_to_ticket(await data.ticket(other_agency))

        # Both commitments of all four tickets are overdue
        await BreachDetector(uow_factory).run_scan(now=MONDAY + timedelta(days=1))

        everything = await service.list_breaches(page=1, limit=5)
        assert everything.total == 8
        assert everything.total_pages == 2
        assert len(everything.items) == 5

        second_page = await service.list_breaches(page=2, limit=5)
        assert len(second_page.items) == 3

        agency_only = await service.list_breaches(agency_id=agency_id, breach_type=BreachType.RESPONSE)
        assert agency_only.total == 3
        assert all(b.breach_type == BreachType.RESPONSE for b in agency_only.items)

    @pytest.mark.asyncio
    async def test_unknown_breach_type_rejected(self, service):
        with pytest.raises(ValidationException):
            await service.list_breaches(breach_type="LATE")
