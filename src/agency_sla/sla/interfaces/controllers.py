"""
SLA Controllers (API Routes)
=============================

FastAPI routes for SLA tracking endpoints.

Controllers are thin - they delegate to application services held on
app.state by the application lifespan.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from agency_sla.core import ResourceNotFoundException
from agency_sla.shared.infrastructure.logging import get_logger
from agency_sla.sla.application import (
    SlaTrackingService, BreachDetector,
    TrackingAttachRequest, TrackingAttachResponse,
    SlaTrackingResponse, TrackingStatusResponse,
    BreachLogResponse, BreachPageResponse,
    EscalationEventResponse, BreachScanResponse,
)
from agency_sla.sla.application.dto import BreachTypeStr

logger = get_logger(__name__)
router = APIRouter(prefix="/sla", tags=["SLA Tracking"])


# ========== Example payloads for Swagger ==========

TRACKING_STATUS_EXAMPLE = {
    "tracking": {
        "id": "6f1c7f7e-8d7b-4c8e-9a55-0f0a4c1f3b21",
        "ticket_id": "123e4567-e89b-12d3-a456-426614174000",
        "sla_policy_id": "0b9b6a8e-1f6d-4f55-a7a4-9a8f3c0d2e11",
        "response_due_at": "2024-01-15T13:00:00Z",
        "resolution_due_at": "2024-01-17T13:00:00Z",
        "response_met": None,
        "response_breached": False,
        "resolution_met": None,
        "resolution_breached": False,
        "escalation_level": 0,
        "last_escalated_at": None
    },
    "response_status": {
        "state": "PENDING",
        "due_at": "2024-01-15T13:00:00Z",
        "is_overdue": False,
        "minutes_remaining": 45,
        "minutes_overdue": 0,
        "breached_at": None
    },
    "resolution_status": {
        "state": "PENDING",
        "due_at": "2024-01-17T13:00:00Z",
        "is_overdue": False,
        "minutes_remaining": 2925,
        "minutes_overdue": 0,
        "breached_at": None
    },
    "evaluated_at": "2024-01-15T12:15:00Z",
    "breach_logs": [],
    "escalation_events": []
}


# ========== Dependencies ==========

def get_tracking_service(request: Request) -> SlaTrackingService:
    """Get SLA tracking service instance."""
    return request.app.state.tracking_service


def get_breach_detector(request: Request) -> BreachDetector:
    """Get breach detector instance."""
    return request.app.state.breach_detector


# ========== Route Handlers ==========

@router.post(
    "/tracking",
    response_model=TrackingAttachResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Attach SLA tracking to a ticket",
    description="""
    Resolve the agency's SLA policy for a stored ticket and create its tracking record.

    **Idempotent**: a ticket that already has tracking returns the existing record.

    When the agency has no active policy (or the policy has no rules) the ticket
    is left untracked and `attached` is false.
    """,
    responses={404: {"description": "Ticket not found"}}
)
async def attach_tracking(
    payload: TrackingAttachRequest,
    service: SlaTrackingService = Depends(get_tracking_service)
):
    try:
        tracking = await service.attach_by_ticket_id(payload.ticket_id)
    except ResourceNotFoundException as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)

    if tracking is None:
        return TrackingAttachResponse(attached=False)

    return TrackingAttachResponse(
        attached=True,
        tracking=SlaTrackingResponse.from_domain(tracking)
    )


@router.get(
    "/tickets/{ticket_id}/tracking",
    response_model=TrackingStatusResponse,
    summary="Get ticket SLA tracking",
    description="""
    SLA tracking record of a ticket with its live status.

    Live status is computed on read: per commitment the state (PENDING, MET,
    MISSED, BREACHED), overdue flag, minutes remaining and minutes overdue. Also returns
    the ten most recent breach logs and escalation events.
    """,
    responses={
        200: {
            "description": "Ticket SLA tracking",
            "content": {"application/json": {"example": TRACKING_STATUS_EXAMPLE}}
        },
        404: {"description": "Ticket has no SLA tracking"}
    }
)
async def get_ticket_tracking(
    ticket_id: UUID,
    service: SlaTrackingService = Depends(get_tracking_service)
):
    try:
        tracking_status = await service.get_tracking_status(ticket_id)
    except ResourceNotFoundException as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)

    return TrackingStatusResponse.from_domain(tracking_status)


@router.get(
    "/breaches",
    response_model=BreachPageResponse,
    summary="List SLA breaches",
    description="""
    Paginated breach logs, newest first.

    **Query Parameters:**
    - `agency_id`: Filter by agency
    - `breach_type`: RESPONSE or RESOLUTION
    - `page`: Page number (default: 1)
    - `limit`: Results per page (default: 20, max: 100)
    """
)
async def list_breaches(
    agency_id: Optional[UUID] = Query(None, description="Filter by agency"),
    breach_type: Optional[BreachTypeStr] = Query(None, description="Filter by breach type"),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(20, ge=1, le=100, description="Results per page"),
    service: SlaTrackingService = Depends(get_tracking_service)
):
    breach_page = await service.list_breaches(
        agency_id=agency_id,
        breach_type=breach_type,
        page=page,
        limit=limit
    )

    return BreachPageResponse(
        items=[BreachLogResponse.from_domain(b) for b in breach_page.items],
        total=breach_page.total,
        page=breach_page.page,
        limit=breach_page.limit,
        total_pages=breach_page.total_pages
    )


@router.get(
    "/tickets/{ticket_id}/escalations",
    response_model=List[EscalationEventResponse],
    summary="Get ticket escalation history"
)
async def list_ticket_escalations(
    ticket_id: UUID,
    service: SlaTrackingService = Depends(get_tracking_service)
):
    events = await service.list_escalations(ticket_id)
    return [EscalationEventResponse.from_domain(e) for e in events]


@router.post(
    "/breach-scan",
    response_model=BreachScanResponse,
    summary="Run breach scan now",
    description="""
    Run one breach detection pass immediately, outside the regular schedule.

    Safe to call while a scheduled pass is running.
    """
)
async def run_breach_scan(
    detector: BreachDetector = Depends(get_breach_detector)
):
    result = await detector.run_scan()

    logger.info("Manual breach scan complete", extra=result.to_dict())

    return BreachScanResponse(**result.to_dict())


# Export router for inclusion in main app
sla_router = router
