"""
SLA Application Layer
======================

Application layer for SLA tracking.

Contains:
- Services: Policy resolution, deadline calculation, tracking, breach detection, escalation
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from agency_sla.sla.application.dto import (
    TrackingAttachRequest,
    BreachQueryDTO,
    CommitmentStatusResponse,
    BreachLogResponse,
    EscalationEventResponse,
    SlaTrackingResponse,
    TrackingAttachResponse,
    TrackingStatusResponse,
    BreachPageResponse,
    BreachScanResponse,
)
from agency_sla.sla.application.services import (
    PolicyResolver,
    ResolvedPolicy,
    DeadlineCalculator,
    SlaTrackingService,
    TrackingStatus,
    BreachPage,
    EscalationEngine,
    BreachDetector,
    BreachScanResult,
    IPolicyRepository,
    IBusinessCalendarProvider,
    ITrackingRepository,
    IEscalationRepository,
    ISlaUnitOfWork,
    ISlaEventPublisher,
    UnitOfWorkFactory,
)

__all__ = [
    # DTOs
    "TrackingAttachRequest",
    "BreachQueryDTO",
    "CommitmentStatusResponse",
    "BreachLogResponse",
    "EscalationEventResponse",
    "SlaTrackingResponse",
    "TrackingAttachResponse",
    "TrackingStatusResponse",
    "BreachPageResponse",
    "BreachScanResponse",
    # Services
    "PolicyResolver",
    "ResolvedPolicy",
    "DeadlineCalculator",
    "SlaTrackingService",
    "TrackingStatus",
    "BreachPage",
    "EscalationEngine",
    "BreachDetector",
    "BreachScanResult",
    # Repository Interfaces
    "IPolicyRepository",
    "IBusinessCalendarProvider",
    "ITrackingRepository",
    "IEscalationRepository",
    "ISlaUnitOfWork",
    "ISlaEventPublisher",
    "UnitOfWorkFactory",
]
