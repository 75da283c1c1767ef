"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for SLA tracking:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer, unit of work and seed loading
- External: External service integrations (event webhook, scheduler)
"""

from agency_sla.sla.infrastructure.repositories import (
    SQLAlchemyPolicyRepository,
    SQLAlchemyBusinessCalendarProvider,
    SQLAlchemyTrackingRepository,
    SQLAlchemyEscalationRepository,
    SQLAlchemyUnitOfWork,
    SQLAlchemySeedWriter,
    YAMLSeedLoader,
)
from agency_sla.sla.infrastructure.external import (
    CircuitBreaker,
    CircuitState,
    WebhookEventPublisher,
    BreachScanScheduler,
)

__all__ = [
    "SQLAlchemyPolicyRepository",
    "SQLAlchemyBusinessCalendarProvider",
    "SQLAlchemyTrackingRepository",
    "SQLAlchemyEscalationRepository",
    "SQLAlchemyUnitOfWork",
    "SQLAlchemySeedWriter",
    "YAMLSeedLoader",
    "CircuitBreaker",
    "CircuitState",
    "WebhookEventPublisher",
    "BreachScanScheduler",
]
