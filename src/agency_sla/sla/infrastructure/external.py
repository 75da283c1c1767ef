"""
SLA External Service Integrations
==================================

External services for SLA tracking:
- Webhook publisher for breach and escalation events
- APScheduler for the periodic breach scan
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from agency_sla.core import EventPublishException
from agency_sla.shared.infrastructure.logging import get_logger
from agency_sla.sla.application.services import ISlaEventPublisher

logger = get_logger(__name__)


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        """Get current circuit state."""
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if time.monotonic() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._failure_count >= self.failure_threshold or self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


class WebhookEventPublisher(ISlaEventPublisher):
    """
    Posts SLA events as JSON to the collaborator webhook.

    Handles delivery with:
    - Circuit breaker to prevent cascade failures
    - Exponential backoff retry
    - Timeout handling

    Failures are logged and reported through the return value, never raised.
    """

    def __init__(
        self,
        webhook_url: Optional[str],
        timeout_seconds: float = 5.0,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._webhook_url = webhook_url
        self._timeout_seconds = timeout_seconds
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=60
        )
        self._http_client = http_client

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout_seconds)
        return self._http_client

    async def _post(self, event: Dict[str, Any]) -> None:
        client = await self._get_client()
        try:
            response = await client.post(self._webhook_url, json=event)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise EventPublishException(str(e), {"event_type": event.get("event_type")}) from e

        if response.status_code >= 300:
            raise EventPublishException(
                f"webhook returned {response.status_code}",
                {"status_code": response.status_code, "event_type": event.get("event_type")}
            )

    async def publish(self, event: Dict[str, Any]) -> bool:
        """
        Publish an event to the webhook.

        Returns:
            True if delivered, False otherwise
        """
        if not self._webhook_url:
            logger.debug(
                "Event webhook URL not configured, skipping publish",
                extra={"event_type": event.get("event_type")}
            )
            return False

        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, skipping event publish",
                extra={"event_type": event.get("event_type"), "ticket_id": event.get("ticket_id")}
            )
            return False

        for attempt in range(self._max_retries):
            try:
                await self._post(event)
                self._circuit_breaker.record_success()
                logger.info(
                    "SLA event published",
                    extra={"event_type": event.get("event_type"), "ticket_id": event.get("ticket_id")}
                )
                return True
            except EventPublishException as e:
                logger.error(
                    "SLA event publish failed",
                    extra={
                        "error": e.message,
                        "attempt": attempt + 1,
                        "ticket_id": event.get("ticket_id")
                    }
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._backoff_base * (2 ** attempt))

        self._circuit_breaker.record_failure()
        return False

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class BreachScanScheduler:
    """
    Wrapper for APScheduler running the periodic breach scan.

    Manages the lifecycle of the scheduler and its single job.
    """

    def __init__(self, interval_seconds: int = 60):
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func: Callable[[], Awaitable[Any]]) -> None:
        """Start the scheduler with the given job function."""
        if self._running:
            logger.warning("Breach scan scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id="sla_breach_scan",
            name="SLA Breach Scan",
            misfire_grace_time=self.interval_seconds,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )

        self._scheduler.start()
        self._running = True

        logger.info(
            "Breach scan scheduler started",
            extra={"interval_seconds": self.interval_seconds}
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("Breach scan scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running
