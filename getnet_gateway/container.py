# container.py
# ============================================================================
# GETNET GATEWAY - COMPONENT WIRING
# ============================================================================
# Builds every component once from a GatewayConfig. The API owns one
# container per process and starts/stops it from the FastAPI lifespan.
# ============================================================================

from typing import Optional

import httpx
import structlog

from getnet_gateway.config import GatewayConfig
from getnet_gateway.database import Database
from getnet_gateway.services.dispatcher import CallbackDispatcher
from getnet_gateway.services.event_log import EventLog
from getnet_gateway.services.getnet_client import GetnetClient
from getnet_gateway.services.notifications import NotificationService
from getnet_gateway.services.orchestrator import CallbackOrchestrator
from getnet_gateway.services.payments import PaymentService
from getnet_gateway.storage import (
    InMemoryEventStore,
    InMemoryPaymentRepository,
    InMemoryRetryLedger,
    PostgresEventStore,
    PostgresPaymentRepository,
    PostgresRetryLedger,
)
from getnet_gateway.tasks import ReconciliationScheduler, RetrySweeper
from getnet_gateway.timeutil import Clock, utcnow

logger = structlog.get_logger().bind(component="container")


class GatewayContainer:
    """Holds the wired component graph for one process."""

    def __init__(
        self,
        config: GatewayConfig,
        database: Optional[Database] = None,
        callback_http: Optional[httpx.AsyncClient] = None,
        provider_http: Optional[httpx.AsyncClient] = None,
        clock: Clock = utcnow,
    ):
        self.config = config
        self.clock = clock

        if config.storage_backend == "memory":
            self.database = None
            self.payments = InMemoryPaymentRepository(clock)
            self.ledger = InMemoryRetryLedger(clock)
            self.event_store = InMemoryEventStore()
        elif config.storage_backend == "postgres":
            self.database = database or Database(
                config.database_url,
                min_size=config.db_min_pool_size,
                max_size=config.db_max_pool_size,
            )
            self.payments = PostgresPaymentRepository(self.database, clock)
            self.ledger = PostgresRetryLedger(self.database, clock)
            self.event_store = PostgresEventStore(self.database)
        else:
            raise ValueError(f"Unknown storage backend: {config.storage_backend}")

        self._owns_callback_http = callback_http is None
        self.callback_http = callback_http or httpx.AsyncClient(timeout=config.callback_timeout_seconds)

        self.events = EventLog(self.event_store)
        self.client = GetnetClient(config, http=provider_http)
        self.dispatcher = CallbackDispatcher(
            self.callback_http,
            server_secret=config.server_secret,
            timeout_seconds=config.callback_timeout_seconds,
            clock=clock,
        )
        self.orchestrator = CallbackOrchestrator(
            self.dispatcher,
            self.ledger,
            self.payments,
            self.events,
        )
        self.sweeper = RetrySweeper(
            self.ledger,
            self.orchestrator,
            self.events,
            batch_size=config.retry_batch_size,
            delay_seconds=config.sweep_delay_seconds,
        )
        self.scheduler = ReconciliationScheduler(
            self.payments,
            self.client,
            self.orchestrator,
            self.sweeper,
            self.events,
            clock=clock,
            delay_seconds=config.reconcile_delay_seconds,
            max_lookback_days=config.max_lookback_days,
            default_lookback_days=config.default_lookback_days,
        )
        self.payment_service = PaymentService(config, self.client, self.payments, self.events, clock)
        self.notification_service = NotificationService(config, self.payments, self.orchestrator, self.events)

    async def start(self):
        if self.database is not None and not self.database.initialized:
            await self.database.initialize()
        logger.info("container_started", storage_backend=self.config.storage_backend)

    async def close(self):
        await self.client.close()
        if self._owns_callback_http:
            await self.callback_http.aclose()
        if self.database is not None:
            await self.database.close()
        logger.info("container_closed")
