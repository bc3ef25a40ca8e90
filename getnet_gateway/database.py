"""
Database Module
===============
AsyncPG connection pool for PostgreSQL plus the schema the gateway needs.

Tables:
- payments         one row per checkout session
- retry_callbacks  the retry ledger (one row per payment)
- system_events    the black box event log
"""

from contextlib import asynccontextmanager
from typing import List, Optional

import asyncpg
import structlog

logger = structlog.get_logger().bind(component="database")


MIGRATIONS = [
    """
    CREATE TABLE IF NOT EXISTS payments (
        request_id VARCHAR(64) PRIMARY KEY,
        reference VARCHAR(32) NOT NULL,
        amount NUMERIC NOT NULL,
        currency VARCHAR(8) NOT NULL DEFAULT 'CLP',
        status VARCHAR(16) NOT NULL DEFAULT 'CREATED',
        buyer JSONB NOT NULL DEFAULT '{}',
        external_url_callback TEXT,
        callback_executed BOOLEAN NOT NULL DEFAULT FALSE,
        process_url TEXT,
        provider_response JSONB,
        last_status_update TIMESTAMPTZ,
        notifications JSONB NOT NULL DEFAULT '[]',
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS retry_callbacks (
        request_id VARCHAR(64) PRIMARY KEY,
        reference VARCHAR(32),
        callback_url TEXT NOT NULL,
        status VARCHAR(8) NOT NULL DEFAULT 'PENDING',
        attempts INTEGER NOT NULL DEFAULT 0,
        next_retry_at TIMESTAMPTZ,
        last_attempt TIMESTAMPTZ,
        last_error TEXT,
        last_status_code INTEGER,
        success_at TIMESTAMPTZ,
        payment_data JSONB NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS system_events (
        id UUID PRIMARY KEY,
        request_id VARCHAR(64),
        timestamp TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        event_type VARCHAR(40) NOT NULL,
        payload JSONB NOT NULL DEFAULT '{}',
        severity VARCHAR(10) NOT NULL DEFAULT 'INFO'
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_payments_status_created ON payments(status, created_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_retry_due ON retry_callbacks(status, next_retry_at)",
    "CREATE INDEX IF NOT EXISTS idx_events_request ON system_events(request_id, timestamp DESC)",
    "CREATE INDEX IF NOT EXISTS idx_events_type ON system_events(event_type, timestamp DESC)",
]


class Database:
    """Async connection pool manager"""

    def __init__(self, dsn: str, min_size: int = 2, max_size: int = 10):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self._pool: Optional[asyncpg.Pool] = None

    @property
    def initialized(self) -> bool:
        return self._pool is not None

    async def initialize(self):
        """Create the pool and run migrations. Safe to call twice."""
        if self._pool:
            return

        try:
            self._pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
            )
            logger.info("pool_initialized", min_size=self.min_size, max_size=self.max_size)
        except Exception as e:
            logger.error("pool_init_failed", error=str(e))
            raise

        await self._run_migrations()

    async def close(self):
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("pool_closed")

    @asynccontextmanager
    async def acquire(self):
        if not self._pool:
            await self.initialize()

        async with self._pool.acquire() as conn:
            yield conn

    async def execute(self, query: str, *args) -> str:
        async with self.acquire() as conn:
            return await conn.execute(query, *args)

    async def fetch_one(self, query: str, *args) -> Optional[asyncpg.Record]:
        async with self.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def fetch_all(self, query: str, *args) -> List[asyncpg.Record]:
        async with self.acquire() as conn:
            return await conn.fetch(query, *args)

    async def ping(self) -> bool:
        return await self.fetch_one("SELECT 1 AS ok") is not None

    async def _run_migrations(self):
        async with self.acquire() as conn:
            for migration in MIGRATIONS:
                try:
                    await conn.execute(migration)
                except asyncpg.DuplicateObjectError as e:
                    logger.warning("migration_skipped", error=str(e))

        logger.info("migrations_complete", count=len(MIGRATIONS))
