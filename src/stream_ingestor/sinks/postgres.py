"""PostgreSQL event sink."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import asyncpg
from asyncpg import Pool

from ..config.settings import SinkConfig
from ..errors import StartupError, StoreError
from .base import EventSink


logger = logging.getLogger(__name__)


class PostgresEventSink(EventSink):
    """Stores each event as a JSONB row."""

    def __init__(self, config: SinkConfig):
        self.config = config
        self.pool: Optional[Pool] = None

        self.stats = {
            "records_written": 0,
            "write_errors": 0,
            "last_write_time": None
        }

    async def initialize(self):
        """Create the connection pool, check connectivity and create the table."""
        logger.info("Initializing database connection pool")

        try:
            self.pool = await asyncpg.create_pool(
                dsn=self.config.dsn,
                min_size=self.config.pool_min_size,
                max_size=self.config.pool_max_size,
                command_timeout=self.config.command_timeout_seconds
            )

            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                await self._create_table(conn)

        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError,
                ValueError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to initialize database: {e}", exc_info=True)
            await self.close()
            raise StartupError(f"database unavailable: {e}") from e

        logger.info("Connected to PostgreSQL")

    async def _create_table(self, conn):
        await conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.config.table} (
                id BIGSERIAL PRIMARY KEY,
                event JSONB NOT NULL,
                received_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
        """)

    async def store(self, event: Dict[str, Any]) -> int:
        """Insert one event and return its row id."""
        if self.pool is None:
            raise StoreError("sink is not initialized")

        try:
            async with self.pool.acquire() as conn:
                inserted_id = await conn.fetchval(
                    f"INSERT INTO {self.config.table} (event) VALUES ($1::jsonb) RETURNING id",
                    json.dumps(event)
                )
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError,
                TypeError, ValueError) as e:
            self.stats["write_errors"] += 1
            raise StoreError(f"failed to store event: {e}") from e

        self.stats["records_written"] += 1
        self.stats["last_write_time"] = datetime.now(timezone.utc)
        return inserted_id

    async def close(self):
        """Close the connection pool."""
        if self.pool:
            logger.info("Closing database connection pool")
            await self.pool.close()
            self.pool = None
