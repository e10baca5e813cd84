"""
Per-invocation store sessions.

A backend hands each splice invocation its own Workbook and LockService.
The in-memory backend shares one workbook and one named thread lock across
the process; the Postgres backend checks a connection out of a
psycopg_pool.ConnectionPool and builds both handles on it, so an invocation
never holds more than one pooled connection while it waits for the lock.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import ContextManager, Generator, Protocol

from psycopg_pool import ConnectionPool

from splicer.config.routing import RoutingTable
from splicer.config.settings import Settings

from .base import LockService, Workbook
from .memory import MemoryWorkbook, ThreadLock
from .postgres import AdvisoryLock, PostgresWorkbook, ensure_schema, seed_header

logger = logging.getLogger(__name__)

POOL_MIN_SIZE = 1
POOL_MAX_SIZE = 10


class StoreBackend(Protocol):
    def session(self) -> ContextManager[tuple[Workbook, LockService]]:
        ...

    def close(self) -> None:
        ...


class MemoryBackend:
    """Process-wide in-memory workbook guarded by a named ThreadLock."""

    kind = "memory"

    def __init__(self, analytics_name: str = "ID Map & Analytics", lock_name: str = "splice"):
        self.workbook = MemoryWorkbook(analytics_name)
        self.lock_name = lock_name

    @contextmanager
    def session(self) -> Generator[tuple[MemoryWorkbook, ThreadLock], None, None]:
        yield self.workbook, ThreadLock(self.lock_name)

    def close(self) -> None:
        pass


class PostgresBackend:
    """One pooled connection per invocation, carrying writes and the advisory lock."""

    kind = "postgres"

    def __init__(
        self,
        dsn: str,
        schema: str = "splice",
        analytics_name: str = "ID Map & Analytics",
        lock_name: str = "splice",
        pool: ConnectionPool | None = None,
    ):
        self.schema = schema
        self.analytics_name = analytics_name
        self.lock_name = lock_name
        self.pool = pool or ConnectionPool(
            dsn,
            min_size=POOL_MIN_SIZE,
            max_size=POOL_MAX_SIZE,
            open=True,
            name="splicer",
        )

    @contextmanager
    def session(self) -> Generator[tuple[PostgresWorkbook, AdvisoryLock], None, None]:
        with self.pool.connection() as conn:
            yield (
                PostgresWorkbook(conn, self.schema, self.analytics_name),
                AdvisoryLock(conn, self.lock_name),
            )

    def initialize(self, routing: RoutingTable, headers: dict[str, list[str]] | None = None) -> list[str]:
        """
        Create the schema and header rows for every ledger in the routing table.

        Returns:
            Names of ledgers whose header row was created
        """
        headers = headers or {}
        created = []
        with self.pool.connection() as conn:
            ensure_schema(conn, self.schema)
            for ledger in [*routing.ledger_names(), self.analytics_name]:
                if seed_header(conn, self.schema, ledger, headers.get(ledger, [])):
                    created.append(ledger)
        logger.info(f"Initialized {len(created)} ledger header rows", extra={"count": len(created)})
        return created

    def close(self) -> None:
        self.pool.close()


def build_backend(settings: Settings) -> MemoryBackend | PostgresBackend:
    """Pick the storage backend from settings."""
    if settings.SPLICER_DB_URL:
        logger.info("Using Postgres ledger backend")
        return PostgresBackend(
            settings.SPLICER_DB_URL,
            schema=settings.SPLICER_DB_SCHEMA,
            analytics_name=settings.SPLICER_ANALYTICS_LEDGER,
            lock_name=settings.SPLICER_LOCK_NAME,
        )

    logger.warning("SPLICER_DB_URL not set - using in-memory ledgers (data is not persisted)")
    return MemoryBackend(
        analytics_name=settings.SPLICER_ANALYTICS_LEDGER,
        lock_name=settings.SPLICER_LOCK_NAME,
    )
