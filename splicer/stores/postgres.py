"""
Postgres-backed ledgers (psycopg 3).

Every ledger row is one record in <schema>.ledger_rows holding its cells as
a JSONB array (cell N of the sheet is element N-1). The unique-applicant
counter lives in <schema>.ledger_counters, keyed by the analytics ledger.

Nothing here commits on its own: PostgresWorkbook.flush() commits, which is
what makes the writes of one switch iteration visible to the next read and
durable if a later iteration fails.

The splice lock is a session-level pg_advisory_lock taken on the same
connection as the writes, bounded by lock_timeout per attempt.

Usage:
    with pool.connection() as conn:
        workbook = PostgresWorkbook(conn, schema="splice")
        lock = AdvisoryLock(conn, "splice")
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any, Sequence

import psycopg
from psycopg import sql
from psycopg.pq import TransactionStatus
from psycopg.types.json import Jsonb

from .base import FIRST_DATA_ROW, FIRST_VALUE_COLUMN, HEADER_ROW, IDENTITY_COLUMN

logger = logging.getLogger(__name__)


# =============================================================================
# SCHEMA
# =============================================================================

_SCHEMA_DDL = (
    "CREATE SCHEMA IF NOT EXISTS {schema}",
    """
    CREATE TABLE IF NOT EXISTS {schema}.ledger_rows (
        ledger      text        NOT NULL,
        row_index   integer     NOT NULL CHECK (row_index >= 1),
        cells       jsonb       NOT NULL DEFAULT '[]'::jsonb,
        updated_at  timestamptz NOT NULL DEFAULT now(),
        PRIMARY KEY (ledger, row_index)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS {schema}.ledger_counters (
        ledger  text    PRIMARY KEY,
        value   integer NOT NULL DEFAULT 0
    )
    """,
)


def ensure_schema(conn: psycopg.Connection, schema: str) -> None:
    """Create the ledger tables if they do not exist (idempotent)."""
    with conn.cursor() as cur:
        for statement in _SCHEMA_DDL:
            cur.execute(sql.SQL(statement).format(schema=sql.Identifier(schema)))
    conn.commit()
    logger.info(f"Ledger schema ready: {schema}")


def seed_header(
    conn: psycopg.Connection, schema: str, ledger: str, header: Sequence[Any]
) -> bool:
    """
    Write the question row of a ledger unless one already exists.

    Returns:
        True if the header row was created
    """
    with conn.cursor() as cur:
        cur.execute(
            sql.SQL(
                """
                INSERT INTO {schema}.ledger_rows (ledger, row_index, cells)
                VALUES (%s, %s, %s)
                ON CONFLICT (ledger, row_index) DO NOTHING
                """
            ).format(schema=sql.Identifier(schema)),
            (ledger, HEADER_ROW, Jsonb(list(header))),
        )
        created = cur.rowcount == 1
    conn.commit()
    return created


# =============================================================================
# LEDGERS
# =============================================================================


class PostgresLedgerStore:
    """One ledger addressed by (row_index, column) over ledger_rows."""

    def __init__(self, conn: psycopg.Connection, schema: str, name: str):
        self.conn = conn
        self.schema = schema
        self.name = name
        self._rows_table = sql.SQL("{}.ledger_rows").format(sql.Identifier(schema))

    def read_last_row_index(self) -> int:
        with self.conn.cursor() as cur:
            cur.execute(
                sql.SQL("SELECT MAX(row_index) FROM {} WHERE ledger = %s").format(
                    self._rows_table
                ),
                (self.name,),
            )
            row = cur.fetchone()
        if not row or row[0] is None:
            return HEADER_ROW
        return int(row[0])

    def read_identity_column(self, row_count: int) -> list[str]:
        if row_count <= 0:
            return []
        last = FIRST_DATA_ROW + row_count - 1
        with self.conn.cursor() as cur:
            cur.execute(
                sql.SQL(
                    """
                    SELECT row_index, cells ->> %s
                    FROM {}
                    WHERE ledger = %s AND row_index BETWEEN %s AND %s
                    ORDER BY row_index
                    """
                ).format(self._rows_table),
                (IDENTITY_COLUMN - 1, self.name, FIRST_DATA_ROW, last),
            )
            found = {int(index): value or "" for index, value in cur.fetchall()}
        return [found.get(row, "") for row in range(FIRST_DATA_ROW, last + 1)]

    def write_row(
        self, row_index: int, values: Sequence[Any], start_column: int = FIRST_VALUE_COLUMN
    ) -> None:
        cells = self._read_cells(row_index)
        end = start_column - 1 + len(values)
        if len(cells) < end:
            cells.extend([""] * (end - len(cells)))
        cells[start_column - 1 : end] = list(values)
        self._store_cells(row_index, cells)

    def append_row(self, values: Sequence[Any], start_column: int = FIRST_VALUE_COLUMN) -> int:
        row_index = self.read_last_row_index() + 1
        self.write_row(row_index, values, start_column)
        return row_index

    def write_cell(self, row_index: int, column: int, value: Any) -> None:
        self.write_row(row_index, [value], start_column=column)

    def _read_cells(self, row_index: int) -> list[Any]:
        with self.conn.cursor() as cur:
            cur.execute(
                sql.SQL("SELECT cells FROM {} WHERE ledger = %s AND row_index = %s").format(
                    self._rows_table
                ),
                (self.name, row_index),
            )
            row = cur.fetchone()
        return list(row[0]) if row and row[0] is not None else []

    def _store_cells(self, row_index: int, cells: list[Any]) -> None:
        with self.conn.cursor() as cur:
            cur.execute(
                sql.SQL(
                    """
                    INSERT INTO {} (ledger, row_index, cells)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (ledger, row_index)
                    DO UPDATE SET cells = EXCLUDED.cells, updated_at = now()
                    """
                ).format(self._rows_table),
                (self.name, row_index, Jsonb(cells)),
            )


class PostgresAnalyticsStore(PostgresLedgerStore):
    """Analytics ledger plus its unique-applicant counter row."""

    def read_counter(self) -> int:
        with self.conn.cursor() as cur:
            cur.execute(
                sql.SQL("SELECT value FROM {}.ledger_counters WHERE ledger = %s").format(
                    sql.Identifier(self.schema)
                ),
                (self.name,),
            )
            row = cur.fetchone()
        return int(row[0]) if row else 0

    def write_counter(self, value: int) -> None:
        with self.conn.cursor() as cur:
            cur.execute(
                sql.SQL(
                    """
                    INSERT INTO {}.ledger_counters (ledger, value)
                    VALUES (%s, %s)
                    ON CONFLICT (ledger) DO UPDATE SET value = EXCLUDED.value
                    """
                ).format(sql.Identifier(self.schema)),
                (self.name, int(value)),
            )


class PostgresWorkbook:
    """Ledger handles sharing one connection; flush() commits."""

    def __init__(
        self,
        conn: psycopg.Connection,
        schema: str = "splice",
        analytics_name: str = "ID Map & Analytics",
    ):
        self.conn = conn
        self.schema = schema
        self._analytics = PostgresAnalyticsStore(conn, schema, analytics_name)

    def ledger(self, name: str) -> PostgresLedgerStore:
        return PostgresLedgerStore(self.conn, self.schema, name)

    def analytics(self) -> PostgresAnalyticsStore:
        return self._analytics

    def flush(self) -> None:
        self.conn.commit()


# =============================================================================
# LOCK
# =============================================================================


def advisory_key(name: str) -> int:
    """Stable signed 64-bit advisory lock key for a lock name."""
    digest = hashlib.blake2b(name.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


class AdvisoryLock:
    """
    LockService over a session-level Postgres advisory lock.

    Each attempt waits at most `timeout_ms` (via lock_timeout); a timeout
    surfaces as LockNotAvailable and is reported as False.
    """

    def __init__(self, conn: psycopg.Connection, name: str = "splice"):
        self.conn = conn
        self.name = name
        self.key = advisory_key(name)

    def try_acquire(self, timeout_ms: int) -> bool:
        try:
            with self.conn.cursor() as cur:
                cur.execute("SELECT set_config('lock_timeout', %s, false)", (f"{int(timeout_ms)}ms",))
                cur.execute("SELECT pg_advisory_lock(%s)", (self.key,))
                cur.execute("RESET lock_timeout")
            self.conn.commit()
            return True
        except psycopg.errors.LockNotAvailable:
            self.conn.rollback()
            return False

    def release(self) -> None:
        if self.conn.info.transaction_status != TransactionStatus.IDLE:
            # Anything still uncommitted belongs to an iteration that failed
            self.conn.rollback()
        with self.conn.cursor() as cur:
            cur.execute("SELECT pg_advisory_unlock(%s)", (self.key,))
            row = cur.fetchone()
        self.conn.commit()
        if not row or not row[0]:
            logger.warning(f"Advisory lock {self.name!r} was not held at release")
