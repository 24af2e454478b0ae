"""Database connection management with connection pooling."""

import logging
import re
import time
from collections import deque
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Iterator, Optional, Sequence

import psycopg2
from psycopg2 import pool
from psycopg2.extras import RealDictCursor

from safetransit.config import settings
from safetransit.exceptions import PersistenceError

logger = logging.getLogger(__name__)

# Errors after which the connection is unusable and must be discarded
CONNECTION_LOST_ERRORS = (psycopg2.OperationalError, psycopg2.InterfaceError)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _check_identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return name


class QueryExecutor:
    """
    Query/insert/update/delete facade shared by connections and transactions.

    Subclasses provide _execute(), which runs a single statement and
    returns (rows, rowcount).
    """

    def _execute(self, sql: str, params: Sequence[Any], fetch: Optional[str]):
        raise NotImplementedError

    def query(
        self,
        sql: str,
        params: Sequence[Any] = (),
        single: bool = False
    ):
        """
        Run a SELECT.

        Args:
            sql: Statement with %s placeholders
            params: Bound parameters
            single: Return only the first row

        Returns:
            List of row dicts, or one row dict (None if no row) when single
        """
        rows, _ = self._execute(sql, params, "one" if single else "all")
        return rows

    def insert(
        self,
        table: str,
        data: Dict[str, Any],
        returning: Optional[str] = None
    ) -> Any:
        """
        Insert one row.

        Args:
            table: Table name
            data: Column -> value mapping
            returning: Column to return from the inserted row

        Returns:
            Value of the returning column, or None
        """
        columns = [_check_identifier(column) for column in data]
        sql = (
            f"INSERT INTO {_check_identifier(table)} ({', '.join(columns)}) "
            f"VALUES ({', '.join(['%s'] * len(columns))})"
        )
        if returning:
            sql += f" RETURNING {_check_identifier(returning)}"
            row, _ = self._execute(sql, list(data.values()), "one")
            return row[returning] if row else None

        self._execute(sql, list(data.values()), None)
        return None

    def update(
        self,
        table: str,
        data: Dict[str, Any],
        where: str,
        where_params: Sequence[Any]
    ) -> int:
        """Update rows matching a WHERE clause; returns the affected row count."""
        assignments = ", ".join(f"{_check_identifier(column)} = %s" for column in data)
        sql = f"UPDATE {_check_identifier(table)} SET {assignments} WHERE {where}"
        _, rowcount = self._execute(sql, [*data.values(), *where_params], None)
        return rowcount

    def delete(self, table: str, where: str, where_params: Sequence[Any]) -> int:
        """Delete rows matching a WHERE clause; returns the affected row count."""
        sql = f"DELETE FROM {_check_identifier(table)} WHERE {where}"
        _, rowcount = self._execute(sql, list(where_params), None)
        return rowcount

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a statement that returns no rows; returns the affected row count."""
        _, rowcount = self._execute(sql, params, None)
        return rowcount


def _run_statement(conn, sql: str, params: Sequence[Any], fetch: Optional[str]):
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(sql, list(params))
        if fetch == "all":
            rows = [dict(row) for row in cur.fetchall()]
        elif fetch == "one":
            row = cur.fetchone()
            rows = dict(row) if row is not None else None
        else:
            rows = None
        return rows, cur.rowcount


class Transaction(QueryExecutor):
    """Executor bound to one pooled connection for the duration of a transaction."""

    def __init__(self, conn, owner: "DatabaseConnection"):
        self._conn = conn
        self._owner = owner
        self.broken = False

    def _execute(self, sql: str, params: Sequence[Any], fetch: Optional[str]):
        start = time.perf_counter()
        try:
            result = _run_statement(self._conn, sql, params, fetch)
        except CONNECTION_LOST_ERRORS as e:
            # The transaction died with the connection; nothing to retry.
            self.broken = True
            logger.error(f"Connection lost inside transaction: {e}")
            raise PersistenceError("Database connection lost during transaction") from e
        except psycopg2.Error as e:
            logger.error(f"DB query failed in transaction: {e}\nSQL: {sql}")
            raise PersistenceError("Database query failed") from e
        self._owner._log_query(sql, params, time.perf_counter() - start)
        return result


class DatabaseConnection(QueryExecutor):
    """Manages the database connection pool and exposes the query facade."""

    def __init__(
        self,
        database_url: Optional[str] = None,
        min_connections: Optional[int] = None,
        max_connections: Optional[int] = None,
        query_log_enabled: Optional[bool] = None,
        query_log_size: Optional[int] = None
    ):
        """
        Initialize database connection pool.

        Args:
            database_url: PostgreSQL connection string (defaults to config)
            min_connections: Minimum number of connections in pool
            max_connections: Maximum number of connections in pool
            query_log_enabled: Record executed statements in query_log
            query_log_size: Most recent statements kept in query_log
        """
        self.database_url = database_url or settings.DATABASE_URL
        self.min_connections = min_connections or settings.database.min_connections
        self.max_connections = max_connections or settings.database.pool_size
        self.query_log_enabled = (
            settings.database.query_log_enabled if query_log_enabled is None
            else query_log_enabled
        )
        self.query_log: Deque[Dict[str, Any]] = deque(
            maxlen=query_log_size or settings.database.query_log_size
        )
        self._pool: Optional[pool.SimpleConnectionPool] = None

    def initialize(self):
        """Initialize the connection pool."""
        if self._pool is not None:
            logger.warning("Connection pool already initialized")
            return

        try:
            self._pool = psycopg2.pool.SimpleConnectionPool(
                self.min_connections,
                self.max_connections,
                self.database_url
            )
            logger.info(
                f"Database connection pool initialized "
                f"(min={self.min_connections}, max={self.max_connections})"
            )
        except Exception as e:
            logger.error(f"Failed to initialize connection pool: {e}")
            raise

    def close(self):
        """Close all connections in the pool."""
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None
            logger.info("Database connection pool closed")

    def _acquire(self):
        if self._pool is None:
            raise RuntimeError("Connection pool not initialized")
        try:
            return self._pool.getconn()
        except (psycopg2.Error, pool.PoolError) as e:
            logger.error(f"Could not obtain database connection: {e}")
            raise PersistenceError("Database unavailable") from e

    def _release(self, conn, discard: bool = False):
        if self._pool is not None:
            self._pool.putconn(conn, close=discard)

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """
        Run several statements atomically on one connection.

        Commits when the block exits normally and rolls back on any
        exception, which is re-raised. Database failures surface as
        PersistenceError.

        Yields:
            Transaction exposing query/insert/update/delete/execute
        """
        conn = self._acquire()
        tx = Transaction(conn, self)
        try:
            yield tx
            conn.commit()
        except BaseException as e:
            try:
                conn.rollback()
            except CONNECTION_LOST_ERRORS:
                tx.broken = True
            if isinstance(e, CONNECTION_LOST_ERRORS):
                tx.broken = True
            logger.warning(f"Transaction rolled back: {type(e).__name__}")
            if isinstance(e, psycopg2.Error):
                raise PersistenceError("Database transaction failed") from e
            raise
        finally:
            self._release(conn, discard=tx.broken)

    def _execute(self, sql: str, params: Sequence[Any], fetch: Optional[str]):
        """Run one statement in its own unit of work, retrying once on connection loss."""
        retried = False
        while True:
            conn = self._acquire()
            start = time.perf_counter()
            try:
                result = _run_statement(conn, sql, params, fetch)
                conn.commit()
            except CONNECTION_LOST_ERRORS as e:
                self._release(conn, discard=True)
                if retried:
                    logger.error(f"DB query failed after reconnect: {e}\nSQL: {sql}")
                    raise PersistenceError("Database connection lost") from e
                logger.warning("DB connection lost. Attempting reconnect...")
                retried = True
                continue
            except psycopg2.Error as e:
                conn.rollback()
                self._release(conn)
                logger.error(f"DB query failed: {e}\nSQL: {sql}")
                raise PersistenceError("Database query failed") from e

            self._release(conn)
            self._log_query(sql, params, time.perf_counter() - start)
            return result

    def _log_query(self, sql: str, params: Sequence[Any], elapsed: float):
        if not self.query_log_enabled:
            return
        self.query_log.append({
            "sql": sql,
            "params": list(params),
            "time_ms": round(elapsed * 1000, 2),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })
