"""
PostgreSQL client with connection pooling and RLS user isolation.

Uses psycopg2 with ThreadedConnectionPool. Domain tables are isolated via
PostgreSQL Row Level Security: the user ID is read from the contextvar and set
as app.current_user_id on each connection. Auth tables (users, tokens,
sessions, login_attempts, security_events) carry no RLS policy because they
are read before any user context exists.

Every execute_* call runs in its own transaction and commits or rolls back
before the connection returns to the pool. Nothing holds a lock past a
single statement.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Tuple
from uuid import UUID

import psycopg2
import psycopg2.extras
import psycopg2.pool

from utils.user_context import _current_user_id

logger = logging.getLogger(__name__)

# Global JSONB registration flag
_jsonb_registered = False


class DatabaseUnavailableError(Exception):
    """Database could not be reached or the connection broke mid-query.

    Fatal for the current request. Not retried here - the caller decides.
    """


class PostgresClient:
    """
    PostgreSQL client with automatic RLS context from contextvar.

    Usage:
        db = PostgresClient(database_url)

        user = db.execute_single("SELECT * FROM users WHERE email = %s", (email,))

        with user_context(user_id):
            orders = db.execute("SELECT * FROM work_orders")  # RLS filtered
    """

    # Class-level connection pools shared across instances
    _connection_pools: Dict[str, psycopg2.pool.ThreadedConnectionPool] = {}
    _pools_lock = threading.RLock()

    def __init__(self, database_url: str, min_connections: int = 2, max_connections: int = 20):
        self._database_url = database_url
        self._min_connections = min_connections
        self._max_connections = max_connections
        self._ensure_connection_pool()

    def _ensure_connection_pool(self) -> None:
        """Create connection pool if it doesn't exist."""
        with self._pools_lock:
            if self._database_url not in self._connection_pools:
                try:
                    pool = psycopg2.pool.ThreadedConnectionPool(
                        minconn=self._min_connections,
                        maxconn=self._max_connections,
                        dsn=self._database_url,
                        connect_timeout=30,
                    )
                except psycopg2.OperationalError as e:
                    logger.error(f"Could not create connection pool: {e}")
                    raise DatabaseUnavailableError(str(e)) from e

                global _jsonb_registered
                if not _jsonb_registered:
                    psycopg2.extras.register_default_jsonb(globally=True)
                    _jsonb_registered = True

                self._connection_pools[self._database_url] = pool
                logger.info("Connection pool created")

    @contextmanager
    def get_connection(self):
        """Get connection with RLS context from contextvar.

        Rolls back on any error so a failed statement never leaks an
        aborted transaction back into the pool.
        """
        if self._database_url not in self._connection_pools:
            self._ensure_connection_pool()

        pool = self._connection_pools[self._database_url]
        conn = None

        try:
            try:
                conn = pool.getconn()
            except psycopg2.pool.PoolError as e:
                raise DatabaseUnavailableError(f"Connection pool exhausted: {e}") from e

            user_id = _current_user_id.get()

            with conn.cursor() as cur:
                if user_id is not None:
                    cur.execute("SET app.current_user_id = %s", (str(user_id),))
                else:
                    # Empty string fails the ::uuid cast in RLS policies = no rows
                    cur.execute("SET app.current_user_id = ''")

            yield conn

        except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
            logger.error(f"Database unavailable: {e}")
            if conn is not None and not conn.closed:
                conn.rollback()
            raise DatabaseUnavailableError(str(e)) from e

        except Exception:
            if conn is not None and not conn.closed:
                conn.rollback()
            raise

        finally:
            if conn is not None:
                pool.putconn(conn, close=bool(conn.closed))

    def _convert_params(self, params: Tuple | Dict | None) -> Tuple | Dict | None:
        """Convert UUID objects to strings."""
        if params is None:
            return None

        def convert(value: Any) -> Any:
            if isinstance(value, UUID):
                return str(value)
            if isinstance(value, list):
                return [convert(v) for v in value]
            if isinstance(value, tuple):
                return tuple(convert(v) for v in value)
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            return value

        return convert(params)

    def execute(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute query and commit, return list of row dicts. Empty list if no results."""
        params = self._convert_params(params)
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(query, params)
                rows = [dict(row) for row in cur.fetchall()] if cur.description else []
                conn.commit()
                return rows

    def execute_single(self, query: str, params: Tuple | Dict | None = None) -> Dict[str, Any] | None:
        """Execute query, return first row or None."""
        results = self.execute(query, params)
        return results[0] if results else None

    def execute_scalar(self, query: str, params: Tuple | Dict | None = None) -> Any:
        """Execute query, return first value of first row or None."""
        params = self._convert_params(params)
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                result = cur.fetchone()
                conn.commit()
                return result[0] if result else None

    def execute_returning(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute INSERT/UPDATE/DELETE with RETURNING, return results."""
        params = self._convert_params(params)
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(query, params)
                rows = [dict(row) for row in cur.fetchall()]
                conn.commit()
                return rows

    def ping(self) -> bool:
        """Health check. Raises DatabaseUnavailableError if unreachable."""
        return self.execute_scalar("SELECT 1") == 1

    def close(self) -> None:
        """Close connection pool."""
        with self._pools_lock:
            if self._database_url in self._connection_pools:
                self._connection_pools[self._database_url].closeall()
                del self._connection_pools[self._database_url]
