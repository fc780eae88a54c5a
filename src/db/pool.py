# src/db/pool.py
# Database connection pooling
# Reuses PostgreSQL connections instead of opening one per query.
#
# ConnectionPool wraps psycopg2's ThreadedConnectionPool and adds what the
# resilient connection manager needs on top of it:
# - callers wait (bounded by the connect timeout) for a free slot instead of
#   failing immediately when every connection is busy
# - occupancy counters: total, idle, waiting (tracked here, not read from
#   the driver pool)
# - connections idle longer than idle_timeout_ms are closed, not reused
# - broken connections are discarded instead of going back to the pool
# - "connect" and "error" events, so an owner can react to a new physical
#   connection or to a connection dying under a caller
#
# One ConnectionPool is owned by exactly one ResilientConnectionManager.

import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Generator, List, Optional, Sequence, Tuple, Union

import psycopg2
from psycopg2 import extensions, pool

from db.models import ConnectionConfig, PoolStats
from logger import fields, get_logger

logger = get_logger(__name__)

EVENTS = ("connect", "error")

Params = Optional[Union[Sequence[Any], Dict[str, Any]]]
Listener = Callable[[Any], None]


class ConnectionPool:
    """
    Thread-safe pool of PostgreSQL connections for one database.

    Example:
        db_pool = ConnectionPool(config)
        with db_pool.connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute("SELECT 1")
        rows, row_count = db_pool.execute("SELECT * FROM users WHERE id = %s", [42])
        db_pool.close()
    """

    def __init__(
        self,
        config: ConnectionConfig,
        pool_factory: Optional[Callable[..., pool.AbstractConnectionPool]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Open the underlying psycopg2 pool.

        ThreadedConnectionPool opens `min_connections` connections right away,
        so an unreachable server makes this constructor raise.

        Args:
            config: Connection settings
            pool_factory: Replaces ThreadedConnectionPool (tests)
            clock: Monotonic clock used for idle tracking (tests)

        Raises:
            psycopg2.OperationalError: If the initial connections cannot be opened
        """
        self.config = config
        self._clock = clock
        factory = pool_factory or pool.ThreadedConnectionPool
        self._pool = factory(
            config.min_connections,
            config.max_connections,
            host=config.host,
            port=config.port,
            dbname=config.database,
            user=config.user,
            password=config.password,
            connect_timeout=config.connect_timeout_s,
        )

        self._lock = threading.Lock()
        # One slot per allowed connection; callers block here when the pool is busy
        self._slots = threading.BoundedSemaphore(config.max_connections)
        self._waiting = 0
        # id(conn) of every connection handed out at least once
        self._seen: set = set()
        # id(conn) -> clock() when it went back to the pool; one entry per idle connection
        self._returned_at: Dict[int, float] = {}
        # Connections opened by the driver at startup and not handed out yet
        self._prewarmed = config.min_connections
        self._in_use = 0
        self._listeners: Dict[str, List[Listener]] = {event: [] for event in EVENTS}
        self._closed = False

        logger.info(
            "Database connection pool opened",
            extra=fields(
                host=config.host,
                database=config.database,
                min=config.min_connections,
                max=config.max_connections,
            ),
        )

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    @contextmanager
    def connection(self) -> Generator[extensions.connection, None, None]:
        """
        Borrow a connection for the duration of a `with` block.

        An open transaction is committed on clean exit and rolled back on
        error. A connection that turns out to be broken is closed instead of
        returned, and an "error" event is fired after it has been released.

        Raises:
            psycopg2.pool.PoolError: If the pool is closed or no slot frees up
                within the connect timeout
        """
        conn = self._acquire()
        failure: Optional[BaseException] = None
        broken = False
        try:
            yield conn
            if conn.status == extensions.STATUS_IN_TRANSACTION:
                conn.commit()
        except Exception as e:
            failure = e
            broken = self._is_broken_after(conn, e)
            raise
        finally:
            self._release(conn, discard=broken)
            if broken:
                self._emit("error", failure)

    def execute(self, sql: str, params: Params = None) -> Tuple[List[Dict[str, Any]], int]:
        """
        Run one statement on a pooled connection.

        Args:
            sql: Parameterized SQL (psycopg2 %s / %(name)s placeholders)
            params: Positional sequence or mapping of parameters

        Returns:
            (rows, row_count). Rows are dicts keyed by column name; statements
            without a result set return an empty list.
        """
        with self.connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(sql, params)
                if cursor.description is None:
                    rows = []
                else:
                    names = [column[0] for column in cursor.description]
                    rows = [dict(zip(names, row)) for row in cursor.fetchall()]
                return rows, cursor.rowcount

    def stats(self) -> PoolStats:
        """
        Current occupancy.

        idle counts connections opened at startup and never used plus those
        returned to the pool and still open.
        """
        with self._lock:
            if self._closed:
                return PoolStats(total=0, idle=0, waiting=self._waiting)
            idle = self._prewarmed + len(self._returned_at)
            return PoolStats(total=idle + self._in_use, idle=idle, waiting=self._waiting)

    def close(self) -> None:
        """Close every pooled connection. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            for listeners in self._listeners.values():
                listeners.clear()
            self._returned_at.clear()
            self._seen.clear()
            self._prewarmed = 0
            self._in_use = 0
        self._pool.closeall()
        logger.info("Database connection pool closed")

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def add_listener(self, event: str, callback: Listener) -> None:
        """
        Register `callback` for "connect" or "error".

        Registering the same callback twice has no effect.
        """
        if event not in EVENTS:
            raise ValueError(f"Unknown pool event {event!r}, expected one of {EVENTS}")
        with self._lock:
            if callback not in self._listeners[event]:
                self._listeners[event].append(callback)

    def remove_listener(self, event: str, callback: Listener) -> None:
        if event not in EVENTS:
            raise ValueError(f"Unknown pool event {event!r}, expected one of {EVENTS}")
        with self._lock:
            if callback in self._listeners[event]:
                self._listeners[event].remove(callback)

    def listener_count(self, event: str) -> int:
        with self._lock:
            return len(self._listeners.get(event, []))

    def _emit(self, event: str, payload: Any) -> None:
        with self._lock:
            callbacks = list(self._listeners[event])
        for callback in callbacks:
            try:
                callback(payload)
            except Exception:
                logger.exception("Pool %s listener failed", event)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _acquire(self) -> extensions.connection:
        if self._closed:
            raise pool.PoolError("connection pool is closed")

        timeout_s = self.config.connect_timeout_ms / 1000
        with self._lock:
            self._waiting += 1
        try:
            acquired = self._slots.acquire(timeout=timeout_s)
        finally:
            with self._lock:
                self._waiting -= 1

        if not acquired:
            raise pool.PoolError(
                f"timed out after {self.config.connect_timeout_ms}ms waiting for a free connection"
            )

        try:
            return self._checkout()
        except BaseException:
            self._slots.release()
            raise

    def _checkout(self) -> extensions.connection:
        while True:
            conn = self._pool.getconn()
            key = id(conn)
            with self._lock:
                returned_at = self._returned_at.pop(key, None)
                is_new = key not in self._seen
                self._seen.add(key)
                if is_new and self._prewarmed > 0:
                    self._prewarmed -= 1

            if conn.closed:
                logger.debug("Discarding connection closed while idle")
                self._discard(conn)
                continue

            idle_ms = (self._clock() - returned_at) * 1000 if returned_at is not None else 0
            if self.config.idle_timeout_ms > 0 and idle_ms > self.config.idle_timeout_ms:
                logger.debug("Closing idle connection", extra=fields(idle_ms=round(idle_ms)))
                self._discard(conn)
                continue

            with self._lock:
                self._in_use += 1
            if is_new:
                self._emit("connect", conn)
            return conn

    def _release(self, conn: extensions.connection, discard: bool) -> None:
        with self._lock:
            self._in_use = max(0, self._in_use - 1)
        try:
            if self._closed:
                # closeall() already ran; just make sure this one goes too
                if not conn.closed:
                    conn.close()
            elif discard:
                self._discard(conn)
            else:
                with self._lock:
                    self._pool.putconn(conn)
                    # The driver closes connections beyond minconn instead of keeping them
                    if conn.closed:
                        self._seen.discard(id(conn))
                    else:
                        self._returned_at[id(conn)] = self._clock()
        finally:
            self._slots.release()

    def _discard(self, conn: extensions.connection) -> None:
        with self._lock:
            self._seen.discard(id(conn))
            self._returned_at.pop(id(conn), None)
        self._pool.putconn(conn, close=True)

    @staticmethod
    def _is_broken_after(conn: extensions.connection, error: BaseException) -> bool:
        if conn.closed:
            return True
        try:
            conn.rollback()
        except psycopg2.Error as rollback_error:
            logger.warning(
                "Rollback failed, discarding connection",
                extra=fields(error=error, rollback_error=rollback_error),
            )
            return True
        return False
