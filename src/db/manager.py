# src/db/manager.py
# Resilient database connection manager
#
# WHAT IT DOES
# ============
# Owns the process's connection pool and keeps it usable:
# - connect(): open the pool and verify it with three probe queries,
#   retrying with exponential backoff and jitter up to max_retries times
# - query(): run SQL through the pool; connection-level failures put the
#   manager into HEALING and reconnect in the background while the failing
#   call still raises
# - health_check(): periodic SELECT 1 reported as data, never raised
# - close(): stop the health thread and release the pool (idempotent)
#
# STATE MACHINE
# =============
#   DISCONNECTED -> CONNECTING -> CONNECTED
#   CONNECTED -> HEALING -> CONNECTING       (query or pool error)
#   CONNECTING -> DISCONNECTED               (retries exhausted)
#
# Three things drive transitions concurrently: whoever calls connect(),
# query() callers whose failures trigger healing, and the health-check
# thread. All of them go through self._state_lock, and a connect() that
# finds the state already CONNECTING does nothing.
#
# The manager never exits the process. When retries run out it records an
# ExhaustedRetriesError and returns False. A background heal that runs out
# hands the error to the on_exhausted callback; main.py uses that to halt.
#
# close() is final for background work: a heal scheduled before close()
# finds the stop event set and does nothing. Only an explicit connect()
# from the owner reopens the manager.

import logging
import random
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from db.errors import (
    ErrorClassifier,
    ExhaustedRetriesError,
    NotConnectedError,
    classify_error,
    is_connection_error,
)
from db.models import (
    HEALTHY,
    STATE_CODES,
    UNHEALTHY,
    ConnectionConfig,
    ConnectionState,
    HealthReport,
    PoolStats,
    QueryOutcome,
)
from db.pool import ConnectionPool, Params
from logger import fields, get_logger
from metrics import (
    DB_CONNECT_ATTEMPTS_TOTAL,
    DB_CONNECT_EXHAUSTED_TOTAL,
    DB_CONNECT_FAILURES_TOTAL,
    DB_CONNECTION_ERRORS_TOTAL,
    DB_CONNECTION_STATE,
    DB_HEALING_TOTAL,
    DB_HEALTH_CHECKS_TOTAL,
    DB_POOL_IDLE,
    DB_POOL_TOTAL,
    DB_POOL_WAITING,
    DB_QUERIES_TOTAL,
    DB_QUERY_LATENCY_SECONDS,
    DB_SLOW_QUERIES_TOTAL,
)
from tracking.correlation import correlation_context, generate_correlation_id

logger = get_logger(__name__)

# Verification sequence run on a fresh pool: plain round trip, server clock,
# server version. A TCP connection that cannot answer all three is not usable.
PROBE_QUERIES = (
    "SELECT 1 AS connectivity_test",
    "SELECT NOW() AS time_sync_check",
    "SELECT version() AS db_version",
)

HEALTH_QUERY = "SELECT 1 AS health_check"

# How much SQL / parameter text goes into a log line
SQL_PREVIEW_CHARS = 100
PARAM_PREVIEW_CHARS = 50

# Upper bound for joining the health thread on close()
HEALTH_THREAD_JOIN_TIMEOUT_S = 5.0


def _preview_sql(sql: str) -> str:
    sql = " ".join(sql.split())
    if len(sql) > SQL_PREVIEW_CHARS:
        return sql[:SQL_PREVIEW_CHARS] + "..."
    return sql


def _preview_params(params: Params) -> Any:
    def short(value):
        return value[:PARAM_PREVIEW_CHARS] if isinstance(value, str) else value

    if params is None:
        return []
    if isinstance(params, dict):
        return {key: short(value) for key, value in params.items()}
    return [short(value) for value in params]


def _param_count(params: Params) -> int:
    return 0 if params is None else len(params)


def _spawn_daemon(target: Callable[[], None]) -> None:
    threading.Thread(target=target, name="db-heal", daemon=True).start()


class ResilientConnectionManager:
    """
    Single owner of the database pool for one process.

    Create it once at startup, pass it to whatever needs the database, and
    call close() on shutdown.

    Example:
        manager = ResilientConnectionManager(ConnectionConfig.from_settings(settings.db))
        if not manager.connect():
            sys.exit(1)
        outcome = manager.query("SELECT id, name FROM businesses WHERE owner_id = %s", [user_id])
        for row in outcome.rows:
            ...
        manager.close()

    Everything that touches the outside world can be injected, which is how
    the tests run without a database, a real clock or real threads.
    """

    def __init__(
        self,
        config: ConnectionConfig,
        *,
        pool_factory: Callable[[ConnectionConfig], ConnectionPool] = ConnectionPool,
        is_connection_error: ErrorClassifier = is_connection_error,
        sleep: Optional[Callable[[float], Any]] = None,
        rand: Callable[[], float] = random.random,
        clock: Callable[[], float] = time.monotonic,
        spawn: Callable[[Callable[[], None]], None] = _spawn_daemon,
        on_exhausted: Optional[Callable[[ExhaustedRetriesError], Any]] = None,
        log: Optional[logging.Logger] = None,
    ):
        """
        Args:
            config: Connection and retry settings
            pool_factory: Builds a pool from the config (default ConnectionPool)
            is_connection_error: Decides which failures are connection class
            sleep: Backoff sleep in seconds. Defaults to a wait that close() interrupts.
            rand: Uniform [0, 1) source for backoff jitter
            clock: Monotonic clock in seconds for durations
            spawn: Runs the healing procedure in the background
            on_exhausted: Called with the ExhaustedRetriesError when a background
                heal gives up
            log: Logger for structured events (default: this module's)
        """
        self.config = config
        self.backoff = config.backoff_policy()
        self._pool_factory = pool_factory
        self._is_connection_error = is_connection_error
        self._rand = rand
        self._clock = clock
        self._spawn = spawn
        self._on_exhausted = on_exhausted
        self._log = log or logger

        self._state = ConnectionState.DISCONNECTED
        self._state_lock = threading.Lock()
        self._pool: Optional[ConnectionPool] = None
        self._health_thread: Optional[threading.Thread] = None
        # Stops only the current health loop
        self._health_stop: Optional[threading.Event] = None
        # Set by close(); interrupts backoff sleeps and stops the health loop
        self._stop = threading.Event()
        self._sleep = sleep or self._stop.wait

        # Failed attempts in the current connect sequence, 0 once connected
        self.connection_attempts = 0
        # ExhaustedRetriesError from the last connect sequence that gave up
        self.last_error: Optional[ExhaustedRetriesError] = None

        DB_CONNECTION_STATE.set(STATE_CODES[self._state])

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def health_check_armed(self) -> bool:
        thread = self._health_thread
        return thread is not None and thread.is_alive()

    def _set_state(self, state: ConnectionState) -> None:
        # Caller holds self._state_lock
        if state is not self._state:
            self._log.debug(
                "Connection state changed",
                extra=fields(previous=self._state.value, current=state.value),
            )
        self._state = state
        DB_CONNECTION_STATE.set(STATE_CODES[state])

    # ------------------------------------------------------------------
    # Connect
    # ------------------------------------------------------------------

    def connect(self) -> bool:
        """
        Establish (or re-establish) a verified connection pool.

        Returns:
            True once CONNECTED. False when every attempt failed (the
            ExhaustedRetriesError is kept in self.last_error), when close()
            interrupted the sequence, or when another connect() is already
            in progress.
        """
        return self._connect(healing=False)

    def _connect(self, healing: bool) -> bool:
        with self._state_lock:
            if healing:
                # close() may have run after the heal was scheduled
                if self._stop.is_set() or self._state is not ConnectionState.HEALING:
                    self._log.info(
                        "Healing cancelled",
                        extra=fields(state=self._state.value, closed=self._stop.is_set()),
                    )
                    return False
            else:
                if self._state is ConnectionState.CONNECTED:
                    return True
                if self._state is ConnectionState.CONNECTING:
                    self._log.info("Database connect already in progress, skipping")
                    return False
                self._stop.clear()
            self._set_state(ConnectionState.CONNECTING)
            stale_pool, self._pool = self._pool, None
            self.connection_attempts = 0
            self.last_error = None

        if stale_pool is not None:
            self._dispose_pool(stale_pool)

        max_retries = self.config.max_retries
        self._log.info(
            "Initializing database connection",
            extra=fields(host=self.config.host, database=self.config.database, max_retries=max_retries),
        )

        last_failure: Optional[BaseException] = None
        for attempt in range(1, max_retries + 1):
            if self._stop.is_set():
                return self._abort_connect()

            self._log.info(
                f"Database connection attempt {attempt}/{max_retries}",
                extra=fields(host=self.config.host, database=self.config.database),
            )
            DB_CONNECT_ATTEMPTS_TOTAL.inc()

            try:
                new_pool = self._open_verified_pool()
            except Exception as e:
                last_failure = e
                self.connection_attempts += 1
                DB_CONNECT_FAILURES_TOTAL.inc()
                # The last couple of attempts are worth more than a warning
                level = logging.ERROR if attempt >= max_retries - 2 else logging.WARNING
                self._log.log(
                    level,
                    f"Database connection failed (attempt {attempt}/{max_retries})",
                    extra=fields(
                        error=str(e).strip() or e.__class__.__name__,
                        connection_class=self._is_connection_error(e),
                    ),
                )
                if attempt == max_retries:
                    break

                delay_ms = self.backoff.delay_ms(attempt, self._rand)
                self._log.warning(f"Retrying in {round(delay_ms)}ms", extra=fields(attempt=attempt))
                self._sleep(delay_ms / 1000)
                continue

            with self._state_lock:
                if self._stop.is_set():
                    aborted_pool = new_pool
                else:
                    aborted_pool = None
                    self._pool = new_pool
                    self.connection_attempts = 0
                    self.last_error = None
                    self._set_state(ConnectionState.CONNECTED)
            if aborted_pool is not None:
                self._dispose_pool(aborted_pool)
                return self._abort_connect()

            self._watch_pool(new_pool)
            self._arm_health_check()
            self._log.info(
                "Database connection established",
                extra=fields(
                    host=self.config.host,
                    database=self.config.database,
                    port=self.config.port,
                    attempts=attempt,
                ),
            )
            return True

        error = ExhaustedRetriesError(
            f"All {max_retries} database connection attempts failed: {last_failure}",
            attempts=max_retries,
        )
        with self._state_lock:
            self._set_state(ConnectionState.DISCONNECTED)
            self.last_error = error
        self._disarm_health_check()
        DB_CONNECT_EXHAUSTED_TOTAL.inc()
        self._log.critical(
            "All database connection attempts failed",
            extra=fields(attempts=max_retries, host=self.config.host, error=last_failure),
        )
        return False

    def ensure_connected(self) -> None:
        """
        connect(), raising instead of returning False.

        Raises:
            ExhaustedRetriesError: If no verified connection could be established
        """
        if self.connect():
            return
        raise self.last_error or ExhaustedRetriesError(
            "Database connection could not be established",
            attempts=self.connection_attempts,
        )

    def _abort_connect(self) -> bool:
        with self._state_lock:
            self._set_state(ConnectionState.DISCONNECTED)
        self._log.warning("Database connect sequence interrupted by shutdown")
        return False

    def _open_verified_pool(self) -> ConnectionPool:
        new_pool = self._pool_factory(self.config)
        try:
            with new_pool.connection() as conn:
                version = self._verify(conn)
        except Exception:
            self._dispose_pool(new_pool)
            raise
        self._log.info("Database connection verified", extra=fields(version=version))
        return new_pool

    @staticmethod
    def _verify(conn) -> Any:
        row = None
        with conn.cursor() as cursor:
            for probe in PROBE_QUERIES:
                cursor.execute(probe)
                row = cursor.fetchone()
        return row[0] if row else "unknown"

    # ------------------------------------------------------------------
    # Self-heal
    # ------------------------------------------------------------------

    def _watch_pool(self, db_pool: ConnectionPool) -> None:
        # add_listener ignores duplicates, so re-registering after a heal is safe
        db_pool.add_listener("error", self._on_pool_error)
        db_pool.add_listener("connect", self._on_pool_connect)

    def _unwatch_pool(self, db_pool: ConnectionPool) -> None:
        db_pool.remove_listener("error", self._on_pool_error)
        db_pool.remove_listener("connect", self._on_pool_connect)

    def _on_pool_error(self, error: BaseException) -> None:
        self._log.error("Database pool error", extra=fields(error=error))
        self._begin_healing("pool_error", error)

    def _on_pool_connect(self, _conn) -> None:
        self._log.info("New database connection established")

    def _begin_healing(self, trigger: str, error: BaseException) -> bool:
        """
        Move CONNECTED -> HEALING and reconnect in the background.

        Only the first failure observed while CONNECTED starts a heal; later
        ones find the state already HEALING and return False.
        """
        with self._state_lock:
            if self._state is not ConnectionState.CONNECTED:
                return False
            self._set_state(ConnectionState.HEALING)

        DB_HEALING_TOTAL.labels(trigger=trigger).inc()
        self._log.warning(
            "Initiating database connection healing procedure",
            extra=fields(trigger=trigger, error=error),
        )
        self._spawn(self._heal)
        return True

    def _heal(self) -> None:
        with correlation_context(prefix="heal"):
            if self._connect(healing=True):
                self._log.info("Database connection healed")
                return

            error = self.last_error
            if error is None or self._stop.is_set():
                return
            self._log.critical(
                "Database healing failed, connection lost",
                extra=fields(attempts=error.attempts),
            )
            if self._on_exhausted is not None:
                self._on_exhausted(error)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def query(self, sql: str, params: Params = None) -> QueryOutcome:
        """
        Execute one statement through the pool.

        Args:
            sql: Parameterized SQL
            params: Sequence or mapping of parameters

        Returns:
            QueryOutcome with rows, row count and duration

        Raises:
            NotConnectedError: Immediately, if the manager is not CONNECTED
            ConnectionClassError: Connection-level failure; healing has been
                started in the background
            StatementError: Any other database failure
        """
        with self._state_lock:
            state = self._state
            db_pool = self._pool
        if state is not ConnectionState.CONNECTED or db_pool is None:
            DB_QUERIES_TOTAL.labels(outcome="not_connected").inc()
            raise NotConnectedError(f"Database not connected (state={state.value})")

        query_id = generate_correlation_id("qry")
        self._log.debug(
            "Executing database query",
            extra=fields(query_id=query_id, query=_preview_sql(sql), param_count=_param_count(params)),
        )

        started = self._clock()
        try:
            rows, row_count = db_pool.execute(sql, params)
        except Exception as e:
            duration_ms = (self._clock() - started) * 1000
            error = classify_error(e, self._is_connection_error)
            connection_class = self._is_connection_error(e)
            outcome = "connection_error" if connection_class else "statement_error"
            DB_QUERIES_TOTAL.labels(outcome=outcome).inc()
            self._log.error(
                "Query execution failed",
                extra=fields(
                    query_id=query_id,
                    query=_preview_sql(sql),
                    params=_preview_params(params),
                    duration_ms=round(duration_ms, 2),
                    pgcode=error.pgcode,
                    error=error,
                ),
            )
            if connection_class:
                DB_CONNECTION_ERRORS_TOTAL.inc()
                # A broken connection may already have started a heal via the pool "error" event
                if self._begin_healing("query_error", e):
                    self._log.warning("Connection-related error detected, attempting auto-recovery")
            raise error from e

        duration_ms = (self._clock() - started) * 1000
        slow = duration_ms > self.config.slow_query_threshold_ms
        DB_QUERIES_TOTAL.labels(outcome="success").inc()
        DB_QUERY_LATENCY_SECONDS.observe(duration_ms / 1000)
        if slow:
            DB_SLOW_QUERIES_TOTAL.inc()

        self._log.log(
            logging.WARNING if slow else logging.DEBUG,
            "Slow query" if slow else "Query executed",
            extra=fields(
                query_id=query_id,
                duration_ms=round(duration_ms, 2),
                row_count=row_count,
                performance="SLOW" if slow else "OPTIMAL",
            ),
        )
        return QueryOutcome(
            rows=rows,
            row_count=row_count,
            duration_ms=duration_ms,
            slow=slow,
            query_id=query_id,
        )

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def pool_stats(self) -> PoolStats:
        with self._state_lock:
            db_pool = self._pool
        if db_pool is None:
            return PoolStats()
        return db_pool.stats()

    def health_check(self) -> HealthReport:
        """
        Probe the database through query() and report the result.

        Goes through the normal query path, so a connection-class failure
        here also starts healing. Never raises.
        """
        timestamp = datetime.now(timezone.utc).isoformat()
        started = self._clock()
        try:
            self.query(HEALTH_QUERY)
            stats = self.pool_stats()
            report = HealthReport(
                status=HEALTHY,
                timestamp=timestamp,
                response_time_ms=(self._clock() - started) * 1000,
                total=stats.total,
                idle=stats.idle,
                waiting=stats.waiting,
            )
        except Exception as e:
            report = HealthReport(
                status=UNHEALTHY,
                timestamp=timestamp,
                response_time_ms=(self._clock() - started) * 1000,
                error=str(e) or e.__class__.__name__,
            )

        DB_HEALTH_CHECKS_TOTAL.labels(status=report.status.lower()).inc()
        DB_POOL_TOTAL.set(report.total or 0)
        DB_POOL_IDLE.set(report.idle or 0)
        DB_POOL_WAITING.set(report.waiting or 0)

        if report.healthy:
            self._log.debug("Database health check passed", extra=fields(**report.to_dict()))
        else:
            self._log.warning("Database health check failed", extra=fields(error=report.error))
        return report

    def _arm_health_check(self) -> None:
        with self._state_lock:
            if self._stop.is_set():
                return
            if self._health_thread is not None and self._health_thread.is_alive():
                return
            stop = threading.Event()
            thread = threading.Thread(
                target=self._health_loop,
                args=(stop,),
                name="db-health-check",
                daemon=True,
            )
            self._health_thread = thread
            self._health_stop = stop
        thread.start()
        self._log.debug(
            "Health check timer armed",
            extra=fields(interval_s=self.config.health_check_interval_s),
        )

    def _disarm_health_check(self) -> None:
        with self._state_lock:
            thread, self._health_thread = self._health_thread, None
            stop, self._health_stop = self._health_stop, None
        if stop is not None:
            stop.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=HEALTH_THREAD_JOIN_TIMEOUT_S)
            self._log.debug("Health check timer stopped")

    def _health_loop(self, stop: threading.Event) -> None:
        # wait() returns True once the loop is disarmed
        while not stop.wait(self.config.health_check_interval_s):
            if self._stop.is_set():
                return
            self.health_check()

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def close(self) -> None:
        """
        Stop the health thread, deregister observers and release the pool.

        Idempotent; a no-op when nothing was ever opened. A heal scheduled
        before close() will not reopen the pool.
        """
        with self._state_lock:
            self._stop.set()
            db_pool, self._pool = self._pool, None
            self._set_state(ConnectionState.DISCONNECTED)

        self._disarm_health_check()
        if db_pool is not None:
            self._dispose_pool(db_pool)
            self._log.info("Database connections closed gracefully")

    def _dispose_pool(self, db_pool: ConnectionPool) -> None:
        self._unwatch_pool(db_pool)
        try:
            db_pool.close()
        except Exception as e:
            self._log.error("Database pool close error", extra=fields(error=e))
