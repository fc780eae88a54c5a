"""
Shared fakes for the database layer tests.

FakePoolFactory stands in for ConnectionPool: each call builds a FakePool
whose verification probes either succeed or raise the scripted error, so the
manager's retry, heal and health logic can be exercised without PostgreSQL,
real sleeps or background heal threads.
"""

import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional

import pytest

from db import ConnectionConfig, PoolStats, ResilientConnectionManager


class FakeDriverError(Exception):
    """Driver error carrying a SQLSTATE, like psycopg2 errors raised by the server."""

    def __init__(self, message: str, pgcode: Optional[str] = None):
        super().__init__(message)
        self.pgcode = pgcode


class FakeCursor:
    def __init__(self, owner: "FakePool"):
        self.owner = owner
        self._last: Optional[str] = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        self.owner.probe_queries.append(sql)
        if self.owner.probe_error is not None:
            raise self.owner.probe_error
        self._last = sql

    def fetchone(self):
        if self._last and "version()" in self._last:
            return ("PostgreSQL 16.2 on x86_64-pc-linux-gnu",)
        return (1,)


class FakeConnection:
    def __init__(self, owner: "FakePool"):
        self.owner = owner

    def cursor(self):
        return FakeCursor(self.owner)


class FakePool:
    """Implements the slice of ConnectionPool the manager uses."""

    def __init__(self, config: ConnectionConfig, probe_error: Optional[BaseException] = None):
        self.config = config
        self.probe_error = probe_error
        self.probe_queries: List[str] = []
        self.executed: List[tuple] = []
        self.rows: List[Dict[str, Any]] = [{"health_check": 1}]
        self.row_count = 1
        self.execute_error: Optional[BaseException] = None
        # Fire the "error" event before raising, like a connection found broken
        self.broken_on_error = False
        self.close_calls = 0
        self.listeners: Dict[str, List[Callable]] = {"connect": [], "error": []}

    @contextmanager
    def connection(self):
        yield FakeConnection(self)

    def execute(self, sql, params=None):
        self.executed.append((sql, params))
        if self.execute_error is not None:
            if self.broken_on_error:
                self.emit("error", self.execute_error)
            raise self.execute_error
        return self.rows, self.row_count

    def stats(self) -> PoolStats:
        return PoolStats(total=3, idle=2, waiting=0)

    def add_listener(self, event, callback):
        if callback not in self.listeners[event]:
            self.listeners[event].append(callback)

    def remove_listener(self, event, callback):
        if callback in self.listeners[event]:
            self.listeners[event].remove(callback)

    def listener_count(self, event) -> int:
        return len(self.listeners[event])

    def emit(self, event, payload):
        for callback in list(self.listeners[event]):
            callback(payload)

    def close(self):
        self.close_calls += 1


class FakePoolFactory:
    """
    Builds one FakePool per connect attempt.

    `outcomes` lists the probe error for each attempt in order (None means
    the probes succeed); the last entry repeats once the list runs out.
    """

    def __init__(self, outcomes: Optional[List[Optional[BaseException]]] = None):
        self.outcomes = list(outcomes or [None])
        self.pools: List[FakePool] = []
        self.entered = threading.Event()
        self.gate: Optional[threading.Event] = None

    def __call__(self, config: ConnectionConfig) -> FakePool:
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(5)
        index = min(len(self.pools), len(self.outcomes) - 1)
        pool = FakePool(config, probe_error=self.outcomes[index])
        self.pools.append(pool)
        return pool


def make_config(**overrides) -> ConnectionConfig:
    values = dict(
        host="db.internal",
        port=5432,
        database="reputation_management",
        user="shield",
        password="secret",
        max_retries=3,
        retry_delay_ms=100,
        retry_cap_ms=30000,
        jitter_fraction=0.1,
        health_check_interval_s=30,
        slow_query_threshold_ms=1000,
    )
    values.update(overrides)
    return ConnectionConfig(**values)


class ManagerHarness:
    """A manager wired to fakes, plus the recordings tests assert on."""

    def __init__(self, outcomes=None, clock=None, on_exhausted=None, **config_overrides):
        self.factory = FakePoolFactory(outcomes)
        self.sleeps: List[float] = []
        self.spawned: List[Callable[[], None]] = []
        kwargs = dict(
            pool_factory=self.factory,
            sleep=self.sleeps.append,
            rand=lambda: 0.5,
            spawn=self.spawned.append,
        )
        if clock is not None:
            kwargs["clock"] = clock
        if on_exhausted is not None:
            kwargs["on_exhausted"] = on_exhausted
        self.manager = ResilientConnectionManager(make_config(**config_overrides), **kwargs)

    @property
    def pool(self) -> FakePool:
        return self.factory.pools[-1]

    def run_spawned(self):
        while self.spawned:
            self.spawned.pop(0)()


@pytest.fixture
def harness_factory():
    """Build ManagerHarness instances and close their managers afterwards."""
    created: List[ManagerHarness] = []

    def build(outcomes=None, **kwargs) -> ManagerHarness:
        harness = ManagerHarness(outcomes, **kwargs)
        created.append(harness)
        return harness

    yield build

    for harness in created:
        harness.manager.close()
