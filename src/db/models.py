# src/db/models.py
# Plain data types shared by the pool, the connection manager and its callers

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from resilience.backoff import BackoffPolicy


class ConnectionState(Enum):
    """
    Lifecycle of the resilient connection manager.

    DISCONNECTED -> CONNECTING -> CONNECTED
    CONNECTED -> HEALING -> CONNECTING      (failure detected)
    CONNECTING -> DISCONNECTED              (retries exhausted)
    """
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    HEALING = "healing"


# Numeric codes for the db_connection_state gauge
STATE_CODES = {
    ConnectionState.DISCONNECTED: 0,
    ConnectionState.CONNECTING: 1,
    ConnectionState.CONNECTED: 2,
    ConnectionState.HEALING: 3,
}


@dataclass(frozen=True)
class ConnectionConfig:
    """
    Everything the connection manager needs to reach the database.

    Immutable once built. Durations ending in _ms are milliseconds.
    """
    host: str
    port: int
    database: str
    user: str
    password: str = field(default="", repr=False)
    min_connections: int = 1
    max_connections: int = 20
    idle_timeout_ms: int = 30000
    connect_timeout_ms: int = 10000
    max_retries: int = 10
    retry_delay_ms: int = 2000
    retry_cap_ms: int = 30000
    jitter_fraction: float = 0.1
    health_check_interval_s: float = 30
    slow_query_threshold_ms: float = 1000

    def __post_init__(self):
        if not self.host:
            raise ValueError("host is required")
        if not (1 <= self.port <= 65535):
            raise ValueError(f"port must be between 1 and 65535, got {self.port}")
        if not self.database:
            raise ValueError("database is required")
        if self.min_connections < 0:
            raise ValueError(f"min_connections must be >= 0, got {self.min_connections}")
        if self.max_connections < max(1, self.min_connections):
            raise ValueError(
                f"max_connections must be >= max(1, min_connections), got {self.max_connections}"
            )
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {self.max_retries}")
        if self.health_check_interval_s <= 0:
            raise ValueError(
                f"health_check_interval_s must be > 0, got {self.health_check_interval_s}"
            )

    @classmethod
    def from_settings(cls, db) -> "ConnectionConfig":
        """
        Build a ConnectionConfig from config.DatabaseConfig (settings.db).
        """
        return cls(
            host=db.host,
            port=db.port,
            database=db.name,
            user=db.user,
            password=db.password,
            min_connections=db.min_connections,
            max_connections=db.max_connections,
            idle_timeout_ms=db.idle_timeout_ms,
            connect_timeout_ms=db.connection_timeout_ms,
            max_retries=db.max_retries,
            retry_delay_ms=db.retry_delay_ms,
            retry_cap_ms=db.retry_cap_ms,
            jitter_fraction=db.retry_jitter,
            health_check_interval_s=db.health_check_interval,
            slow_query_threshold_ms=db.slow_query_ms,
        )

    @property
    def connect_timeout_s(self) -> int:
        # libpq only accepts whole seconds, and 0 would mean "wait forever"
        return max(1, math.ceil(self.connect_timeout_ms / 1000))

    def backoff_policy(self) -> BackoffPolicy:
        return BackoffPolicy(
            base_delay_ms=self.retry_delay_ms,
            jitter_fraction=self.jitter_fraction,
            cap_delay_ms=self.retry_cap_ms,
        )


@dataclass(frozen=True)
class PoolStats:
    """Pool occupancy counters."""
    total: int = 0
    idle: int = 0
    waiting: int = 0


@dataclass
class QueryOutcome:
    """
    Result of a successful query.

    Attributes:
        rows: Result rows as dicts keyed by column name (empty for DML/DDL)
        row_count: Rows returned or affected, as reported by the driver
        duration_ms: Wall-clock execution time
        slow: True when duration_ms exceeded the slow-query threshold
        query_id: ID used in the query's log lines
    """
    rows: List[Dict[str, Any]]
    row_count: int
    duration_ms: float
    slow: bool = False
    query_id: Optional[str] = None


HEALTHY = "HEALTHY"
UNHEALTHY = "UNHEALTHY"


@dataclass
class HealthReport:
    """
    Outcome of one health probe.

    Healthy reports carry pool counters, unhealthy ones carry the error.
    """
    status: str
    timestamp: str
    response_time_ms: float
    total: Optional[int] = None
    idle: Optional[int] = None
    waiting: Optional[int] = None
    error: Optional[str] = None

    @property
    def healthy(self) -> bool:
        return self.status == HEALTHY

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "status": self.status,
            "timestamp": self.timestamp,
            "response_time_ms": round(self.response_time_ms, 2),
        }
        if self.healthy:
            data.update(connections=self.total, idle=self.idle, waiting=self.waiting)
        else:
            data["error"] = self.error
        return data
