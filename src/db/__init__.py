# src/db/__init__.py
# Database layer: the connection pool, the resilient connection manager that
# owns it, and the types and errors they share

from .errors import (
    DatabaseError,
    NotConnectedError,
    ConnectionClassError,
    StatementError,
    ExhaustedRetriesError,
    is_connection_error,
    classify_error,
)
from .models import (
    ConnectionConfig,
    ConnectionState,
    PoolStats,
    QueryOutcome,
    HealthReport,
    HEALTHY,
    UNHEALTHY,
)
from .pool import ConnectionPool
from .manager import ResilientConnectionManager

__all__ = [
    "ResilientConnectionManager",   # Owns the pool; connect/query/health_check/close
    "ConnectionPool",               # psycopg2 pool with events and occupancy counters
    "ConnectionConfig",
    "ConnectionState",
    "PoolStats",
    "QueryOutcome",
    "HealthReport",
    "HEALTHY",
    "UNHEALTHY",
    "DatabaseError",
    "NotConnectedError",
    "ConnectionClassError",
    "StatementError",
    "ExhaustedRetriesError",
    "is_connection_error",
    "classify_error",
]
