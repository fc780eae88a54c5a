# src/metrics/__init__.py
# Re-exports every Prometheus metric so callers can do
# "from metrics import DB_QUERIES_TOTAL"

from .metrics import (
    DB_CONNECT_ATTEMPTS_TOTAL,
    DB_CONNECT_FAILURES_TOTAL,
    DB_CONNECT_EXHAUSTED_TOTAL,
    DB_HEALING_TOTAL,
    DB_CONNECTION_STATE,
    DB_QUERIES_TOTAL,
    DB_SLOW_QUERIES_TOTAL,
    DB_CONNECTION_ERRORS_TOTAL,
    DB_QUERY_LATENCY_SECONDS,
    DB_HEALTH_CHECKS_TOTAL,
    DB_POOL_TOTAL,
    DB_POOL_IDLE,
    DB_POOL_WAITING,
)

__all__ = [
    "DB_CONNECT_ATTEMPTS_TOTAL",
    "DB_CONNECT_FAILURES_TOTAL",
    "DB_CONNECT_EXHAUSTED_TOTAL",
    "DB_HEALING_TOTAL",
    "DB_CONNECTION_STATE",
    "DB_QUERIES_TOTAL",
    "DB_SLOW_QUERIES_TOTAL",
    "DB_CONNECTION_ERRORS_TOTAL",
    "DB_QUERY_LATENCY_SECONDS",
    "DB_HEALTH_CHECKS_TOTAL",
    "DB_POOL_TOTAL",
    "DB_POOL_IDLE",
    "DB_POOL_WAITING",
]
