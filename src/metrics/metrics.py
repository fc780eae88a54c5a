# src/metrics/metrics.py
# Prometheus metrics for the database backbone
# Counters only go up, gauges go up and down, histograms record distributions.
# Prometheus scrapes them from the /metrics endpoint (see monitoring/).

from prometheus_client import Counter, Gauge, Histogram

# Connection lifecycle
DB_CONNECT_ATTEMPTS_TOTAL = Counter(
    "db_connect_attempts_total",
    "Total number of database connection attempts",
)

DB_CONNECT_FAILURES_TOTAL = Counter(
    "db_connect_failures_total",
    "Total number of failed database connection attempts",
)

DB_CONNECT_EXHAUSTED_TOTAL = Counter(
    "db_connect_exhausted_total",
    "Total number of connect sequences that ran out of retries",
)

DB_HEALING_TOTAL = Counter(
    "db_healing_total",
    "Total number of self-heal procedures started",
    ["trigger"],  # query_error, pool_error
)

# 0=disconnected, 1=connecting, 2=connected, 3=healing
DB_CONNECTION_STATE = Gauge(
    "db_connection_state",
    "Current state of the resilient connection manager",
)

# Query execution
DB_QUERIES_TOTAL = Counter(
    "db_queries_total",
    "Total number of database queries executed",
    ["outcome"],  # success, statement_error, connection_error, not_connected
)

DB_SLOW_QUERIES_TOTAL = Counter(
    "db_slow_queries_total",
    "Total number of queries slower than the slow-query threshold",
)

DB_CONNECTION_ERRORS_TOTAL = Counter(
    "db_connection_errors_total",
    "Total number of connection-class database errors",
)

DB_QUERY_LATENCY_SECONDS = Histogram(
    "db_query_latency_seconds",
    "Latency of database queries",
)

# Health checks
DB_HEALTH_CHECKS_TOTAL = Counter(
    "db_health_checks_total",
    "Total number of database health checks",
    ["status"],  # healthy, unhealthy
)

# Pool occupancy, refreshed by each health check
DB_POOL_TOTAL = Gauge(
    "db_pool_total_connections",
    "Open connections in the database pool",
)

DB_POOL_IDLE = Gauge(
    "db_pool_idle_connections",
    "Idle connections in the database pool",
)

DB_POOL_WAITING = Gauge(
    "db_pool_waiting_clients",
    "Callers waiting for a database pool slot",
)
