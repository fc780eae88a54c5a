# src/config/settings.py
# Centralized configuration for the whole service
# Every setting is read from an environment variable with a sensible default,
# so local development works without any setup and production overrides
# only what it needs.
#
# The database component never reads the environment itself: main.py turns
# settings.db into an immutable ConnectionConfig and hands that over.

import os
from dataclasses import dataclass, field


def _env_int(name: str, default: str) -> int:
    return int(os.getenv(name, default))


def _env_float(name: str, default: str) -> float:
    return float(os.getenv(name, default))


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class DatabaseConfig:
    """
    Database configuration settings.

    Holds connection details, pool sizing and the retry/health policy for
    the resilient connection manager. Values are read from the environment
    when the instance is created, not when the module is imported.
    """
    # Where the PostgreSQL server lives and which database to use
    host: str = field(default_factory=lambda: os.getenv("DB_HOST", "localhost"))
    port: int = field(default_factory=lambda: _env_int("DB_PORT", "5432"))
    name: str = field(default_factory=lambda: os.getenv("DB_NAME", "reputation_management"))

    # Credentials
    # In production these should come from a secrets manager
    user: str = field(default_factory=lambda: os.getenv("DB_USER", "postgres"))
    password: str = field(default_factory=lambda: os.getenv("DB_PASSWORD", ""))

    # Pool sizing
    min_connections: int = field(default_factory=lambda: _env_int("DB_POOL_MIN", "1"))
    max_connections: int = field(default_factory=lambda: _env_int("DB_MAX_CONNECTIONS", "20"))

    # Connections idle longer than this are closed instead of reused (ms)
    idle_timeout_ms: int = field(default_factory=lambda: _env_int("DB_IDLE_TIMEOUT_MS", "30000"))

    # How long to wait for a new connection or a free pool slot (ms)
    connection_timeout_ms: int = field(
        default_factory=lambda: _env_int("DB_CONNECTION_TIMEOUT_MS", "10000")
    )

    # Retry policy for connect(): attempts, base delay, cap and jitter
    max_retries: int = field(default_factory=lambda: _env_int("DB_MAX_RETRIES", "10"))
    retry_delay_ms: int = field(default_factory=lambda: _env_int("DB_RETRY_DELAY_MS", "2000"))
    retry_cap_ms: int = field(default_factory=lambda: _env_int("DB_RETRY_CAP_MS", "30000"))
    retry_jitter: float = field(default_factory=lambda: _env_float("DB_RETRY_JITTER", "0.1"))

    # Background health probe interval (seconds)
    health_check_interval: float = field(
        default_factory=lambda: _env_float("DB_HEALTH_CHECK_INTERVAL", "30")
    )

    # Queries slower than this are flagged in logs and metrics (ms)
    slow_query_ms: int = field(default_factory=lambda: _env_int("DB_SLOW_QUERY_MS", "1000"))


@dataclass
class AppConfig:
    """
    Application-level configuration.

    Settings that affect how the process behaves, not the database itself.
    """
    # development, staging or production
    environment: str = field(default_factory=lambda: os.getenv("ENVIRONMENT", "development"))

    # DEBUG, INFO, WARNING, ERROR or CRITICAL
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())

    # Where the health/metrics HTTP surface listens
    api_host: str = field(default_factory=lambda: os.getenv("API_HOST", "0.0.0.0"))
    api_port: int = field(default_factory=lambda: _env_int("API_PORT", "5000"))

    # Never enable in production
    debug: bool = field(default_factory=lambda: _env_bool("DEBUG", "false"))


@dataclass
class Settings:
    """
    Main settings object.

    Modules import the shared instance and read values like:
    - settings.db.host
    - settings.db.max_retries
    - settings.app.log_level
    """
    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    app: AppConfig = field(default_factory=AppConfig)

    def validate(self):
        """
        Validate configuration values.

        Raises:
            ValueError: If a required value is missing or out of range
        """
        if not self.db.host:
            raise ValueError("DB_HOST is required")
        if not (1 <= self.db.port <= 65535):
            raise ValueError(f"DB_PORT must be between 1 and 65535, got {self.db.port}")
        if not self.db.name:
            raise ValueError("DB_NAME is required")
        if not self.db.user:
            raise ValueError("DB_USER is required")

        if self.db.min_connections < 0:
            raise ValueError(f"DB_POOL_MIN must be >= 0, got {self.db.min_connections}")
        if self.db.max_connections < max(1, self.db.min_connections):
            raise ValueError(
                f"DB_MAX_CONNECTIONS must be >= max(1, DB_POOL_MIN), got {self.db.max_connections}"
            )
        if self.db.max_retries < 1:
            raise ValueError(f"DB_MAX_RETRIES must be >= 1, got {self.db.max_retries}")
        if self.db.retry_delay_ms < 0 or self.db.retry_cap_ms < 0:
            raise ValueError("DB_RETRY_DELAY_MS and DB_RETRY_CAP_MS must be >= 0")
        if not (0 <= self.db.retry_jitter <= 1):
            raise ValueError(f"DB_RETRY_JITTER must be between 0 and 1, got {self.db.retry_jitter}")
        if self.db.health_check_interval <= 0:
            raise ValueError(
                f"DB_HEALTH_CHECK_INTERVAL must be > 0, got {self.db.health_check_interval}"
            )

        if self.app.environment not in ["development", "staging", "production"]:
            raise ValueError(
                f"ENVIRONMENT must be development, staging, or production, got {self.app.environment}"
            )
        if self.app.log_level not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            raise ValueError(
                f"LOG_LEVEL must be DEBUG, INFO, WARNING, ERROR, or CRITICAL, got {self.app.log_level}"
            )
        if not (1 <= self.app.api_port <= 65535):
            raise ValueError(f"API_PORT must be between 1 and 65535, got {self.app.api_port}")


# One settings object for the whole process
settings = Settings()

# Fail at import time so misconfiguration shows up before anything starts
try:
    settings.validate()
except ValueError as e:
    raise RuntimeError(f"Invalid configuration: {e}") from e
