# src/main.py
# Process entry point
# Startup sequence:
#   1. build the ConnectionConfig from settings
#   2. connect to the database (retrying); halt if that is impossible
#   3. install shutdown signal handlers
#   4. serve the health/metrics HTTP surface
# Whatever happens, the database manager is closed on the way out.
# Losing the database for good after startup (a background heal ran out of
# retries) raises SIGTERM against this process and exits with code 1.

import signal
import sys
import threading

from api import create_app
from config import settings
from db import ConnectionConfig, ExhaustedRetriesError, ResilientConnectionManager
from logger import fields, get_logger

logger = get_logger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)

EXIT_DATABASE_LOST = 1

# Set once a background heal gave up; the shutdown handler then exits non-zero
_database_lost = threading.Event()


def build_manager() -> ResilientConnectionManager:
    """Create the process-wide database manager from settings.db."""
    return ResilientConnectionManager(
        ConnectionConfig.from_settings(settings.db),
        on_exhausted=halt_on_database_loss,
    )


def halt_on_database_loss(error: ExhaustedRetriesError):
    """
    Stop the service after a background heal ran out of retries.

    Runs on the heal thread, so it signals the main thread instead of
    exiting directly; the SIGTERM handler closes the manager.
    """
    logger.critical(
        "Database connection lost and could not be healed, halting",
        extra=fields(attempts=error.attempts, error=error),
    )
    _database_lost.set()
    signal.raise_signal(signal.SIGTERM)


def install_shutdown_handlers(manager: ResilientConnectionManager):
    """
    Close the database manager and exit on SIGINT/SIGTERM.

    SystemExit unwinds through main()'s finally block, so the manager is
    closed exactly once there as well (close() is idempotent). The exit code
    is EXIT_DATABASE_LOST when the signal came from halt_on_database_loss.
    """

    def handle_signal(signum, _frame):
        name = signal.Signals(signum).name
        logger.info(f"Received {name}, shutting down")
        manager.close()
        sys.exit(EXIT_DATABASE_LOST if _database_lost.is_set() else 0)

    for sig in SHUTDOWN_SIGNALS:
        signal.signal(sig, handle_signal)


def main() -> int:
    """
    Run the service.

    Returns:
        Process exit code (1 when the database could not be reached)
    """
    logger.info("=" * 60)
    logger.info("Starting Reputation Shield backend")
    logger.info(f"Environment: {settings.app.environment}")
    logger.info(f"Debug mode: {settings.app.debug}")
    logger.info("=" * 60)

    manager = build_manager()
    try:
        logger.info("Phase 1: Establishing database connection...")
        try:
            manager.ensure_connected()
        except ExhaustedRetriesError as e:
            logger.critical(
                "Startup failed, database unreachable",
                extra=fields(attempts=e.attempts, error=e),
            )
            return 1

        logger.info("Phase 2: Activating shutdown handlers...")
        install_shutdown_handlers(manager)

        logger.info("Phase 3: Starting HTTP server...")
        app = create_app(manager)
        logger.info(
            f"Health check: http://{settings.app.api_host}:{settings.app.api_port}/health"
        )
        # Flask's built-in server is enough for a health/metrics surface
        app.run(
            host=settings.app.api_host,
            port=settings.app.api_port,
            debug=settings.app.debug,
            use_reloader=False,
        )
        return 0

    except KeyboardInterrupt:
        logger.info("Received shutdown signal (Ctrl+C)")
        return 0

    finally:
        manager.close()
        logger.info("Application shutdown complete")


if __name__ == "__main__":
    sys.exit(main())
