# src/api/app.py
# Flask application exposing the service's health surface
#
# Endpoints:
#   GET /health        full report: OPERATIONAL (200) or DEGRADED (503)
#   GET /health/live   the process answers (always 200)
#   GET /health/ready  200 only while the database manager is CONNECTED
#   GET /metrics       Prometheus scrape endpoint
#
# The database manager is injected into create_app() and kept on
# app.extensions; nothing here owns or closes it.

import os
import platform
import time
from datetime import datetime, timezone

from flask import Flask, current_app, jsonify

from config import settings
from logger import get_logger
from monitoring import setup_metrics_endpoint
from tracking.middleware import setup_correlation_tracking

logger = get_logger(__name__)

EXTENSION_KEY = "db_manager"

# Used for the uptime figure in /health
_process_started_at = time.monotonic()


def create_app(db_manager):
    """
    Create the Flask application.

    Args:
        db_manager: ResilientConnectionManager (or anything with the same
            health_check() / state interface)

    Returns:
        Configured Flask application
    """
    app = Flask(__name__)
    app.config["DEBUG"] = settings.app.debug
    app.json.sort_keys = False
    app.extensions[EXTENSION_KEY] = db_manager

    register_routes(app)
    register_error_handlers(app)
    setup_metrics_endpoint(app)
    setup_correlation_tracking(app)

    logger.info(f"Flask application created: debug={settings.app.debug}")
    return app


def get_db_manager():
    """The manager injected into the current app."""
    return current_app.extensions[EXTENSION_KEY]


def register_routes(app: Flask):

    @app.route("/health", methods=["GET"])
    def health():
        """
        Comprehensive health check.

        Runs a live database probe and adds process information.
        503 tells load balancers to stop routing traffic here.
        """
        started = time.monotonic()
        db_report = get_db_manager().health_check()
        operational = db_report.healthy

        body = {
            "status": "OPERATIONAL" if operational else "DEGRADED",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "response_time_ms": round((time.monotonic() - started) * 1000, 2),
            "system": {
                "uptime_s": int(time.monotonic() - _process_started_at),
                "python": platform.python_version(),
                "pid": os.getpid(),
            },
            "database": db_report.to_dict(),
        }
        return jsonify(body), 200 if operational else 503

    @app.route("/health/live", methods=["GET"])
    def liveness():
        # No dependency checks: a database outage is not a reason to restart the process
        return jsonify({"status": "alive"}), 200

    @app.route("/health/ready", methods=["GET"])
    def readiness():
        manager = get_db_manager()
        ready = manager.is_connected
        return jsonify({
            "status": "ready" if ready else "not_ready",
            "database_state": manager.state.value,
        }), 200 if ready else 503


def register_error_handlers(app: Flask):
    """Make every error a JSON response."""

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({
            "error": "Not found",
            "message": "The requested endpoint does not exist"
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({
            "error": "Method not allowed",
            "message": "The HTTP method is not allowed for this endpoint"
        }), 405

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"Internal server error: {error}", exc_info=True)
        return jsonify({
            "error": "Internal server error",
            "message": "An unexpected error occurred"
        }), 500
