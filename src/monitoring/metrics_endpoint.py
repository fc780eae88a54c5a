# src/monitoring/metrics_endpoint.py
# Prometheus scrape endpoint
# Prometheus pulls GET /metrics every 15-60 seconds and stores whatever the
# registered counters, gauges and histograms report at that moment.

from flask import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from logger import get_logger

logger = get_logger(__name__)


def setup_metrics_endpoint(app):
    """
    Register GET /metrics on a Flask app.

    Example output:
        # HELP db_queries_total Total number of database queries executed
        # TYPE db_queries_total counter
        db_queries_total{outcome="success"} 1234.0
    """

    @app.route("/metrics", methods=["GET"])
    def metrics():
        return Response(generate_latest(), mimetype=CONTENT_TYPE_LATEST)

    logger.debug("Prometheus metrics endpoint registered at /metrics")
