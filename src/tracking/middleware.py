# src/tracking/middleware.py
# Flask hooks that give every HTTP request a correlation ID
# A client may send its own X-Request-ID; otherwise one is generated.
# The ID is echoed back on the response.

from flask import g, request

from logger import get_logger
from tracking.correlation import (
    clear_correlation_id,
    generate_correlation_id,
    set_correlation_id,
)

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def setup_correlation_tracking(app):
    """
    Register before/after request hooks for correlation IDs.

    Args:
        app: Flask application instance
    """

    @app.before_request
    def assign_request_id():
        request_id = request.headers.get(REQUEST_ID_HEADER) or generate_correlation_id("req")
        g.request_id = request_id
        set_correlation_id(request_id)

    @app.after_request
    def echo_request_id(response):
        request_id = getattr(g, "request_id", None)
        if request_id:
            response.headers[REQUEST_ID_HEADER] = request_id
        return response

    @app.teardown_request
    def forget_request_id(_exc):
        clear_correlation_id()

    logger.debug("Correlation ID tracking enabled")
