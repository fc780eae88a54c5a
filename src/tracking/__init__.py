# src/tracking/__init__.py
# Correlation ID helpers shared by the API layer, the logger and the
# database manager

from tracking.correlation import (
    get_correlation_id,
    set_correlation_id,
    clear_correlation_id,
    correlation_context,
    generate_correlation_id,
)

__all__ = [
    "get_correlation_id",
    "set_correlation_id",
    "clear_correlation_id",
    "correlation_context",
    "generate_correlation_id",
]
