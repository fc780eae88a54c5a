# src/monitoring/__init__.py
# HTTP-side monitoring: the Prometheus scrape endpoint

from .metrics_endpoint import setup_metrics_endpoint

__all__ = [
    "setup_metrics_endpoint",
]
