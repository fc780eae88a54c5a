# src/resilience/__init__.py
# Retry policy building blocks used by the database layer

from resilience.backoff import BackoffPolicy

__all__ = [
    "BackoffPolicy",
]
