# src/tracking/correlation.py
# Correlation IDs tie together every log line produced on behalf of one unit
# of work: an HTTP request ("req-..."), a background healing run ("heal-...")
# or a single database query ("qry-...").
#
# A ContextVar keeps the ID per thread / per context, so concurrent requests
# and the healing thread never see each other's IDs.

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def generate_correlation_id(prefix: str = "req") -> str:
    """
    Generate a new correlation ID such as "req-3f9c0a1b2d4e5f60".

    Args:
        prefix: Short tag naming the kind of work ("req", "heal", "qry")

    Returns:
        A unique correlation ID string
    """
    return f"{prefix}-{uuid.uuid4().hex[:16]}"


def get_correlation_id() -> Optional[str]:
    """Return the correlation ID of the current context, or None."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID for the current context."""
    _correlation_id.set(correlation_id)


def clear_correlation_id() -> None:
    """Remove the correlation ID from the current context."""
    _correlation_id.set(None)


@contextmanager
def correlation_context(
    correlation_id: Optional[str] = None,
    prefix: str = "req",
) -> Iterator[str]:
    """
    Run a block under a correlation ID and restore the previous one after.

    Useful for background threads, which start with an empty context.

    Args:
        correlation_id: ID to use. If None, a new one is generated.
        prefix: Prefix for the generated ID

    Example:
        with correlation_context(prefix="heal") as cid:
            manager.connect()   # every log line carries cid
    """
    cid = correlation_id or generate_correlation_id(prefix)
    token = _correlation_id.set(cid)
    try:
        yield cid
    finally:
        _correlation_id.reset(token)
