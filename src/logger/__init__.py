# src/logger/__init__.py
# Logging helpers for the whole service
# Named 'logger' instead of 'logging' to avoid clashing with the stdlib module

from .logging import setup_logging, get_logger, fields, render_fields, ContextFilter

__all__ = [
    "setup_logging",
    "get_logger",
    "fields",
    "render_fields",
    "ContextFilter",
]
