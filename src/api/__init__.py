# src/api/__init__.py
# Exports the Flask application factory

from .app import create_app

__all__ = [
    "create_app",
]
