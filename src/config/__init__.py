# src/config/__init__.py
# Exports the shared settings object and the config classes

from .settings import settings, Settings, DatabaseConfig, AppConfig

__all__ = [
    "settings",
    "Settings",
    "DatabaseConfig",
    "AppConfig",
]
