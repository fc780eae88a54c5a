#!/usr/bin/env python3
"""
Probe the configured database the same way the service does at startup.

Connects through the resilient connection manager (retries, backoff and the
three verification queries included), runs one health check, prints the
report as JSON and exits 0 when healthy, 1 otherwise.

Usage:
    python scripts/db_probe.py
    python scripts/db_probe.py --max-retries 3 --retry-delay-ms 500
"""

import argparse
import dataclasses
import json
import os
import sys

# Add src directory to path so we can import our modules
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from config import settings
from db import ConnectionConfig, ResilientConnectionManager
from logger import get_logger

logger = get_logger(__name__)


def build_config(args) -> ConnectionConfig:
    config = ConnectionConfig.from_settings(settings.db)
    overrides = {}
    if args.max_retries is not None:
        overrides["max_retries"] = args.max_retries
    if args.retry_delay_ms is not None:
        overrides["retry_delay_ms"] = args.retry_delay_ms
    return dataclasses.replace(config, **overrides) if overrides else config


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Connect to the configured database and print a health report",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Connection settings come from the usual DB_* environment variables.

Examples:
  # Probe with the configured retry policy
  python scripts/db_probe.py

  # Give up quickly
  python scripts/db_probe.py --max-retries 1
        """,
    )
    parser.add_argument(
        "--max-retries",
        type=int,
        default=None,
        help="Override DB_MAX_RETRIES for this probe",
    )
    parser.add_argument(
        "--retry-delay-ms",
        type=int,
        default=None,
        help="Override DB_RETRY_DELAY_MS for this probe",
    )
    args = parser.parse_args(argv)

    manager = ResilientConnectionManager(build_config(args))
    try:
        connected = manager.connect()
        report = manager.health_check()
    finally:
        manager.close()

    print(json.dumps({"connected": connected, "database": report.to_dict()}, indent=2))
    return 0 if report.healthy else 1


if __name__ == "__main__":
    sys.exit(main())
