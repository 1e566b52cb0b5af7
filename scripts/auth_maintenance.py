#!/usr/bin/env python3
"""Periodic auth housekeeping.

Purges expired verification/reset tokens, revokes expired sessions, prunes
old login attempts and optionally archives old security events.

Usage:
    python -m scripts.auth_maintenance
    python -m scripts.auth_maintenance --archive-events security-events.jsonl --older-than-days 90
"""

import argparse
import logging
import sys
from pathlib import Path

from auth.security_logger import SecurityLogger
from auth.service import AuthService

logger = logging.getLogger(__name__)


def run_maintenance(
    auth_service: AuthService,
    security_logger: SecurityLogger | None = None,
    archive_path: Path | None = None,
    older_than_days: int = 90,
) -> dict[str, int]:
    """One maintenance pass. Returns counts per step."""
    result = auth_service.sweep_expired()

    if archive_path is not None and security_logger is not None:
        result["security_events_archived"] = security_logger.rotate_logs(
            older_than_days, archive_path
        )

    return result


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Auth housekeeping")
    parser.add_argument(
        "--archive-events",
        type=Path,
        help="Append security events older than --older-than-days to this JSON-lines file",
    )
    parser.add_argument("--older-than-days", type=int, default=90)
    args = parser.parse_args(argv)

    from api.app import initialize, shutdown

    state = initialize()
    try:
        result = run_maintenance(
            state.auth_service,
            state.security_logger,
            archive_path=args.archive_events,
            older_than_days=args.older_than_days,
        )
    finally:
        shutdown()

    for step, count in result.items():
        print(f"{step}: {count}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
