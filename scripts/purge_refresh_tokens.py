#!/usr/bin/env python3
"""Purge refresh tokens that are past their expiry.

Rotation and logout never depend on this sweep; it only keeps the
refresh_token table from growing without bound. The API process runs the same
sweep on a timer (REFRESH_TOKEN_SWEEP_INTERVAL_SECONDS); this script is for
cron-style deployments that disable it.

Usage:
    DATABASE_URL=postgresql://... JWT_SECRET=... python scripts/purge_refresh_tokens.py

    # Count only, without deleting:
    python scripts/purge_refresh_tokens.py --dry-run

Environment Variables:
    DATABASE_URL: PostgreSQL connection string
    JWT_SECRET: Required by the runtime configuration even though no token is signed
"""
from __future__ import annotations

import argparse
import os
import sys
from datetime import datetime
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def purge(now: datetime | None = None, dry_run: bool = False) -> dict:
    """Delete (or count) expired refresh tokens.

    Returns:
        dict with ``purged`` count and ``dry_run`` flag
    """
    # Import here so configuration is read after argument parsing
    from famoney.service.runtime import get_runtime
    from famoney.storage.models import utcnow

    runtime = get_runtime()
    cutoff = now or utcnow()
    if dry_run:
        return {
            "purged": runtime.store.count_expired_refresh_tokens(cutoff),
            "dry_run": True,
        }
    return {"purged": runtime.tokens.purge_expired(cutoff), "dry_run": False}


def main():
    parser = argparse.ArgumentParser(
        description="Purge expired refresh tokens",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report how many rows would be deleted without deleting them",
    )
    args = parser.parse_args()

    if not os.environ.get("DATABASE_URL") and not os.environ.get("USE_MEMORY_STORE"):
        print("Error: DATABASE_URL environment variable required")
        sys.exit(1)
    if not os.environ.get("JWT_SECRET"):
        print("Error: JWT_SECRET environment variable required")
        sys.exit(1)

    try:
        result = purge(dry_run=args.dry_run)
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    verb = "Would purge" if result["dry_run"] else "Purged"
    print(f"{verb} {result['purged']} expired refresh token(s)")


if __name__ == "__main__":
    main()
