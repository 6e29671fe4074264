# FILE: backend/scripts/recompute_counts.py
# SYNC ENGINE - COUNTER RECONCILIATION TOOL
# Overwrites every tenant and administrator memberCount with the exact count.
# Usage: python -m scripts.recompute_counts [--dry-run]

import argparse
import json

from flocksync.core.db import get_db, close_mongo_connections
from flocksync.core.logging_config import configure_logging
from flocksync.services import counter_service


def run(dry_run: bool = False) -> int:
    db = next(get_db())
    try:
        summary = counter_service.recompute_all(db, dry_run=dry_run)
    finally:
        close_mongo_connections()

    label = "DRY RUN" if dry_run else "APPLIED"
    print(f"--- [{label}] {summary.tenants} tenants, {summary.updated} counter writes ---")
    print(json.dumps(summary.details.get("counts", {}), indent=2, sort_keys=True))
    return 0 if summary.success else 1


if __name__ == "__main__":
    configure_logging(json_output=False)
    parser = argparse.ArgumentParser(description="Recompute member counters for every tenant.")
    parser.add_argument("--dry-run", action="store_true", help="Report the counts without writing them")
    args = parser.parse_args()
    raise SystemExit(run(dry_run=args.dry_run))
