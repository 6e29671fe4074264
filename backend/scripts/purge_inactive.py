# FILE: backend/scripts/purge_inactive.py
# SYNC ENGINE - INACTIVE MEMBER PURGE TOOL
# Hard-deletes every member with isActive == false, then recomputes counters.
# Irreversible. Usage: python -m scripts.purge_inactive [--dry-run] [--yes]

import argparse

from flocksync.core.db import get_db, close_mongo_connections
from flocksync.core.logging_config import configure_logging
from flocksync.services import counter_service


def run(dry_run: bool = False, assume_yes: bool = False) -> int:
    db = next(get_db())
    try:
        if not dry_run and not assume_yes:
            preview = counter_service.purge_inactive(db, dry_run=True)
            print(f"⚠️  About to delete {preview.deleted} inactive members across {len(preview.details.get('purged', {}))} tenants.")
            if input("Type 'purge' to continue: ").strip() != "purge":
                print("Aborted. Nothing was deleted.")
                return 1

        summary = counter_service.purge_inactive(db, dry_run=dry_run)
    finally:
        close_mongo_connections()

    for tenant_id, count in sorted(summary.details.get("purged", {}).items()):
        print(f"  {tenant_id}: {count}")
    label = "would delete" if dry_run else "deleted"
    print(f"--- {label} {summary.deleted} members, {summary.updated} counter writes ---")
    return 0 if summary.success else 1


if __name__ == "__main__":
    configure_logging(json_output=False)
    parser = argparse.ArgumentParser(description="Purge soft-deleted members from every tenant.")
    parser.add_argument("--dry-run", action="store_true", help="Only report what would be deleted")
    parser.add_argument("--yes", action="store_true", help="Skip the confirmation prompt")
    args = parser.parse_args()
    raise SystemExit(run(dry_run=args.dry_run, assume_yes=args.yes))
