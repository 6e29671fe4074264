# FILE: backend/scripts/backfill_mirrors.py
# SYNC ENGINE - MIRROR BACKFILL TOOL
# Usage:
#   python -m scripts.backfill_mirrors --tenant <tenantId>
#   python -m scripts.backfill_mirrors --category "Worship"
#   python -m scripts.backfill_mirrors --all-categories

import argparse

from flocksync.core.db import get_db, close_mongo_connections
from flocksync.core.logging_config import configure_logging
from flocksync.services import mirror_sync_service


def run(tenant_id: str = "", category: str = "") -> int:
    db = next(get_db())
    try:
        if tenant_id:
            summary = mirror_sync_service.backfill(db, tenant_id)
        else:
            summary = mirror_sync_service.cross_category_sync(db, category or None)
    finally:
        close_mongo_connections()

    if not summary.success and summary.details.get("reason"):
        print(f"❌ {summary.details['reason']}")
        return 1
    print(f"--- synced {summary.synced} mirror copies ({summary.failures} failed) "
          f"for categories {summary.details.get('categories', [])} ---")
    return 0 if summary.success else 1


if __name__ == "__main__":
    configure_logging(json_output=False)
    parser = argparse.ArgumentParser(description="Re-run the forward mirror sync in bulk.")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--tenant", help="Backfill every qualifying member of one source tenant")
    group.add_argument("--category", help="Sync one category across every source tenant")
    group.add_argument("--all-categories", action="store_true", help="Sync every subscribed category")
    args = parser.parse_args()
    raise SystemExit(run(tenant_id=args.tenant or "", category=args.category or ""))
