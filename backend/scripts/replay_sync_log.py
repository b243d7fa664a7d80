#!/usr/bin/env python3
"""
Re-run failed WooCommerce webhook deliveries from the sync log.

Each failed row stores the payload it was processing. Orders are upserted on
their store id, so replaying is safe even when the store retried in between;
orders that succeeded after their last failure are skipped.

Usage:
    # Replay every failed order that has not recovered since
    python replay_sync_log.py

    # Replay a single order
    python replay_sync_log.py --woo-id 1001

    # Show what would be replayed
    python replay_sync_log.py --dry-run
"""

import argparse
import json
import sys
import os

# Add parent directory to path to import backend modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.logging import setup_logging
from app.db.repository import SqlAlchemyIngestionRepository
from app.db.session import session_scope
from app.services.ingestion_service import OrderIngestionPipeline, WebhookProcessingError
from app.services.woocommerce_service import find_replay_candidates


def replay(woo_id=None, dry_run=False):
    """Replay failed deliveries, returning (replayed, failed)"""
    replayed = failed = 0

    with session_scope() as db:
        candidates = find_replay_candidates(db, woo_id=woo_id)
        if not candidates:
            print("✅ Nothing to replay")
            return 0, 0

        pipeline = OrderIngestionPipeline(SqlAlchemyIngestionRepository(db))

        for entry in candidates:
            label = f"order {entry.woo_id} (sync log #{entry.id}, failed: {entry.error_message})"
            if dry_run:
                print(f"🔎 Would replay {label}")
                continue

            try:
                outcome = pipeline.process(json.dumps(entry.payload).encode("utf-8"), topic="replay")
                print(f"✅ Replayed {label} -> order {outcome.order_id}")
                replayed += 1
            except WebhookProcessingError as e:
                print(f"❌ Replay of order {entry.woo_id} failed again: {e.detail}")
                failed += 1

    return replayed, failed


def main():
    parser = argparse.ArgumentParser(description="Replay failed WooCommerce webhook deliveries")
    parser.add_argument("--woo-id", type=int, help="Only replay this store order id")
    parser.add_argument("--dry-run", action="store_true", help="List candidates without replaying")
    args = parser.parse_args()

    setup_logging()
    replayed, failed = replay(woo_id=args.woo_id, dry_run=args.dry_run)

    if not args.dry_run:
        print(f"\nReplayed: {replayed}, still failing: {failed}")
    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
