"""
Re-sync registrations whose Airtable copy failed.

Registrations saved while Airtable was unavailable carry sync_status=failed.
Registrations still `pending` after a grace period never recorded a sync
outcome and are picked up too. This script pushes them again through the
same circuit breaker and retry policy the reconciler uses, marking each one
synced on success.

Usage:
    python scripts/resync_registrations.py            # re-sync up to 100
    python scripts/resync_registrations.py --limit 20
    python scripts/resync_registrations.py --dry-run
    python scripts/resync_registrations.py --pending-grace-minutes 60
"""

import argparse
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, List, Optional

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import get_settings
from domain.errors import CircuitOpenError
from domain.registration import SyncStatus
from domain.time import utc_now
from repositories.airtable_repository import AirtableSyncTarget
from repositories.registration_repository import RegistrationRepository
from repositories.sync_error_repository import SyncErrorRepository
from services.audit_service import AuditLog
from services.resilience import RetryPolicy, get_breaker_registry
from services.transaction_manager import TransactionManager


DEFAULT_PENDING_GRACE = timedelta(minutes=15)


@dataclass
class ResyncSummary:
    attempted: int = 0
    synced: int = 0
    failed: int = 0


def resync_failed_registrations(
    registrations: RegistrationRepository,
    transactions: TransactionManager,
    limit: int = 100,
    dry_run: bool = False,
    pending_grace: timedelta = DEFAULT_PENDING_GRACE,
    clock: Callable[[], datetime] = utc_now,
) -> ResyncSummary:
    """
    Re-sync up to `limit` failed or stale pending registrations.

    Stops early if the breaker opens.
    """

    summary = ResyncSummary()
    pending = registrations.list_resync_candidates(clock() - pending_grace, limit=limit)

    print(f"Found {len(pending)} registrations to re-sync (failed, or pending for over {pending_grace})")

    for record in pending:
        summary.attempted += 1
        label = f"{record.registration_id} ({record.division}, order {record.order_id})"

        if dry_run:
            print(f"  [DRY RUN] would re-sync {label}")
            continue

        try:
            transactions.sync_registration(record)
        except Exception as e:
            summary.failed += 1
            print(f"  [FAIL] {label}: {e}")
            if isinstance(e, CircuitOpenError):
                print("Circuit breaker is open; stopping early.")
                break
            continue

        registrations.update_sync_status(record.registration_id, SyncStatus.SYNCED)
        summary.synced += 1
        print(f"  [OK] {label}")

    return summary


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Re-sync failed registrations to Airtable")
    parser.add_argument("--limit", type=int, default=100, help="Maximum registrations to re-sync")
    parser.add_argument("--dry-run", action="store_true", help="List registrations without syncing")
    parser.add_argument(
        "--pending-grace-minutes",
        type=int,
        default=int(DEFAULT_PENDING_GRACE.total_seconds() // 60),
        help="Also re-sync registrations left pending longer than this",
    )
    args = parser.parse_args(argv)

    settings = get_settings()
    registrations = RegistrationRepository()
    transactions = TransactionManager(
        registrations,
        AirtableSyncTarget(settings.airtable_api_key or "", settings.airtable_base_id or ""),
        AuditLog(SyncErrorRepository()),
        get_breaker_registry(),
        retry_policy=RetryPolicy(settings.retry_max_attempts, settings.retry_base_delay_ms),
        sync_table=settings.airtable_table,
    )

    print("=" * 60)
    print("RE-SYNC FAILED REGISTRATIONS")
    print("=" * 60)

    summary = resync_failed_registrations(
        registrations,
        transactions,
        args.limit,
        args.dry_run,
        pending_grace=timedelta(minutes=args.pending_grace_minutes),
    )

    print("=" * 60)
    print(f"Attempted: {summary.attempted}  Synced: {summary.synced}  Failed: {summary.failed}")
    print("=" * 60)
    return 0 if summary.failed == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
