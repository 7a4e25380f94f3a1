"""
Durable backup store adapter.

Wraps the pending-registrations table with the recovery rules the
reconciler relies on:
- Only `pending` records created within the recovery window are eligible.
- Candidates are tried newest first.
- Nothing is recovered when the order being reconciled already produced
  registrations; a candidate is skipped when any of its intents is
  already registered.
- Claiming is a conditional pending -> processing update, so two runs can
  never both claim the same record.
- Marking a record completed is best-effort; failures are logged only.
"""

from __future__ import annotations

import dataclasses
import logging
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from domain.backup import RECOVERY_WINDOW, BackupRecord, BackupStatus
from domain.intent import PendingIntent
from domain.time import utc_now
from repositories.pending_registration_repository import PendingRegistrationRepository
from repositories.registration_repository import RegistrationRepository

logger = logging.getLogger(__name__)


class BackupStoreAdapter:
    def __init__(
        self,
        pending: PendingRegistrationRepository,
        registrations: RegistrationRepository,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._pending = pending
        self._registrations = registrations
        self._clock = clock

    def save(self, buyer_id: str, intents: List[PendingIntent]) -> BackupRecord:
        """Persist an intent batch handed off for payment (status=pending)."""

        if not intents:
            raise ValueError("Cannot back up an empty intent batch")
        record = self._pending.insert(buyer_id, list(intents), self._clock())
        logger.info(
            f"Saved {len(intents)} intents for buyer {buyer_id} as pending registration {record.record_id}"
        )
        return record

    def claim_for_recovery(
        self, buyer_id: str, exclude_order_ids: Iterable[str] = ()
    ) -> Optional[BackupRecord]:
        """
        Claim the newest eligible backup for `buyer_id`.

        Returns None when nothing qualifies; the caller must treat that as
        unrecoverable data loss.
        """

        for order_id in exclude_order_ids:
            if self._registrations.has_registrations_for_order(order_id):
                logger.warning(f"Order {order_id} already has registrations; not recovering a backup")
                return None

        now = self._clock()
        candidates = self._pending.list_recent(buyer_id, BackupStatus.PENDING, now - RECOVERY_WINDOW)
        logger.debug(f"Found {len(candidates)} pending registration candidates for buyer {buyer_id}")

        for candidate in candidates:
            if not candidate.is_recoverable(now) or not candidate.intents:
                continue

            consumed = self._registrations.registered_intent_ids(
                intent.intent_id for intent in candidate.intents
            )
            if consumed:
                logger.warning(
                    f"Skipping pending registration {candidate.record_id}: "
                    f"{len(consumed)} intents already registered"
                )
                continue

            if not self._pending.transition(
                candidate.record_id, BackupStatus.PENDING, BackupStatus.PROCESSING
            ):
                logger.warning(f"Pending registration {candidate.record_id} was claimed by another run")
                continue

            logger.info(
                f"Claimed pending registration {candidate.record_id} "
                f"({len(candidate.intents)} intents) for buyer {buyer_id}"
            )
            return dataclasses.replace(candidate, status=BackupStatus.PROCESSING)

        return None

    def complete(self, record_id: str) -> bool:
        """Mark a claimed record completed. Never raises."""

        try:
            done = self._pending.transition(record_id, BackupStatus.PROCESSING, BackupStatus.COMPLETED)
        except Exception as e:
            logger.error(f"Failed to mark pending registration {record_id} completed: {e}")
            return False
        if done:
            logger.info(f"Marked pending registration {record_id} completed")
        else:
            logger.warning(f"Pending registration {record_id} was not in processing; left unchanged")
        return done

    def release_claim(self, record_id: str) -> bool:
        """Return a claimed record to pending so a later run can recover it. Never raises."""

        try:
            return self._pending.transition(record_id, BackupStatus.PROCESSING, BackupStatus.PENDING)
        except Exception as e:
            logger.error(f"Failed to release claim on pending registration {record_id}: {e}")
            return False


__all__ = ["BackupStoreAdapter"]
