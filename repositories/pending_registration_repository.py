"""
Pending registration repository (durable backup store).

Persists intent batches keyed by buyer so they survive loss of the buyer's
session. Status changes are conditional updates: a transition only applies
when the row is still in the expected status, which makes a claim atomic.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, List, Mapping, Optional
from uuid import uuid4

from supabase import Client  # type: ignore[import-not-found]

from domain.backup import BackupRecord, BackupStatus
from domain.intent import PendingIntent
from domain.time import parse_utc_datetime, to_iso_utc
from repositories.client import execute_query, get_supabase

logger = logging.getLogger(__name__)

_PENDING_TABLE: str = "pending_registrations"


def _row_to_backup(row: Mapping[str, Any]) -> BackupRecord:
    """
    Convert a Supabase row into a BackupRecord.

    Raises ValueError if the serialized intents are unreadable.
    """

    try:
        raw = json.loads(row.get("registrations") or "[]")
        intents = [PendingIntent.from_dict(item) for item in raw]
    except (json.JSONDecodeError, KeyError, TypeError, ValueError, ArithmeticError) as e:
        raise ValueError(f"Corrupt pending registration {row.get('record_id')}: {e}") from e

    return BackupRecord(
        record_id=str(row["record_id"]),
        buyer_id=str(row["user_id"]),
        intents=intents,
        status=BackupStatus(str(row["status"])),
        created_at=parse_utc_datetime(row["created_at_utc"]),
    )


class PendingRegistrationRepository:
    """Reads and writes the `pending_registrations` table."""

    def __init__(self, client: Optional[Client] = None):
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase()
        return self._client

    def insert(self, buyer_id: str, intents: List[PendingIntent], created_at: datetime) -> BackupRecord:
        record_id = str(uuid4())
        payload = {
            "record_id": record_id,
            "user_id": buyer_id,
            "registrations": json.dumps([intent.to_dict() for intent in intents]),
            "status": BackupStatus.PENDING.value,
            "created_at_utc": to_iso_utc(created_at, name="created_at"),
        }
        execute_query(
            self.client.table(_PENDING_TABLE).insert(payload),
            action="save pending registrations",
        )
        return BackupRecord(
            record_id=record_id,
            buyer_id=buyer_id,
            intents=list(intents),
            status=BackupStatus.PENDING,
            created_at=created_at,
        )

    def list_recent(self, buyer_id: str, status: BackupStatus, since: datetime) -> List[BackupRecord]:
        """
        Records for buyer_id in `status` created at or after `since`, newest first.

        Rows whose payload cannot be deserialized are skipped with a warning.
        """

        rows = execute_query(
            self.client.table(_PENDING_TABLE)
            .select("*")
            .eq("user_id", buyer_id)
            .eq("status", status.value)
            .gte("created_at_utc", to_iso_utc(since, name="since"))
            .order("created_at_utc", desc=True),
            action="query pending registrations",
        )

        records: List[BackupRecord] = []
        for row in rows:
            try:
                records.append(_row_to_backup(row))
            except ValueError as e:
                logger.warning(f"Skipping unreadable pending registration: {e}")
        return records

    def transition(self, record_id: str, from_status: BackupStatus, to_status: BackupStatus) -> bool:
        """
        Move record_id from `from_status` to `to_status`.

        Returns False when the row was not in `from_status` (someone else
        transitioned it first).
        """

        rows = execute_query(
            self.client.table(_PENDING_TABLE)
            .update({"status": to_status.value})
            .eq("record_id", record_id)
            .eq("status", from_status.value),
            action=f"mark pending registration {to_status.value}",
        )
        return bool(rows)


__all__ = ["PendingRegistrationRepository"]
