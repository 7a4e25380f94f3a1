"""
Registration repository (authoritative store).

This module provides *only* persistence operations for RegistrationRecord.
It does not decide whether a registration should be written; duplicate
prevention and sync bookkeeping live in the transaction manager.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, List, Mapping, Optional, Set

from supabase import Client  # type: ignore[import-not-found]

from domain.registration import RegistrationRecord, SyncStatus
from domain.time import parse_utc_datetime, to_iso_utc
from repositories.client import execute_query, get_supabase

# Supabase table name for confirmed registrations.
# Keep this aligned with your database schema.
_REGISTRATIONS_TABLE: str = "season_registrations"


def _row_to_registration(row: Mapping[str, Any]) -> RegistrationRecord:
    """Convert a Supabase row into a RegistrationRecord."""

    return RegistrationRecord(
        registration_id=str(row["registration_id"]),
        order_id=str(row["order_id"]),
        intent_id=str(row["intent_id"]),
        buyer_id=str(row["buyer_id"]),
        player_id=str(row["player_id"]),
        division=str(row["division"]),
        sport=str(row["sport"]),
        season=str(row["season"]),
        fee=Decimal(str(row["fee"])),
        date_paid=parse_utc_datetime(row["date_paid_utc"]),
        paid=bool(row.get("paid", True)),
        sync_status=SyncStatus(str(row.get("sync_status") or SyncStatus.PENDING.value)),
        auxiliary=dict(row.get("auxiliary") or {}),
    )


class RegistrationRepository:
    """Reads and writes the `season_registrations` table."""

    def __init__(self, client: Optional[Client] = None):
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase()
        return self._client

    def insert(self, record: RegistrationRecord) -> RegistrationRecord:
        payload: dict[str, Any] = {
            "registration_id": record.registration_id,
            "order_id": record.order_id,
            "intent_id": record.intent_id,
            "buyer_id": record.buyer_id,
            "player_id": record.player_id,
            "division": record.division,
            "sport": record.sport,
            "season": record.season,
            "fee": str(record.fee),
            "paid": record.paid,
            "date_paid_utc": to_iso_utc(record.date_paid, name="date_paid"),
            "sync_status": record.sync_status.value,
            "auxiliary": dict(record.auxiliary or {}),
        }
        execute_query(
            self.client.table(_REGISTRATIONS_TABLE).insert(payload),
            action="insert registration",
        )
        return record

    def find(self, order_id: str, intent_id: str) -> Optional[RegistrationRecord]:
        """Return the registration written for (order_id, intent_id), if any."""

        rows = execute_query(
            self.client.table(_REGISTRATIONS_TABLE)
            .select("*")
            .eq("order_id", order_id)
            .eq("intent_id", intent_id)
            .limit(1),
            action="look up registration",
        )
        if not rows:
            return None
        return _row_to_registration(rows[0])

    def has_registrations_for_order(self, order_id: str) -> bool:
        rows = execute_query(
            self.client.table(_REGISTRATIONS_TABLE)
            .select("registration_id")
            .eq("order_id", order_id)
            .limit(1),
            action="check order registrations",
        )
        return bool(rows)

    def registered_intent_ids(self, intent_ids: Iterable[str]) -> Set[str]:
        """Return the subset of intent_ids that already have a registration."""

        ids = list(intent_ids)
        if not ids:
            return set()
        rows = execute_query(
            self.client.table(_REGISTRATIONS_TABLE)
            .select("intent_id")
            .in_("intent_id", ids),
            action="check registered intents",
        )
        return {str(row["intent_id"]) for row in rows}

    def update_sync_status(self, registration_id: str, status: SyncStatus) -> None:
        execute_query(
            self.client.table(_REGISTRATIONS_TABLE)
            .update({"sync_status": status.value})
            .eq("registration_id", registration_id),
            action="update registration sync status",
        )

    def list_by_sync_status(self, status: SyncStatus, limit: int = 100) -> List[RegistrationRecord]:
        rows = execute_query(
            self.client.table(_REGISTRATIONS_TABLE)
            .select("*")
            .eq("sync_status", status.value)
            .order("date_paid_utc")
            .limit(limit),
            action="list registrations by sync status",
        )
        return [_row_to_registration(row) for row in rows]

    def list_resync_candidates(self, pending_before: datetime, limit: int = 100) -> List[RegistrationRecord]:
        """
        Registrations whose external copy needs another sync attempt, oldest first.

        Includes every `failed` record plus `pending` records paid at or before
        `pending_before`: their sync never recorded an outcome (the status
        update failed, or the process stopped between insert and sync).
        """

        failed = self.list_by_sync_status(SyncStatus.FAILED, limit=limit)
        rows = execute_query(
            self.client.table(_REGISTRATIONS_TABLE)
            .select("*")
            .eq("sync_status", SyncStatus.PENDING.value)
            .lte("date_paid_utc", to_iso_utc(pending_before, name="pending_before"))
            .order("date_paid_utc")
            .limit(limit),
            action="list stale pending registrations",
        )
        stale = [_row_to_registration(row) for row in rows]
        return sorted(failed + stale, key=lambda record: record.date_paid)[:limit]


__all__ = ["RegistrationRepository"]
