"""
Sync error repository (audit sink).

Append-only: the reconciliation core inserts SyncErrorRecords and never
reads, updates or deletes them.
"""

from __future__ import annotations

import json
from typing import Optional

from supabase import Client  # type: ignore[import-not-found]

from domain.sync_error import SyncErrorRecord
from domain.time import to_iso_utc
from repositories.client import execute_query, get_supabase

_SYNC_ERRORS_TABLE: str = "airtable_sync_errors"


class SyncErrorRepository:
    def __init__(self, client: Optional[Client] = None):
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase()
        return self._client

    def append(self, record: SyncErrorRecord) -> None:
        payload = {
            "order_id": record.order_id,
            "registration_id": record.intent_id,
            "error_type": record.error_type.value,
            "error_message": record.error_message,
            # default=str keeps Decimals and datetimes in the context readable
            "error_details": json.dumps(dict(record.context), default=str),
            "error_timestamp_utc": to_iso_utc(record.timestamp, name="timestamp"),
        }
        execute_query(
            self.client.table(_SYNC_ERRORS_TABLE).insert(payload),
            action="record sync error",
        )


__all__ = ["SyncErrorRepository"]
