"""
Airtable sync target.

Best-effort copy of registrations and donations into Airtable. Airtable is
rate-limited and occasionally unavailable, so callers must go through the
circuit breaker and the resilient executor.

Error mapping:
- HTTP 429, 5xx, connection errors and timeouts raise TransientDependencyError.
- Any other non-2xx answer is returned as SyncResult(success=False, error=...).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence
from urllib.parse import quote

import requests

from domain.errors import TransientDependencyError

logger = logging.getLogger(__name__)

_API_ROOT = "https://api.airtable.com/v0"
_TRANSIENT_STATUS = {429, 500, 502, 503, 504}


@dataclass(frozen=True, slots=True)
class SyncResult:
    success: bool
    record_id: Optional[str] = None
    error: Optional[str] = None


class AirtableSyncTarget:
    """Thin Airtable REST client exposing a single upsert call."""

    DEFAULT_TIMEOUT = 15

    def __init__(
        self,
        api_key: str,
        base_id: str,
        session: Optional[requests.Session] = None,
        timeout: int = DEFAULT_TIMEOUT,
    ):
        if not api_key or not base_id:
            raise RuntimeError(
                "Missing Airtable configuration. Set AIRTABLE_API_KEY and AIRTABLE_BASE_ID."
            )
        self.base_id = base_id
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        })

    def _table_url(self, table: str) -> str:
        return f"{_API_ROOT}/{self.base_id}/{quote(table, safe='')}"

    def upsert(
        self,
        table: str,
        fields: Mapping[str, Any],
        merge_on: Sequence[str] = (),
    ) -> SyncResult:
        """
        Create or update one record in `table`.

        When merge_on is given, an existing record with equal values in those
        fields is updated instead of duplicated.
        """

        body: dict[str, Any] = {
            "records": [{"fields": dict(fields)}],
            "typecast": True,
        }
        if merge_on:
            body["performUpsert"] = {"fieldsToMergeOn": list(merge_on)}
            method = "PATCH"
        else:
            method = "POST"

        try:
            response = self.session.request(
                method, self._table_url(table), json=body, timeout=self.timeout
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientDependencyError("airtable", str(e)) from e

        if response.status_code in _TRANSIENT_STATUS:
            raise TransientDependencyError(
                "airtable", f"HTTP {response.status_code} from {table}"
            )

        if not response.ok:
            logger.warning(f"Airtable rejected record for {table}: HTTP {response.status_code}")
            return SyncResult(success=False, error=f"HTTP {response.status_code}: {response.text[:500]}")

        records = (response.json() or {}).get("records") or []
        record_id = records[0].get("id") if records else None
        return SyncResult(success=True, record_id=record_id)


__all__ = ["AirtableSyncTarget", "SyncResult"]
