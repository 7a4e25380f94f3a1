"""
Domain: append-only audit records for synchronization problems.

Records are written by the reconciliation core and read only by operators
and re-sync tooling; the core never updates or deletes them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional

from .time import require_utc_timestamp


class SyncErrorType(str, Enum):
    CMS_INSERT_FAILED = "CMS_INSERT_FAILED"
    AIRTABLE_SYNC_FAILED = "AIRTABLE_SYNC_FAILED"
    DONATION_SYNC_FAILED = "DONATION_SYNC_FAILED"
    DONATION_SYNC_EXCEPTION = "DONATION_SYNC_EXCEPTION"
    CMS_RETRIEVAL_FAILED = "CMS_RETRIEVAL_FAILED"
    NO_REGISTRATION_DATA = "NO_REGISTRATION_DATA"
    UNMATCHED_REGISTRATION = "UNMATCHED_REGISTRATION"


@dataclass(frozen=True, slots=True)
class SyncErrorRecord:
    order_id: str
    error_type: SyncErrorType
    error_message: str
    timestamp: datetime
    intent_id: Optional[str] = None
    context: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        require_utc_timestamp("timestamp", self.timestamp)
