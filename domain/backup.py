"""
Domain: durable backup of queued intents.

A BackupRecord is written when a buyer's intent batch is handed off for
payment, so the batch survives loss of client-side session state.

Status lifecycle: pending -> processing (claimed by a reconciler run) -> completed.
Records older than the recovery window are never eligible for recovery.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import List

from .intent import PendingIntent
from .time import require_utc_timestamp

RECOVERY_WINDOW = timedelta(hours=2)


class BackupStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"


@dataclass(frozen=True, slots=True)
class BackupRecord:
    record_id: str
    buyer_id: str
    intents: List[PendingIntent]
    status: BackupStatus
    created_at: datetime

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)

    def is_recoverable(self, now: datetime) -> bool:
        """Pending and created within the recovery window."""
        require_utc_timestamp("now", now)
        return self.status is BackupStatus.PENDING and now - self.created_at <= RECOVERY_WINDOW
