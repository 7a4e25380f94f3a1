"""
Audit log for synchronization problems.

Writes SyncErrorRecords to the append-only sync error table. Recording an
audit entry must never turn a handled failure into an unhandled one, so
write failures are logged and swallowed here.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from domain.sync_error import SyncErrorRecord, SyncErrorType
from domain.time import utc_now
from repositories.sync_error_repository import SyncErrorRepository

logger = logging.getLogger(__name__)


class AuditLog:
    def __init__(self, repository: SyncErrorRepository, clock: Callable[[], datetime] = utc_now):
        self._repository = repository
        self._clock = clock

    def record(
        self,
        order_id: str,
        error_type: SyncErrorType,
        message: str,
        /,
        *,
        intent_id: Optional[str] = None,
        **context: Any,
    ) -> bool:
        record = SyncErrorRecord(
            order_id=order_id,
            error_type=error_type,
            error_message=message,
            timestamp=self._clock(),
            intent_id=intent_id,
            context=context,
        )
        try:
            self._repository.append(record)
        except Exception as e:
            logger.error(
                f"Failed to record {error_type.value} for order {order_id}: {e} "
                f"(original error: {message})"
            )
            return False
        return True


__all__ = ["AuditLog"]
