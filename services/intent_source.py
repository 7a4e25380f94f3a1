"""
Two-tier intent source.

Intents are loaded from the buyer's session queue first and, only when that
is empty, recovered from the durable backup store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Protocol

from domain.backup import BackupRecord
from domain.intent import PendingIntent
from domain.order import PaymentOrder

logger = logging.getLogger(__name__)


class PrimarySource(Protocol):
    def get(self) -> List[PendingIntent]: ...


class FallbackSource(Protocol):
    def claim_for_recovery(
        self, buyer_id: str, exclude_order_ids: Iterable[str] = ()
    ) -> Optional[BackupRecord]: ...


class IntentOrigin(str, Enum):
    SESSION = "session"
    BACKUP = "backup"
    NONE = "none"


@dataclass(frozen=True, slots=True)
class LoadedIntents:
    intents: List[PendingIntent]
    origin: IntentOrigin
    backup_record_id: Optional[str] = None
    fallback_error: Optional[str] = None


class IntentSource:
    def __init__(self, primary: PrimarySource, fallback: FallbackSource):
        self._primary = primary
        self._fallback = fallback

    def load(self, order: PaymentOrder) -> LoadedIntents:
        """
        Load the intents to reconcile against `order`.

        A failing fallback is reported through `fallback_error` rather than
        raised, so the caller can escalate it as data loss.
        """

        intents = self._primary.get()
        if intents:
            logger.info(f"Loaded {len(intents)} intents from session for order {order.order_id}")
            return LoadedIntents(intents=intents, origin=IntentOrigin.SESSION)

        logger.warning(f"Session intent queue empty for order {order.order_id}, trying backup store")

        if not order.buyer_id:
            logger.critical(f"Cannot recover intents for order {order.order_id}: no buyer id")
            return LoadedIntents(intents=[], origin=IntentOrigin.NONE)

        try:
            record = self._fallback.claim_for_recovery(order.buyer_id, [order.order_id])
        except Exception as e:
            logger.critical(f"Backup store recovery failed for order {order.order_id}: {e}")
            return LoadedIntents(intents=[], origin=IntentOrigin.NONE, fallback_error=str(e))

        if record is None:
            logger.error(
                f"No recoverable pending registrations for buyer {order.buyer_id} "
                f"(order {order.order_id})"
            )
            return LoadedIntents(intents=[], origin=IntentOrigin.NONE)

        logger.info(
            f"Loaded {len(record.intents)} intents from backup {record.record_id} "
            f"for order {order.order_id}"
        )
        return LoadedIntents(
            intents=list(record.intents),
            origin=IntentOrigin.BACKUP,
            backup_record_id=record.record_id,
        )


__all__ = [
    "FallbackSource",
    "IntentOrigin",
    "IntentSource",
    "LoadedIntents",
    "PrimarySource",
]
