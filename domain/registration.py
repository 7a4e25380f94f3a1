"""
Domain: confirmed season registrations.

A RegistrationRecord is the authoritative, paid registration written to the
system of record once an intent has been matched to a paid order slot.

Contract:
- (order_id, intent_id) identifies a registration; it is written at most once.
- sync_status tracks the best-effort copy in the external sync target only;
  the authoritative record is complete regardless of it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Mapping, Optional

from .intent import PendingIntent
from .time import require_utc_timestamp


class SyncStatus(str, Enum):
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class RegistrationRecord:
    registration_id: str
    order_id: str
    intent_id: str
    buyer_id: str
    player_id: str
    division: str
    sport: str
    season: str
    fee: Decimal
    date_paid: datetime
    paid: bool = True
    sync_status: SyncStatus = SyncStatus.PENDING
    auxiliary: Optional[Mapping[str, str]] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("date_paid", self.date_paid)

    @staticmethod
    def from_match(
        intent: PendingIntent,
        *,
        registration_id: str,
        order_id: str,
        fee: Decimal,
        date_paid: datetime,
    ) -> "RegistrationRecord":
        return RegistrationRecord(
            registration_id=registration_id,
            order_id=order_id,
            intent_id=intent.intent_id,
            buyer_id=intent.buyer_id,
            player_id=intent.player_id,
            division=intent.division,
            sport=intent.sport,
            season=intent.season,
            fee=fee,
            date_paid=date_paid,
            auxiliary=dict(intent.auxiliary),
        )
