"""
Domain: pending registration intents.

An intent is a buyer's declared wish to register a specific player for a
specific division and season, captured before payment.

Rules implemented here:
- Intents are immutable once created; the reconciler consumes them, never edits them.
- Identity is (player_id, season, sport) and drives duplicate suppression.
- Rarely needed form fields live in a typed string-to-string extension map
  instead of an open bag of values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional
from uuid import uuid4

from .time import parse_utc_datetime, require_utc_timestamp, to_iso_utc, utc_now


@dataclass(frozen=True, slots=True)
class IntentIdentity:
    """Duplicate-suppression key for an intent."""

    player_id: str
    season: str
    sport: str


@dataclass(frozen=True, slots=True)
class PendingIntent:
    """
    Immutable registration intent queued by a buyer before checkout.

    computed_fee is the fee quoted at submission time; the amount actually
    paid comes from the matched order line item.
    """

    intent_id: str
    buyer_id: str
    player_id: str
    division: str
    sport: str
    season: str
    computed_fee: Decimal
    submitted_at: datetime
    auxiliary: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        require_utc_timestamp("submitted_at", self.submitted_at)
        for name in ("intent_id", "buyer_id", "player_id", "division", "sport", "season"):
            if not getattr(self, name):
                raise ValueError(f"{name} is required")
        if self.computed_fee < 0:
            raise ValueError("computed_fee cannot be negative")
        for key, value in self.auxiliary.items():
            if not isinstance(key, str) or not isinstance(value, str):
                raise TypeError("auxiliary fields must map str to str")

    @property
    def identity(self) -> IntentIdentity:
        return IntentIdentity(player_id=self.player_id, season=self.season, sport=self.sport)

    @property
    def player_name(self) -> Optional[str]:
        return self.auxiliary.get("player_name")

    @staticmethod
    def create(
        *,
        buyer_id: str,
        player_id: str,
        division: str,
        sport: str,
        season: str,
        computed_fee: Decimal,
        auxiliary: Optional[Mapping[str, str]] = None,
        submitted_at: Optional[datetime] = None,
    ) -> "PendingIntent":
        """Create a new intent with a fresh intent_id, stamped now unless given."""

        return PendingIntent(
            intent_id=str(uuid4()),
            buyer_id=buyer_id,
            player_id=player_id,
            division=division,
            sport=sport,
            season=season,
            computed_fee=computed_fee,
            submitted_at=submitted_at or utc_now(),
            auxiliary=dict(auxiliary or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe representation used by session storage and the backup store."""

        return {
            "intent_id": self.intent_id,
            "buyer_id": self.buyer_id,
            "player_id": self.player_id,
            "division": self.division,
            "sport": self.sport,
            "season": self.season,
            "computed_fee": str(self.computed_fee),
            "submitted_at": to_iso_utc(self.submitted_at, name="submitted_at"),
            "auxiliary": dict(self.auxiliary),
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "PendingIntent":
        """
        Rebuild an intent from its stored representation.

        Raises:
            KeyError, ValueError, TypeError: if the stored data is malformed
        """

        return PendingIntent(
            intent_id=str(data["intent_id"]),
            buyer_id=str(data["buyer_id"]),
            player_id=str(data["player_id"]),
            division=str(data["division"]),
            sport=str(data["sport"]),
            season=str(data["season"]),
            computed_fee=Decimal(str(data["computed_fee"])),
            submitted_at=parse_utc_datetime(data["submitted_at"]),
            auxiliary=dict(data.get("auxiliary") or {}),
        )
