"""
Domain: payment orders and matching results.

Orders are supplied by the external commerce platform and treated as
read-only input. Each line item expands into `quantity` unit slots; a slot
is matchable to exactly one intent.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Tuple

from .errors import InvalidOrderError
from .intent import PendingIntent


@dataclass(frozen=True, slots=True)
class LineItem:
    """One purchased product line of a payment order."""

    descriptor: str
    unit_price: Decimal
    quantity: int = 1
    product_id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.quantity < 1:
            raise ValueError("quantity must be at least 1")
        if self.unit_price < 0:
            raise ValueError("unit_price cannot be negative")

    @property
    def total_price(self) -> Decimal:
        return self.unit_price * self.quantity

    @property
    def per_unit_paid(self) -> Decimal:
        """Line total divided across its units."""
        return self.total_price / self.quantity


@dataclass(frozen=True, slots=True)
class BillingIdentity:
    first_name: str = ""
    last_name: str = ""
    email: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True, slots=True)
class PaymentOrder:
    """
    Confirmed payment order from the commerce platform.

    An order without an order_id is malformed input and is rejected at
    construction; there is nothing safe to reconcile against.
    """

    order_id: str
    buyer_id: Optional[str]
    line_items: Tuple[LineItem, ...] = ()
    billing: BillingIdentity = field(default_factory=BillingIdentity)
    order_number: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.order_id or not str(self.order_id).strip():
            raise InvalidOrderError("Order is missing order_id")


@dataclass(frozen=True, slots=True)
class LineItemSlot:
    """A single unit of a line item; `index` is its position in slot order."""

    index: int
    line_item: LineItem


@dataclass(frozen=True, slots=True)
class MatchResult:
    intent: PendingIntent
    slot: LineItemSlot
    paid_amount: Decimal


@dataclass(frozen=True, slots=True)
class MatchOutcome:
    """Matched intents plus the residual unmatched set, both in intent order."""

    matched: List[MatchResult]
    unmatched: List[PendingIntent]
