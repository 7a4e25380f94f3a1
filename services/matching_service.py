"""
Matching of pending intents to paid order line items.

Algorithm (greedy, single pass, order sensitive):
1. Expand line items into unit slots in source order, `quantity` slots each.
2. For each intent in list order, bind it to the first unused slot whose
   line-item descriptor contains the intent's division label.
3. Intents with no qualifying slot are returned as unmatched; they are never
   dropped.

When one division label is a substring of another ("Majors" vs
"Baseball Majors"), the first qualifying slot in slot order wins.
"""

from __future__ import annotations

import logging
from typing import List, Sequence

from domain.intent import PendingIntent
from domain.order import LineItem, LineItemSlot, MatchOutcome, MatchResult

logger = logging.getLogger(__name__)


def expand_slots(line_items: Sequence[LineItem]) -> List[LineItemSlot]:
    slots: List[LineItemSlot] = []
    for line_item in line_items:
        for _ in range(line_item.quantity):
            slots.append(LineItemSlot(index=len(slots), line_item=line_item))
    return slots


def match_intents(intents: Sequence[PendingIntent], line_items: Sequence[LineItem]) -> MatchOutcome:
    """
    Assign each intent to at most one paid slot.

    Example:
        outcome = match_intents(
            [intent_for("Majors")],
            [LineItem(descriptor="Baseball Majors - 2026.1", unit_price=Decimal("150"))],
        )
        # outcome.matched[0].paid_amount == Decimal("150"), outcome.unmatched == []
    """

    slots = expand_slots(line_items)
    logger.debug(f"Built {len(slots)} slots from {len(line_items)} line items")

    used = [False] * len(slots)
    matched: List[MatchResult] = []
    unmatched: List[PendingIntent] = []

    for intent in intents:
        for slot in slots:
            if used[slot.index] or intent.division not in slot.line_item.descriptor:
                continue
            used[slot.index] = True
            matched.append(MatchResult(
                intent=intent,
                slot=slot,
                paid_amount=slot.line_item.per_unit_paid,
            ))
            logger.debug(
                f"Matched intent {intent.intent_id} ({intent.division}) "
                f"to slot {slot.index} '{slot.line_item.descriptor}'"
            )
            break
        else:
            unmatched.append(intent)
            logger.warning(
                f"Unmatched intent {intent.intent_id}: player {intent.player_id}, "
                f"division '{intent.division}', sport {intent.sport}"
            )

    logger.info(f"Matching complete: {len(matched)} matched, {len(unmatched)} unmatched")
    return MatchOutcome(matched=matched, unmatched=unmatched)


__all__ = ["expand_slots", "match_intents"]
