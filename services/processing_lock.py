"""
Per-order processing locks and idempotency markers.

The registry is the only mutual-exclusion primitive of the reconciler:
- acquire(order_id) succeeds for exactly one caller until release.
- An order marked processed can never be acquired again.
- Donation sync runs at most once per order.

The default registry is process-wide. A deployment running several
processes must replace it with a shared store offering atomic
claim-with-TTL.
"""

from __future__ import annotations

import logging
import threading
from typing import Set

logger = logging.getLogger(__name__)


class OrderProcessingRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._held: Set[str] = set()
        self._processed: Set[str] = set()
        self._donations_synced: Set[str] = set()

    def acquire(self, order_id: str) -> bool:
        """Claim the processing lock; False if held or the order is already processed."""

        with self._lock:
            if order_id in self._held or order_id in self._processed:
                return False
            self._held.add(order_id)
            return True

    def release(self, order_id: str) -> None:
        with self._lock:
            self._held.discard(order_id)

    def is_locked(self, order_id: str) -> bool:
        with self._lock:
            return order_id in self._held

    def is_processed(self, order_id: str) -> bool:
        with self._lock:
            return order_id in self._processed

    def mark_processed(self, order_id: str) -> None:
        with self._lock:
            self._processed.add(order_id)
        logger.info(f"Order {order_id} marked processed")

    def is_donation_synced(self, order_id: str) -> bool:
        with self._lock:
            return order_id in self._donations_synced

    def set_donation_synced(self, order_id: str) -> None:
        with self._lock:
            self._donations_synced.add(order_id)

    def clear(self) -> None:
        with self._lock:
            self._held.clear()
            self._processed.clear()
            self._donations_synced.clear()


_registry = OrderProcessingRegistry()


def get_processing_registry() -> OrderProcessingRegistry:
    return _registry


def reset_processing_registry() -> None:
    """Test hook: drop every lock and marker."""
    _registry.clear()


__all__ = [
    "OrderProcessingRegistry",
    "get_processing_registry",
    "reset_processing_registry",
]
