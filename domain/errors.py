"""
Domain: reconciliation error taxonomy.

Every failure the reconciliation core raises or records derives from
ReconciliationError so callers can tell core failures apart from bugs.

- TransientDependencyError: retried by the resilient executor.
- CircuitOpenError: fast-fail, never retried within the same attempt.
- DuplicateIntentError / OrderAlreadyProcessedError: benign no-ops.
- RetriesExhaustedError: surfaced; becomes a partial or failed result.
- UnrecoverableDataLossError: paid order with no recoverable intents.
- UnmatchedIntentError: intent without a paid slot; logged, not escalated.
- InvalidOrderError: malformed inbound order; fatal, non-retryable.
"""

from __future__ import annotations

from typing import Optional


class ReconciliationError(Exception):
    """Base class for every error raised by the reconciliation core."""


class TransientDependencyError(ReconciliationError):
    """A dependency failed in a way that may succeed on retry (network, timeout, 5xx)."""

    def __init__(self, dependency: str, message: str):
        self.dependency = dependency
        super().__init__(f"{dependency}: {message}")


class CircuitOpenError(ReconciliationError):
    """Raised without calling the dependency while its breaker is OPEN."""

    def __init__(self, name: str, retry_after_seconds: float):
        self.name = name
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            f"Circuit '{name}' is open; next attempt in {retry_after_seconds:.1f}s"
        )


class RetriesExhaustedError(ReconciliationError):
    """All retry attempts failed; wraps the last error."""

    def __init__(self, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Retries exhausted after {attempts} attempts: {last_error}")


class SyncRejectedError(ReconciliationError):
    """The external sync target answered but refused the record."""


class DuplicateIntentError(ReconciliationError):
    """An intent with the same (player, season, sport) identity is already queued."""

    def __init__(self, player_id: str, season: str, sport: str):
        self.player_id = player_id
        self.season = season
        self.sport = sport
        super().__init__(
            f"Duplicate intent for player {player_id} ({sport}, season {season})"
        )


class OrderAlreadyProcessedError(ReconciliationError):
    """The order was already reconciled or is being reconciled right now."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id} already processed or in progress")


class UnrecoverableDataLossError(ReconciliationError):
    """A paid order has no recoverable intents in either the queue or the backup store."""

    def __init__(self, order_id: str, buyer_id: Optional[str]):
        self.order_id = order_id
        self.buyer_id = buyer_id
        super().__init__(
            f"No registration data recoverable for order {order_id} (buyer {buyer_id})"
        )


class UnmatchedIntentError(ReconciliationError):
    """An intent found no paid line-item slot for its division."""

    def __init__(self, intent_id: str, division: str):
        self.intent_id = intent_id
        self.division = division
        super().__init__(f"Intent {intent_id} has no paid slot for division '{division}'")


class InvalidOrderError(ReconciliationError):
    """The inbound order is malformed or missing required fields."""


__all__ = [
    "ReconciliationError",
    "TransientDependencyError",
    "CircuitOpenError",
    "RetriesExhaustedError",
    "SyncRejectedError",
    "DuplicateIntentError",
    "OrderAlreadyProcessedError",
    "UnrecoverableDataLossError",
    "UnmatchedIntentError",
    "InvalidOrderError",
]
