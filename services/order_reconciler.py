"""
Order reconciler.

Binds a confirmed payment order to the buyer's queued registration intents
and persists the result exactly once.

State machine:
    START -> LOCK_ACQUIRED -> DONATIONS_PROCESSED -> INTENTS_LOADED -> MATCHED
          -> SAVED -> CLEANED_UP -> DONE
with ABORTED reachable on unrecoverable conditions.

Guarantees:
- An order already marked processed, already holding registrations in the
  authoritative store, or currently locked, is a no-op (DONE). The store
  check survives restarts; the in-process marker does not.
- The processing lock is released on every exit path, including exceptions.
- Aborted runs (no intents recoverable, nothing matched) never mark the
  order processed, so a later invocation can retry recovery.
- Donations sync at most once per order, even when the sync fails. The
  external upsert merges on (order, amount), so a redelivery after a restart
  updates rather than duplicates.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Callable, List, Mapping, Optional, Tuple

from config.settings import DEFAULT_DONATION_PRODUCTS, EXTERNAL_SYNC_BREAKER
from domain.errors import (
    OrderAlreadyProcessedError,
    SyncRejectedError,
    UnmatchedIntentError,
    UnrecoverableDataLossError,
)
from domain.intent import PendingIntent
from domain.order import LineItem, PaymentOrder
from domain.sync_error import SyncErrorType
from repositories.airtable_repository import SyncResult
from services.audit_service import AuditLog
from services.backup_store import BackupStoreAdapter
from services.intent_queue import IntentQueue
from services.intent_source import IntentOrigin, IntentSource, LoadedIntents
from services.matching_service import match_intents
from services.notification_service import Notifier, order_context
from services.processing_lock import OrderProcessingRegistry
from services.resilience import CircuitBreakerRegistry, RetryPolicy, execute_with_retry
from services.transaction_manager import BatchSaveResult, SyncTarget, TransactionManager

logger = logging.getLogger(__name__)

DONATION_MERGE_FIELDS: Tuple[str, ...] = ("Order ID", "Donation Amount")


class ReconcilerState(str, Enum):
    START = "START"
    LOCK_ACQUIRED = "LOCK_ACQUIRED"
    DONATIONS_PROCESSED = "DONATIONS_PROCESSED"
    INTENTS_LOADED = "INTENTS_LOADED"
    MATCHED = "MATCHED"
    SAVED = "SAVED"
    CLEANED_UP = "CLEANED_UP"
    DONE = "DONE"
    ABORTED = "ABORTED"


@dataclass(slots=True)
class ReconciliationOutcome:
    order_id: str
    history: List[ReconcilerState] = field(default_factory=lambda: [ReconcilerState.START])
    origin: IntentOrigin = IntentOrigin.NONE
    matched_count: int = 0
    unmatched: List[PendingIntent] = field(default_factory=list)
    batch: Optional[BatchSaveResult] = None
    reason: Optional[str] = None

    @property
    def state(self) -> ReconcilerState:
        return self.history[-1]

    @property
    def aborted(self) -> bool:
        return self.state is ReconcilerState.ABORTED

    def reached(self, state: ReconcilerState) -> bool:
        return state in self.history

    def advance(self, state: ReconcilerState) -> None:
        logger.debug(f"Order {self.order_id}: {self.state.value} -> {state.value}")
        self.history.append(state)


class OrderReconciler:
    def __init__(
        self,
        *,
        backup_store: BackupStoreAdapter,
        transactions: TransactionManager,
        sync_target: SyncTarget,
        audit: AuditLog,
        notifier: Notifier,
        locks: OrderProcessingRegistry,
        breakers: CircuitBreakerRegistry,
        retry_policy: RetryPolicy = RetryPolicy(),
        donation_products: Mapping[str, Decimal] = DEFAULT_DONATION_PRODUCTS,
        donations_table: str = "Donations",
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._backup_store = backup_store
        self._transactions = transactions
        self._sync_target = sync_target
        self._audit = audit
        self._notifier = notifier
        self._locks = locks
        self._breakers = breakers
        self._retry_policy = retry_policy
        self._donation_products = dict(donation_products)
        self._donations_table = donations_table
        self._sleep = sleep

    def reconcile(self, order: PaymentOrder, queue: IntentQueue) -> ReconciliationOutcome:
        """
        Reconcile `order` against the buyer's intents.

        Returns the outcome with its state history. Unexpected exceptions
        propagate after the lock is released.
        """

        order_id = order.order_id
        outcome = ReconciliationOutcome(order_id=order_id)

        if (
            self._locks.is_processed(order_id)
            or self._has_saved_registrations(order_id)
            or not self._locks.acquire(order_id)
        ):
            skipped = OrderAlreadyProcessedError(order_id)
            logger.warning(f"{skipped}, skipping")
            outcome.reason = str(skipped)
            outcome.advance(ReconcilerState.DONE)
            return outcome

        outcome.advance(ReconcilerState.LOCK_ACQUIRED)
        logger.info(f"Reconciling order {order_id} (order number {order.order_number})")

        loaded: Optional[LoadedIntents] = None
        completed = False
        try:
            self._process_donations(order)
            outcome.advance(ReconcilerState.DONATIONS_PROCESSED)

            loaded = IntentSource(queue, self._backup_store).load(order)
            outcome.origin = loaded.origin
            if loaded.fallback_error:
                self._audit.record(
                    order_id,
                    SyncErrorType.CMS_RETRIEVAL_FAILED,
                    "Failed to retrieve pending registrations from backup store",
                    error=loaded.fallback_error,
                    **order_context(order),
                )

            if not loaded.intents:
                self._handle_data_loss(order)
                outcome.reason = "no registration data recoverable"
                outcome.advance(ReconcilerState.ABORTED)
                return outcome
            outcome.advance(ReconcilerState.INTENTS_LOADED)

            matching = match_intents(loaded.intents, order.line_items)
            outcome.matched_count = len(matching.matched)
            outcome.unmatched = list(matching.unmatched)
            for intent in matching.unmatched:
                self._audit.record(
                    order_id,
                    SyncErrorType.UNMATCHED_REGISTRATION,
                    str(UnmatchedIntentError(intent.intent_id, intent.division)),
                    intent_id=intent.intent_id,
                    intent=intent.to_dict(),
                    line_items=[item.descriptor for item in order.line_items],
                )

            if not matching.matched:
                logger.error(f"No intents matched line items on order {order_id}")
                outcome.reason = "no intents matched"
                outcome.advance(ReconcilerState.ABORTED)
                return outcome
            outcome.advance(ReconcilerState.MATCHED)

            outcome.batch = self._transactions.batch_save_matched(matching.matched, order_id)
            outcome.advance(ReconcilerState.SAVED)

            self._cleanup(queue, loaded, [m.intent for m in matching.matched])
            outcome.advance(ReconcilerState.CLEANED_UP)

            self._locks.mark_processed(order_id)
            completed = True
            outcome.advance(ReconcilerState.DONE)
            logger.info(
                f"Order {order_id} reconciled from {loaded.origin.value}: "
                f"{outcome.batch.successful} successful, {outcome.batch.partial} partial, "
                f"{outcome.batch.failed} failed, {len(outcome.unmatched)} unmatched"
            )
            return outcome
        except Exception as e:
            logger.critical(f"Error during reconciliation of order {order_id}: {e}")
            raise
        finally:
            if not completed and loaded is not None and loaded.backup_record_id:
                self._backup_store.release_claim(loaded.backup_record_id)
            self._locks.release(order_id)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _has_saved_registrations(self, order_id: str) -> bool:
        """
        Durable processed marker: registrations already saved for the order.

        A failed lookup is logged and treated as "not saved"; the per-intent
        duplicate check still prevents double writes.
        """

        try:
            saved = self._transactions.order_has_registrations(order_id)
        except Exception as e:
            logger.warning(f"Could not check saved registrations for order {order_id}: {e}")
            return False
        if saved:
            self._locks.mark_processed(order_id)
        return saved

    def _donation_items(self, order: PaymentOrder) -> List[LineItem]:
        return [
            item for item in order.line_items
            if item.product_id is not None and item.product_id in self._donation_products
        ]

    def _sync_donation(self, table_fields: Mapping[str, object]) -> SyncResult:
        """
        Upsert one donation record. Records merge on (order, amount): a
        redelivered order updates its existing donation record.

        Raises:
            CircuitOpenError, RetriesExhaustedError, SyncRejectedError
        """

        def attempt() -> SyncResult:
            result = self._sync_target.upsert(self._donations_table, table_fields, DONATION_MERGE_FIELDS)
            if not result.success:
                raise SyncRejectedError(result.error or "sync target rejected the donation")
            return result

        return execute_with_retry(
            lambda: self._breakers.execute(EXTERNAL_SYNC_BREAKER, attempt),
            self._retry_policy,
            description="donation sync",
            sleep=self._sleep,
        )

    def _process_donations(self, order: PaymentOrder) -> None:
        order_id = order.order_id
        if self._locks.is_donation_synced(order_id):
            logger.info(f"Donations for order {order_id} already synced, skipping")
            return

        items = self._donation_items(order)
        if not items:
            return

        donor_name = order.billing.full_name
        donor_email = order.billing.email

        for item in items:
            amount = self._donation_products[item.product_id] * item.quantity
            fields = {
                "Your Name": donor_name,
                "Donation Amount": float(amount),
                "Your Email": donor_email,
                "Source": "Donation at Registration",
                "Order ID": order_id,
            }
            logger.info(f"Donation of {amount} found on order {order_id}")
            try:
                self._sync_donation(fields)
            except SyncRejectedError as e:
                logger.error(f"Donation sync failed for order {order_id}: {e}")
                self._audit.record(
                    order_id,
                    SyncErrorType.DONATION_SYNC_FAILED,
                    str(e),
                    amount=str(amount),
                    donor_name=donor_name,
                    donor_email=donor_email,
                    donation_record=fields,
                )
                continue
            except Exception as e:
                logger.error(f"Donation sync raised for order {order_id}: {e}")
                self._audit.record(
                    order_id,
                    SyncErrorType.DONATION_SYNC_EXCEPTION,
                    str(e),
                    amount=str(amount),
                    donor_name=donor_name,
                    donor_email=donor_email,
                    error_class=type(e).__name__,
                )
                continue

            logger.info(f"Donation of {amount} synced for order {order_id}")

        # Set even after failures: a failed donation sync is not retried.
        self._locks.set_donation_synced(order_id)

    def _handle_data_loss(self, order: PaymentOrder) -> None:
        context = order_context(order)
        error = UnrecoverableDataLossError(order.order_id, order.buyer_id)
        logger.critical(f"NO REGISTRATION DATA FOUND: {error}")
        self._audit.record(
            order.order_id,
            SyncErrorType.NO_REGISTRATION_DATA,
            str(error),
            **context,
        )
        try:
            self._notifier.notify_data_loss(order, context)
        except Exception as e:
            logger.error(f"Data-loss notification failed for order {order.order_id}: {e}")

    def _cleanup(self, queue: IntentQueue, loaded: LoadedIntents, matched: List[PendingIntent]) -> None:
        remaining = queue.remove(intent.identity for intent in matched)
        logger.info(f"Session cleanup complete, {len(remaining)} intents remain queued")

        if loaded.origin is IntentOrigin.BACKUP and loaded.backup_record_id:
            self._backup_store.complete(loaded.backup_record_id)


__all__ = ["OrderReconciler", "ReconcilerState", "ReconciliationOutcome"]
