"""
Tests for `services/order_reconciler.py`.

Covers:
- Happy path through every state, queue drained, order marked processed.
- Re-invocation and concurrent invocation are no-ops.
- Unrecoverable data loss notifies once and leaves the order unmarked.
- Backup recovery marks the claimed record completed; aborted runs release it.
- The processing lock is released even when a step raises.
- Donations sync at most once per order.
- Unmatched intents stay queued and are audited.
"""

from __future__ import annotations

import json
from datetime import timedelta
from decimal import Decimal

import pytest

from domain.order import BillingIdentity, LineItem, PaymentOrder
from fakes import DONATION_PRODUCT_ID, NOW, make_intent
from repositories.airtable_repository import SyncResult
from config.settings import EXTERNAL_SYNC_BREAKER
from services.intent_queue import IntentQueue
from services.intent_source import IntentOrigin
from services.order_reconciler import OrderReconciler, ReconcilerState
from services.processing_lock import OrderProcessingRegistry

REGISTRATIONS = "season_registrations"
PENDING = "pending_registrations"
SYNC_ERRORS = "airtable_sync_errors"

FULL_RUN = [
    ReconcilerState.START,
    ReconcilerState.LOCK_ACQUIRED,
    ReconcilerState.DONATIONS_PROCESSED,
    ReconcilerState.INTENTS_LOADED,
    ReconcilerState.MATCHED,
    ReconcilerState.SAVED,
    ReconcilerState.CLEANED_UP,
    ReconcilerState.DONE,
]


def _order(*items: LineItem, order_id: str = "order-1", buyer_id: str = "buyer-1") -> PaymentOrder:
    return PaymentOrder(
        order_id=order_id,
        buyer_id=buyer_id,
        line_items=tuple(items),
        billing=BillingIdentity(first_name="Alex", last_name="Rivera", email="alex@example.com"),
        order_number="10042",
    )


def _majors(quantity: int = 1) -> LineItem:
    return LineItem(descriptor="Baseball Majors - 2026.1", unit_price=Decimal("150"), quantity=quantity)


def _donation(quantity: int = 1) -> LineItem:
    return LineItem(descriptor="Donation", unit_price=Decimal("10"), quantity=quantity, product_id=DONATION_PRODUCT_ID)


def _error_types(supabase) -> list:
    return [row["error_type"] for row in supabase.rows(SYNC_ERRORS)]


def test_happy_path(reconciler, queue, supabase, locks) -> None:
    """Verify a queued intent flows through every state and the order is marked processed."""

    queue.add(make_intent("Majors"))

    outcome = reconciler.reconcile(_order(_majors()), queue)

    assert outcome.history == FULL_RUN
    assert outcome.origin is IntentOrigin.SESSION
    assert outcome.matched_count == 1
    assert outcome.batch.successful == 1
    rows = supabase.rows(REGISTRATIONS)
    assert len(rows) == 1
    assert rows[0]["fee"] == "150"
    assert queue.get() == []
    assert locks.is_processed("order-1")
    assert not locks.is_locked("order-1")


def test_second_invocation_is_a_no_op(reconciler, queue, supabase, sync_target) -> None:
    """Verify re-sending a processed order writes nothing and leaves the queue alone."""

    queue.add(make_intent("Majors"))
    order = _order(_majors())
    reconciler.reconcile(order, queue)
    queue.add(make_intent("Majors"))

    again = reconciler.reconcile(order, queue)

    assert again.history == [ReconcilerState.START, ReconcilerState.DONE]
    assert len(supabase.rows(REGISTRATIONS)) == 1
    assert len(sync_target.calls) == 1
    assert len(queue.get()) == 1


def test_concurrent_invocation_exits_without_writing(reconciler, queue, supabase, sync_target) -> None:
    """Verify an invocation that finds the lock held exits immediately."""

    queue.add(make_intent("Majors"))
    order = _order(_majors())
    nested = []

    def reenter(table, fields):
        nested.append(reconciler.reconcile(order, queue))
        return SyncResult(success=True, record_id="rec1")

    sync_target.behavior = reenter

    outcome = reconciler.reconcile(order, queue)

    assert outcome.state is ReconcilerState.DONE
    assert len(nested) == 1
    assert nested[0].history == [ReconcilerState.START, ReconcilerState.DONE]
    assert len(supabase.rows(REGISTRATIONS)) == 1


def test_data_loss_notifies_once_and_leaves_order_unmarked(reconciler, queue, supabase, notifier, locks) -> None:
    """Verify a paid order with no recoverable intents alerts once and stays retryable."""

    outcome = reconciler.reconcile(_order(_majors()), queue)

    assert outcome.aborted
    assert not outcome.reached(ReconcilerState.INTENTS_LOADED)
    assert len(notifier.alerts) == 1
    alerted_order, context = notifier.alerts[0]
    assert alerted_order.order_id == "order-1"
    assert context["buyer_email"] == "alex@example.com"
    assert context["line_items"][0]["descriptor"] == "Baseball Majors - 2026.1"
    assert _error_types(supabase) == ["NO_REGISTRATION_DATA"]
    assert not locks.is_processed("order-1")
    assert not locks.is_locked("order-1")


def test_data_loss_without_buyer_id(reconciler, queue, notifier) -> None:
    outcome = reconciler.reconcile(_order(_majors(), buyer_id=None), queue)

    assert outcome.aborted
    assert len(notifier.alerts) == 1


def test_backup_retrieval_failure_is_audited(reconciler, queue, supabase, notifier) -> None:
    """Verify a backup store failure is audited before escalating as data loss."""

    supabase.fail_next(PENDING, "select", RuntimeError("database unavailable"))

    outcome = reconciler.reconcile(_order(_majors()), queue)

    assert outcome.aborted
    assert _error_types(supabase) == ["CMS_RETRIEVAL_FAILED", "NO_REGISTRATION_DATA"]
    assert len(notifier.alerts) == 1


def test_recovery_from_backup_completes_record(reconciler, queue, pending_repo, supabase, locks) -> None:
    """Verify intents recovered from the backup store mark the record completed."""

    record = pending_repo.insert("buyer-1", [make_intent("Majors")], NOW - timedelta(minutes=10))

    outcome = reconciler.reconcile(_order(_majors()), queue)

    assert outcome.history == FULL_RUN
    assert outcome.origin is IntentOrigin.BACKUP
    assert len(supabase.rows(REGISTRATIONS)) == 1
    assert supabase.rows(PENDING)[0]["record_id"] == record.record_id
    assert supabase.rows(PENDING)[0]["status"] == "completed"
    assert locks.is_processed("order-1")


def test_expired_backup_is_data_loss(reconciler, queue, pending_repo, supabase, notifier) -> None:
    pending_repo.insert("buyer-1", [make_intent("Majors")], NOW - timedelta(hours=3))

    outcome = reconciler.reconcile(_order(_majors()), queue)

    assert outcome.aborted
    assert len(notifier.alerts) == 1
    assert supabase.rows(REGISTRATIONS) == []


def test_zero_matches_aborts_and_releases_claim(reconciler, queue, pending_repo, supabase, locks) -> None:
    """Verify an abort after claiming a backup returns it to pending."""

    pending_repo.insert("buyer-1", [make_intent("Juniors")], NOW - timedelta(minutes=10))

    outcome = reconciler.reconcile(_order(_majors()), queue)

    assert outcome.aborted
    assert outcome.reached(ReconcilerState.INTENTS_LOADED)
    assert not outcome.reached(ReconcilerState.MATCHED)
    assert supabase.rows(PENDING)[0]["status"] == "pending"
    assert _error_types(supabase) == ["UNMATCHED_REGISTRATION"]
    assert not locks.is_processed("order-1")
    assert not locks.is_locked("order-1")


def test_lock_released_when_a_step_raises(reconciler, queue, pending_repo, supabase, locks, monkeypatch) -> None:
    """Verify the processing lock and backup claim are released when a step raises."""

    pending_repo.insert("buyer-1", [make_intent("Majors")], NOW - timedelta(minutes=10))

    def explode(matches, order_id):
        raise RuntimeError("unexpected")

    monkeypatch.setattr(reconciler._transactions, "batch_save_matched", explode)

    with pytest.raises(RuntimeError):
        reconciler.reconcile(_order(_majors()), queue)

    assert not locks.is_locked("order-1")
    assert not locks.is_processed("order-1")
    assert supabase.rows(PENDING)[0]["status"] == "pending"


def test_partial_sync_still_completes(reconciler, queue, sync_target, supabase, locks) -> None:
    queue.add(make_intent("Majors"))
    sync_target.behavior = lambda table, fields: SyncResult(success=False, error="INVALID_VALUE")

    outcome = reconciler.reconcile(_order(_majors()), queue)

    assert outcome.state is ReconcilerState.DONE
    assert outcome.batch.partial == 1
    assert supabase.rows(REGISTRATIONS)[0]["sync_status"] == "failed"
    assert queue.get() == []
    assert locks.is_processed("order-1")


def test_unmatched_intents_stay_queued(reconciler, queue, supabase) -> None:
    """Verify intents without a paid slot are audited and remain queued."""

    matched = make_intent("Majors", "player-1")
    leftover = make_intent("Juniors", "player-2")
    queue.set([matched, leftover])

    outcome = reconciler.reconcile(_order(_majors()), queue)

    assert outcome.state is ReconcilerState.DONE
    assert outcome.unmatched == [leftover]
    assert queue.get() == [leftover]
    assert _error_types(supabase) == ["UNMATCHED_REGISTRATION"]
    assert supabase.rows(SYNC_ERRORS)[0]["registration_id"] == leftover.intent_id


def test_donation_synced_once(reconciler, queue, sync_target) -> None:
    queue.add(make_intent("Majors"))
    order = _order(_majors(), _donation(quantity=2))

    reconciler.reconcile(order, queue)

    donations = sync_target.calls_for("Donations")
    assert len(donations) == 1
    assert donations[0]["Donation Amount"] == 20.0
    assert donations[0]["Your Name"] == "Alex Rivera"
    assert donations[0]["Order ID"] == "order-1"


def test_failed_donation_is_not_retried(reconciler, queue, sync_target, supabase, locks) -> None:
    """Verify a failed donation sync is audited once and never repeated for the order."""

    def reject_donations(table, fields):
        if table == "Donations":
            return SyncResult(success=False, error="INVALID_VALUE")
        return SyncResult(success=True, record_id="rec1")

    sync_target.behavior = reject_donations
    order = _order(_majors(), _donation())

    # First run aborts (nothing queued) after attempting the donation
    first = reconciler.reconcile(order, queue)
    assert first.aborted
    assert locks.is_donation_synced("order-1")

    queue.add(make_intent("Majors"))
    second = reconciler.reconcile(order, queue)

    assert second.state is ReconcilerState.DONE
    assert len(sync_target.calls_for("Donations")) == 1
    failures = [row for row in supabase.rows(SYNC_ERRORS) if row["error_type"] == "DONATION_SYNC_FAILED"]
    assert len(failures) == 1
    assert json.loads(failures[0]["error_details"])["amount"] == "10"


def _restarted(backup_store, transactions, sync_target, audit, notifier, breakers, retry_policy, sleeps):
    """A reconciler with fresh in-process state over the same stores."""
    return OrderReconciler(
        backup_store=backup_store,
        transactions=transactions,
        sync_target=sync_target,
        audit=audit,
        notifier=notifier,
        locks=OrderProcessingRegistry(),
        breakers=breakers,
        retry_policy=retry_policy,
        donation_products={DONATION_PRODUCT_ID: Decimal("10")},
        sleep=sleeps.append,
    )


def test_redelivery_after_restart_is_a_no_op(
    reconciler, queue, pending_repo, supabase, notifier, sync_target,
    backup_store, transactions, audit, breakers, retry_policy, sleeps,
) -> None:
    """Verify saved registrations mark the order processed even when in-process state is gone."""

    pending_repo.insert("buyer-1", [make_intent("Majors")], NOW - timedelta(minutes=10))
    order = _order(_majors(), _donation())
    assert reconciler.reconcile(order, queue).state is ReconcilerState.DONE

    restarted = _restarted(backup_store, transactions, sync_target, audit, notifier, breakers, retry_policy, sleeps)
    second = restarted.reconcile(order, IntentQueue({}))

    assert second.history == [ReconcilerState.START, ReconcilerState.DONE]
    assert notifier.alerts == []
    assert _error_types(supabase) == []
    assert len(sync_target.calls_for("Donations")) == 1
    assert len(supabase.rows(REGISTRATIONS)) == 1


def test_donation_upsert_merges_on_order_and_amount(
    reconciler, queue, sync_target,
    backup_store, transactions, audit, notifier, breakers, retry_policy, sleeps,
) -> None:
    """Verify a donation resent after a restart is merged into the existing record."""

    order = _order(_donation())
    reconciler.reconcile(order, queue)

    restarted = _restarted(backup_store, transactions, sync_target, audit, notifier, breakers, retry_policy, sleeps)
    restarted.reconcile(order, IntentQueue({}))

    donation_merges = [
        merge for (table, _), merge in zip(sync_target.calls, sync_target.merge_keys) if table == "Donations"
    ]
    assert donation_merges == [("Order ID", "Donation Amount")] * 2


def test_rejected_donation_counts_as_breaker_failure(reconciler, queue, sync_target, supabase, breakers) -> None:
    """Verify a rejected donation is audited and recorded as a failure by the breaker."""

    sync_target.behavior = lambda table, fields: SyncResult(success=False, error="INVALID_VALUE")

    reconciler.reconcile(_order(_donation()), queue)

    assert breakers.get(EXTERNAL_SYNC_BREAKER).failure_count == 1
    failures = [row for row in supabase.rows(SYNC_ERRORS) if row["error_type"] == "DONATION_SYNC_FAILED"]
    assert len(failures) == 1
    assert "INVALID_VALUE" in failures[0]["error_message"]
