"""
Pytest configuration.

Adds the project root to the Python path so tests can import domain,
repositories, services and api, and provides the shared fixtures that wire
the reconciliation services against in-memory fakes.
"""

import sys
from datetime import timedelta
from decimal import Decimal
from pathlib import Path

import pytest

# Add the project directory (and this directory, for `fakes`) to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))
sys.path.insert(0, str(Path(__file__).parent))

from fakes import (  # noqa: E402
    DONATION_PRODUCT_ID,
    NOW,
    FakeNotifier,
    FakeSupabaseClient,
    FakeSyncTarget,
    ManualClock,
)

from repositories.pending_registration_repository import PendingRegistrationRepository  # noqa: E402
from repositories.registration_repository import RegistrationRepository  # noqa: E402
from repositories.sync_error_repository import SyncErrorRepository  # noqa: E402
from services.audit_service import AuditLog  # noqa: E402
from services.backup_store import BackupStoreAdapter  # noqa: E402
from services.intent_queue import IntentQueue  # noqa: E402
from services.order_reconciler import OrderReconciler  # noqa: E402
from services.processing_lock import OrderProcessingRegistry  # noqa: E402
from services.resilience import CircuitBreakerRegistry, RetryPolicy  # noqa: E402
from services.transaction_manager import TransactionManager  # noqa: E402


@pytest.fixture
def supabase() -> FakeSupabaseClient:
    return FakeSupabaseClient()


@pytest.fixture
def registrations(supabase) -> RegistrationRepository:
    return RegistrationRepository(supabase)


@pytest.fixture
def pending_repo(supabase) -> PendingRegistrationRepository:
    return PendingRegistrationRepository(supabase)


@pytest.fixture
def audit(supabase) -> AuditLog:
    return AuditLog(SyncErrorRepository(supabase), clock=lambda: NOW)


@pytest.fixture
def breaker_clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def breakers(breaker_clock) -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(clock=breaker_clock)


@pytest.fixture
def sync_target() -> FakeSyncTarget:
    return FakeSyncTarget()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def locks() -> OrderProcessingRegistry:
    return OrderProcessingRegistry()


@pytest.fixture
def retry_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay_ms=100)


@pytest.fixture
def sleeps() -> list:
    return []


@pytest.fixture
def transactions(registrations, sync_target, audit, breakers, retry_policy, sleeps) -> TransactionManager:
    return TransactionManager(
        registrations,
        sync_target,
        audit,
        breakers,
        retry_policy=retry_policy,
        sync_table="All Players by Year",
        sleep=sleeps.append,
        clock=lambda: NOW + timedelta(minutes=5),
    )


@pytest.fixture
def backup_store(pending_repo, registrations) -> BackupStoreAdapter:
    return BackupStoreAdapter(pending_repo, registrations, clock=lambda: NOW)


@pytest.fixture
def reconciler(
    backup_store, transactions, sync_target, audit, notifier, locks, breakers, retry_policy, sleeps
) -> OrderReconciler:
    return OrderReconciler(
        backup_store=backup_store,
        transactions=transactions,
        sync_target=sync_target,
        audit=audit,
        notifier=notifier,
        locks=locks,
        breakers=breakers,
        retry_policy=retry_policy,
        donation_products={DONATION_PRODUCT_ID: Decimal("10")},
        donations_table="Donations",
        sleep=sleeps.append,
    )


@pytest.fixture
def session_storage() -> dict:
    return {}


@pytest.fixture
def queue(session_storage) -> IntentQueue:
    return IntentQueue(session_storage)
