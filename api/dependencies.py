"""
Service wiring for the API.

Builds the reconciliation services once per process from Settings. Tests
replace `get_container` through `app.dependency_overrides`.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from config.settings import Settings, get_settings
from repositories.airtable_repository import AirtableSyncTarget
from repositories.pending_registration_repository import PendingRegistrationRepository
from repositories.registration_repository import RegistrationRepository
from repositories.sync_error_repository import SyncErrorRepository
from services.audit_service import AuditLog
from services.backup_store import BackupStoreAdapter
from services.intent_queue import SessionStorageRegistry, get_session_registry
from services.notification_service import LoggingNotifier, Notifier, WebhookNotifier
from services.order_reconciler import OrderReconciler
from services.processing_lock import get_processing_registry
from services.resilience import CircuitBreakerRegistry, RetryPolicy, get_breaker_registry
from services.transaction_manager import TransactionManager


@dataclass
class ServiceContainer:
    reconciler: OrderReconciler
    backup_store: BackupStoreAdapter
    sessions: SessionStorageRegistry
    breakers: CircuitBreakerRegistry


def build_container(settings: Settings) -> ServiceContainer:
    registrations = RegistrationRepository()
    audit = AuditLog(SyncErrorRepository())
    breakers = get_breaker_registry()
    retry_policy = RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        base_delay_ms=settings.retry_base_delay_ms,
    )
    sync_target = AirtableSyncTarget(settings.airtable_api_key or "", settings.airtable_base_id or "")
    notifier: Notifier = (
        WebhookNotifier(settings.alert_webhook_url) if settings.alert_webhook_url else LoggingNotifier()
    )

    backup_store = BackupStoreAdapter(PendingRegistrationRepository(), registrations)
    transactions = TransactionManager(
        registrations,
        sync_target,
        audit,
        breakers,
        retry_policy=retry_policy,
        sync_table=settings.airtable_table,
    )
    reconciler = OrderReconciler(
        backup_store=backup_store,
        transactions=transactions,
        sync_target=sync_target,
        audit=audit,
        notifier=notifier,
        locks=get_processing_registry(),
        breakers=breakers,
        retry_policy=retry_policy,
        donation_products=settings.donation_products,
        donations_table=settings.airtable_donations_table,
    )
    return ServiceContainer(
        reconciler=reconciler,
        backup_store=backup_store,
        sessions=get_session_registry(),
        breakers=breakers,
    )


@lru_cache(maxsize=1)
def get_container() -> ServiceContainer:
    return build_container(get_settings())
