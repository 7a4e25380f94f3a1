"""
Transaction manager: dual-write of matched registrations.

For each matched intent:
1. Skip if the authoritative store already holds (order_id, intent_id);
   re-invocations of the reconciler are therefore safe.
2. Insert the registration into the authoritative store with retries.
   Failure is fatal for this intent only and is audited as CMS_INSERT_FAILED;
   no sync is attempted.
3. Sync to the external target through the "external-sync" circuit breaker
   wrapped in retries. Failure leaves the durable record in place, marks it
   sync_status=failed and audits AIRTABLE_SYNC_FAILED (partial success).

Each intent is processed independently; one intent's failure never aborts
or rolls back a sibling.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence
from uuid import uuid4

from config.settings import EXTERNAL_SYNC_BREAKER
from domain.errors import SyncRejectedError
from domain.order import MatchResult
from domain.registration import RegistrationRecord, SyncStatus
from domain.sync_error import SyncErrorType
from domain.time import to_iso_utc, utc_now
from repositories.airtable_repository import SyncResult
from repositories.registration_repository import RegistrationRepository
from services.audit_service import AuditLog
from services.resilience import CircuitBreakerRegistry, RetryPolicy, execute_with_retry

logger = logging.getLogger(__name__)


class SyncTarget(Protocol):
    def upsert(
        self, table: str, fields: Mapping[str, Any], merge_on: Sequence[str] = ()
    ) -> SyncResult: ...


@dataclass(frozen=True, slots=True)
class SaveOutcome:
    """
    Result of saving one matched intent.

    is_full_success: authoritative write and external sync both succeeded
        (or the registration already existed)
    is_partial_success: authoritative write succeeded, external sync did not
    """

    intent_id: str
    is_full_success: bool
    is_partial_success: bool
    registration_id: Optional[str] = None
    already_existed: bool = False
    error: Optional[str] = None

    @property
    def is_failure(self) -> bool:
        return not self.is_full_success and not self.is_partial_success


@dataclass(frozen=True, slots=True)
class BatchSaveResult:
    total: int
    successful: int
    partial: int
    failed: int
    outcomes: List[SaveOutcome] = field(default_factory=list)


def registration_sync_fields(record: RegistrationRecord) -> Dict[str, Any]:
    """Airtable fields for a registration; "Registration ID" is the merge key."""

    aux = record.auxiliary or {}
    return {
        "Registration ID": record.registration_id,
        "Order ID": record.order_id,
        "Player ID": record.player_id,
        "Player Name": aux.get("player_name", ""),
        "Parent ID": record.buyer_id,
        "Sport": record.sport,
        "Division": record.division,
        "Season": record.season,
        "Registration Fee": float(record.fee),
        "Paid": record.paid,
        "Date Paid": to_iso_utc(record.date_paid, name="date_paid"),
    }


class TransactionManager:
    def __init__(
        self,
        registrations: RegistrationRepository,
        sync_target: SyncTarget,
        audit: AuditLog,
        breakers: CircuitBreakerRegistry,
        *,
        retry_policy: RetryPolicy = RetryPolicy(),
        sync_table: str = "All Players by Year",
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._registrations = registrations
        self._sync_target = sync_target
        self._audit = audit
        self._breakers = breakers
        self._retry_policy = retry_policy
        self._sync_table = sync_table
        self._sleep = sleep
        self._clock = clock

    def _retry(self, operation: Callable[[], Any], description: str) -> Any:
        return execute_with_retry(operation, self._retry_policy, description=description, sleep=self._sleep)

    def sync_registration(self, record: RegistrationRecord) -> SyncResult:
        """
        Push one registration to the external target.

        Raises:
            CircuitOpenError, RetriesExhaustedError, SyncRejectedError
        """

        fields = registration_sync_fields(record)

        def attempt() -> SyncResult:
            result = self._sync_target.upsert(self._sync_table, fields, ["Registration ID"])
            if not result.success:
                raise SyncRejectedError(result.error or "sync target rejected the record")
            return result

        return self._retry(
            lambda: self._breakers.execute(EXTERNAL_SYNC_BREAKER, attempt),
            f"sync registration {record.registration_id}",
        )

    def order_has_registrations(self, order_id: str) -> bool:
        return self._retry(
            lambda: self._registrations.has_registrations_for_order(order_id),
            f"check saved registrations for order {order_id}",
        )

    def _set_sync_status(self, registration_id: str, status: SyncStatus) -> None:
        try:
            self._registrations.update_sync_status(registration_id, status)
        except Exception as e:
            logger.error(f"Failed to set sync_status={status.value} on registration {registration_id}: {e}")

    def save_matched(self, match: MatchResult, order_id: str) -> SaveOutcome:
        intent = match.intent

        # Step 0: duplicate prevention across reconciler re-invocations
        try:
            existing = self._retry(
                lambda: self._registrations.find(order_id, intent.intent_id),
                f"look up registration for intent {intent.intent_id}",
            )
        except Exception as e:
            logger.error(f"Duplicate check failed for intent {intent.intent_id} on order {order_id}: {e}")
            self._audit.record(
                order_id,
                SyncErrorType.CMS_INSERT_FAILED,
                f"Duplicate check failed: {e}",
                intent_id=intent.intent_id,
                intent=intent.to_dict(),
            )
            return SaveOutcome(intent_id=intent.intent_id, is_full_success=False,
                               is_partial_success=False, error=str(e))

        if existing is not None:
            logger.info(
                f"Registration {existing.registration_id} already exists for intent "
                f"{intent.intent_id} on order {order_id}; skipping write"
            )
            return SaveOutcome(
                intent_id=intent.intent_id,
                is_full_success=True,
                is_partial_success=False,
                registration_id=existing.registration_id,
                already_existed=True,
            )

        # Step 1: authoritative write
        record = RegistrationRecord.from_match(
            intent,
            registration_id=str(uuid4()),
            order_id=order_id,
            fee=match.paid_amount,
            date_paid=self._clock(),
        )
        try:
            self._retry(
                lambda: self._registrations.insert(record),
                f"insert registration for intent {intent.intent_id}",
            )
        except Exception as e:
            logger.error(f"Authoritative insert failed for intent {intent.intent_id} on order {order_id}: {e}")
            self._audit.record(
                order_id,
                SyncErrorType.CMS_INSERT_FAILED,
                str(e),
                intent_id=intent.intent_id,
                intent=intent.to_dict(),
                paid_amount=str(match.paid_amount),
            )
            return SaveOutcome(intent_id=intent.intent_id, is_full_success=False,
                               is_partial_success=False, error=str(e))

        logger.info(f"Saved registration {record.registration_id} for intent {intent.intent_id}")

        # Step 2: best-effort external sync
        try:
            self.sync_registration(record)
        except Exception as e:
            logger.warning(
                f"External sync failed for registration {record.registration_id} "
                f"(order {order_id}): {e}; record kept for re-sync"
            )
            self._set_sync_status(record.registration_id, SyncStatus.FAILED)
            self._audit.record(
                order_id,
                SyncErrorType.AIRTABLE_SYNC_FAILED,
                str(e),
                intent_id=intent.intent_id,
                registration_id=record.registration_id,
                player_id=intent.player_id,
                player_name=intent.player_name,
                sport=intent.sport,
                division=intent.division,
                season=intent.season,
                error_class=type(e).__name__,
            )
            return SaveOutcome(
                intent_id=intent.intent_id,
                is_full_success=False,
                is_partial_success=True,
                registration_id=record.registration_id,
                error=str(e),
            )

        self._set_sync_status(record.registration_id, SyncStatus.SYNCED)
        return SaveOutcome(
            intent_id=intent.intent_id,
            is_full_success=True,
            is_partial_success=False,
            registration_id=record.registration_id,
        )

    def batch_save_matched(self, matches: Sequence[MatchResult], order_id: str) -> BatchSaveResult:
        outcomes: List[SaveOutcome] = []
        for match in matches:
            try:
                outcome = self.save_matched(match, order_id)
            except Exception as e:
                logger.error(f"Unexpected error saving intent {match.intent.intent_id} on order {order_id}: {e}")
                outcome = SaveOutcome(intent_id=match.intent.intent_id, is_full_success=False,
                                      is_partial_success=False, error=str(e))
            outcomes.append(outcome)

        result = BatchSaveResult(
            total=len(outcomes),
            successful=sum(1 for o in outcomes if o.is_full_success),
            partial=sum(1 for o in outcomes if o.is_partial_success),
            failed=sum(1 for o in outcomes if o.is_failure),
            outcomes=outcomes,
        )
        logger.info(
            f"Batch save for order {order_id}: {result.successful} successful, "
            f"{result.partial} partial, {result.failed} failed of {result.total}"
        )
        return result


__all__ = [
    "BatchSaveResult",
    "SaveOutcome",
    "SyncTarget",
    "TransactionManager",
    "registration_sync_fields",
]
