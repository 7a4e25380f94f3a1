"""
In-memory stand-ins for external collaborators used by the tests.

FakeSupabaseClient implements the subset of the supabase-py query builder
the repositories use, so repositories run unmodified against it.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from domain.intent import PendingIntent
from domain.order import PaymentOrder
from repositories.airtable_repository import SyncResult

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

DONATION_PRODUCT_ID = "c8faba52-947c-4c0e-ae02-58406cfe5202"


def _comparable(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    return value


@dataclass
class FakeResponse:
    data: List[dict]
    error: Any = None


class FakeQuery:
    def __init__(self, client: "FakeSupabaseClient", table: str):
        self._client = client
        self._table = table
        self._op = "select"
        self._payload: Any = None
        self._filters: List[Callable[[dict], bool]] = []
        self._order: Optional[Tuple[str, bool]] = None
        self._limit: Optional[int] = None

    def select(self, *columns: str, **kwargs: Any) -> "FakeQuery":
        self._op = "select"
        return self

    def insert(self, payload: Union[dict, List[dict]]) -> "FakeQuery":
        self._op = "insert"
        self._payload = payload
        return self

    def update(self, payload: dict) -> "FakeQuery":
        self._op = "update"
        self._payload = payload
        return self

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def gte(self, column: str, value: Any) -> "FakeQuery":
        self._filters.append(lambda row: _comparable(row.get(column)) >= _comparable(value))
        return self

    def lte(self, column: str, value: Any) -> "FakeQuery":
        self._filters.append(lambda row: _comparable(row.get(column)) <= _comparable(value))
        return self

    def in_(self, column: str, values: Sequence[Any]) -> "FakeQuery":
        allowed = list(values)
        self._filters.append(lambda row: row.get(column) in allowed)
        return self

    def order(self, column: str, desc: bool = False) -> "FakeQuery":
        self._order = (column, desc)
        return self

    def limit(self, count: int) -> "FakeQuery":
        self._limit = count
        return self

    def _matching(self, rows: List[dict]) -> List[dict]:
        return [row for row in rows if all(check(row) for check in self._filters)]

    def execute(self) -> FakeResponse:
        self._client.calls.append((self._table, self._op))
        failure = self._client.pop_failure(self._table, self._op)
        if failure is not None:
            raise failure

        rows = self._client.tables.setdefault(self._table, [])

        if self._op == "insert":
            new_rows = self._payload if isinstance(self._payload, list) else [self._payload]
            for row in new_rows:
                rows.append(copy.deepcopy(row))
            return FakeResponse(data=copy.deepcopy(new_rows))

        if self._op == "update":
            updated = []
            for row in self._matching(rows):
                row.update(copy.deepcopy(self._payload))
                updated.append(copy.deepcopy(row))
            return FakeResponse(data=updated)

        result = self._matching(rows)
        if self._order is not None:
            column, desc = self._order
            result = sorted(result, key=lambda row: _comparable(row.get(column)), reverse=desc)
        if self._limit is not None:
            result = result[: self._limit]
        return FakeResponse(data=copy.deepcopy(result))


class FakeSupabaseClient:
    def __init__(self) -> None:
        self.tables: Dict[str, List[dict]] = {}
        self.calls: List[Tuple[str, str]] = []
        self._failures: Dict[Tuple[str, str], List[BaseException]] = {}

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def fail_next(self, table: str, op: str, error: BaseException, times: int = 1) -> None:
        self._failures.setdefault((table, op), []).extend([error] * times)

    def pop_failure(self, table: str, op: str) -> Optional[BaseException]:
        queued = self._failures.get((table, op))
        if queued:
            return queued.pop(0)
        return None

    def rows(self, table: str) -> List[dict]:
        return self.tables.get(table, [])


class FakeSyncTarget:
    """
    Records upserts. `behavior` decides each call's result: return a
    SyncResult or raise; the default is success.
    """

    def __init__(self) -> None:
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.merge_keys: List[Tuple[str, ...]] = []
        self.behavior: Callable[[str, Mapping[str, Any]], SyncResult] = (
            lambda table, fields: SyncResult(success=True, record_id="rec123")
        )

    def upsert(self, table: str, fields: Mapping[str, Any], merge_on: Sequence[str] = ()) -> SyncResult:
        self.calls.append((table, dict(fields)))
        self.merge_keys.append(tuple(merge_on))
        return self.behavior(table, fields)

    def calls_for(self, table: str) -> List[Dict[str, Any]]:
        return [fields for called_table, fields in self.calls if called_table == table]


@dataclass
class FakeNotifier:
    alerts: List[Tuple[PaymentOrder, Dict[str, Any]]] = field(default_factory=list)

    def notify_data_loss(self, order: PaymentOrder, context: Mapping[str, Any]) -> None:
        self.alerts.append((order, dict(context)))


class ManualClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_intent(
    division: str = "Majors",
    player_id: str = "player-1",
    *,
    buyer_id: str = "buyer-1",
    sport: str = "Baseball",
    season: str = "2026.1",
    fee: str = "150",
    submitted_at: datetime = NOW,
    player_name: str = "Sam Rivera",
) -> PendingIntent:
    return PendingIntent.create(
        buyer_id=buyer_id,
        player_id=player_id,
        division=division,
        sport=sport,
        season=season,
        computed_fee=Decimal(fee),
        auxiliary={"player_name": player_name},
        submitted_at=submitted_at,
    )
