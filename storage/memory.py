# storage/memory.py
"""
Process-local stores. Contexts are kept as JSON documents so every read
goes through the same serialize/reload path a database would.
"""

from asyncio import Lock
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from core.errors import IntentNotFoundError, PersistenceError, StaleStatusError
from core.status import IntentStatus, TransactionStatus
from models.execution import PATCHABLE_FIELDS, ExecutionContext, TransactionRecord
from models.limits import LimitsUpdate, UserLimits
from models.quotes import utcnow
from storage.base import start_of_day


class InMemoryIntentStore:
    def __init__(self):
        self._rows: Dict[str, str] = {}
        self._lock = Lock()

    async def create(self, context: ExecutionContext) -> ExecutionContext:
        async with self._lock:
            if context.intent_id in self._rows:
                raise PersistenceError(f"Intent {context.intent_id} already exists")
            self._rows[context.intent_id] = context.model_dump_json()
            return ExecutionContext.model_validate_json(self._rows[context.intent_id])

    async def find_by_id(self, intent_id: str) -> Optional[ExecutionContext]:
        async with self._lock:
            raw = self._rows.get(intent_id)
            return ExecutionContext.model_validate_json(raw) if raw else None

    async def update_status(
        self,
        intent_id: str,
        status: IntentStatus,
        *,
        expected: IntentStatus,
        executed_at: Optional[datetime] = None,
        patch: Optional[Dict[str, Any]] = None,
    ) -> ExecutionContext:
        unknown = set(patch or {}) - PATCHABLE_FIELDS
        if unknown:
            raise PersistenceError(f"Unpatchable fields: {sorted(unknown)}")

        async with self._lock:
            raw = self._rows.get(intent_id)
            if raw is None:
                raise IntentNotFoundError(intent_id)
            current = ExecutionContext.model_validate_json(raw)
            if current.status != expected:
                raise StaleStatusError(intent_id, expected.value, current.status.value, status.value)

            current.status = status
            current.updated_at = utcnow()
            if executed_at is not None:
                current.executed_at = executed_at
            for key, value in (patch or {}).items():
                setattr(current, key, value)

            self._rows[intent_id] = current.model_dump_json()
            return ExecutionContext.model_validate_json(self._rows[intent_id])


class InMemoryLimitsStore:
    """
    Recorded intent ids are stamped with the daily window they counted
    toward and kept for that window and the next one, so a retry that
    crosses midnight is still deduplicated.
    """

    def __init__(self):
        self._limits: Dict[str, UserLimits] = {}
        self._recorded: Dict[str, Dict[str, datetime]] = {}
        self._lock = Lock()

    def _row(self, user_id: str) -> UserLimits:
        if user_id not in self._limits:
            self._limits[user_id] = UserLimits(user_id=user_id)
        return self._limits[user_id]

    async def get(self, user_id: str) -> UserLimits:
        async with self._lock:
            return self._row(user_id).model_copy(deep=True)

    async def configure(self, user_id: str, update: LimitsUpdate) -> UserLimits:
        async with self._lock:
            row = self._row(user_id)
            self._limits[user_id] = UserLimits(
                user_id=user_id,
                daily_usd_cap=update.daily_usd_cap,
                max_approval_usd=update.max_approval_usd,
                allowlist=update.allowlist,
                daily_spent_usd=row.daily_spent_usd,
                last_reset_at=row.last_reset_at,
            )
            return self._limits[user_id].model_copy(deep=True)

    async def increment_spent(self, user_id: str, usd: Decimal, intent_id: str) -> bool:
        async with self._lock:
            recorded = self._recorded.setdefault(user_id, {})
            if intent_id in recorded:
                return False
            row = self._row(user_id)
            recorded[intent_id] = row.last_reset_at
            self._limits[user_id] = row.model_copy(
                update={"daily_spent_usd": row.daily_spent_usd + usd}
            )
            return True

    async def reset_daily(self, user_id: str, now: datetime) -> UserLimits:
        async with self._lock:
            row = self._row(user_id)
            if row.last_reset_at < start_of_day(now):
                self._limits[user_id] = row.model_copy(
                    update={"daily_spent_usd": Decimal("0"), "last_reset_at": now}
                )
                self._prune_recorded(user_id, keep_since=row.last_reset_at)
            return self._limits[user_id].model_copy(deep=True)

    def _prune_recorded(self, user_id: str, keep_since: datetime) -> None:
        recorded = self._recorded.get(user_id)
        if not recorded:
            return
        kept = {intent_id: window for intent_id, window in recorded.items() if window >= keep_since}
        if kept:
            self._recorded[user_id] = kept
        else:
            del self._recorded[user_id]


class InMemoryTransactionStore:
    def __init__(self):
        self._rows: Dict[str, TransactionRecord] = {}
        self._lock = Lock()

    async def create(self, record: TransactionRecord) -> TransactionRecord:
        async with self._lock:
            self._rows[record.id] = record.model_copy()
            return record.model_copy()

    async def find_by_id(self, transaction_id: str) -> Optional[TransactionRecord]:
        async with self._lock:
            row = self._rows.get(transaction_id)
            return row.model_copy() if row else None

    async def update_status(
        self,
        transaction_id: str,
        status: TransactionStatus,
        *,
        tx_hash: Optional[str] = None,
        gas_used: Optional[str] = None,
        gas_price: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> TransactionRecord:
        async with self._lock:
            row = self._rows.get(transaction_id)
            if row is None:
                raise PersistenceError(f"Transaction {transaction_id} not found")
            update: Dict[str, Any] = {"status": status.value, "updated_at": utcnow()}
            if tx_hash is not None:
                update["tx_hash"] = tx_hash
            if gas_used is not None:
                update["gas_used"] = gas_used
            if gas_price is not None:
                update["gas_price"] = gas_price
            if error_message is not None:
                update["error_message"] = error_message
            self._rows[transaction_id] = row.model_copy(update=update)
            return self._rows[transaction_id].model_copy()
