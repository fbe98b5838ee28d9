# storage/base.py
"""
Persistence contracts the pipeline needs. Implementations:
- storage.memory        (process-local, tests and DB-less runs)
- storage.prisma_store  (Postgres through prisma-client-py)
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol

from core.status import IntentStatus, TransactionStatus
from models.execution import ExecutionContext, TransactionRecord
from models.limits import LimitsUpdate, UserLimits


class IntentStore(Protocol):
    async def create(self, context: ExecutionContext) -> ExecutionContext: ...

    async def find_by_id(self, intent_id: str) -> Optional[ExecutionContext]: ...

    async def update_status(
        self,
        intent_id: str,
        status: IntentStatus,
        *,
        expected: IntentStatus,
        executed_at: Optional[datetime] = None,
        patch: Optional[Dict[str, Any]] = None,
    ) -> ExecutionContext:
        """
        Compare-and-swap: write `status` only if the stored status equals
        `expected`. Raises StaleStatusError otherwise, IntentNotFoundError when
        the row is missing, PersistenceError on storage failure.
        """
        ...


class LimitsStore(Protocol):
    async def get(self, user_id: str) -> UserLimits: ...

    async def configure(self, user_id: str, update: LimitsUpdate) -> UserLimits: ...

    async def increment_spent(self, user_id: str, usd: Decimal, intent_id: str) -> bool:
        """Atomic increment. Returns False when intent_id was already recorded."""
        ...

    async def reset_daily(self, user_id: str, now: datetime) -> UserLimits:
        """Zero the daily total if last_reset_at falls before today's UTC midnight."""
        ...


class TransactionStore(Protocol):
    async def create(self, record: TransactionRecord) -> TransactionRecord: ...

    async def find_by_id(self, transaction_id: str) -> Optional[TransactionRecord]: ...

    async def update_status(
        self,
        transaction_id: str,
        status: TransactionStatus,
        *,
        tx_hash: Optional[str] = None,
        gas_used: Optional[str] = None,
        gas_price: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> TransactionRecord: ...


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)
