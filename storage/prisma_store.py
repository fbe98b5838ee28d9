# FILE: storage/prisma_store.py
"""
Prisma-backed stores

- Intents: compare-and-swap status writes via update_many(where id + status)
- Limits: atomic SQL increment inside an interactive transaction,
  idempotent per intent through the spend_records primary key
- Transactions: reporting rows for monitor_transaction
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from prisma import Json, Prisma
from prisma import errors as prisma_errors

from core.errors import IntentNotFoundError, PersistenceError, StaleStatusError
from core.status import IntentStatus, TransactionStatus
from models.execution import PATCHABLE_FIELDS, ExecutionContext, TransactionRecord
from models.limits import LimitsUpdate, UserLimits
from storage.base import start_of_day

logger = logging.getLogger("prisma_store")

_JSON_FIELDS = ("quote", "snapshot", "preview", "transaction")


# -----------------------------
# Helper: context <-> row
# -----------------------------
def _to_json(model: Any) -> Any:
    return Json(model.model_dump(mode="json"))


def _context_to_row(context: ExecutionContext) -> Dict[str, Any]:
    row: Dict[str, Any] = {
        "id": context.intent_id,
        "user_id": context.user_id,
        "intent_type": context.intent.type,
        "intent_json": Json(context.intent.model_dump(mode="json")),
        "status": context.status.value,
        "transaction_id": context.transaction_id,
        "tx_hash": context.tx_hash,
        "error_message": context.error,
        "created_at": context.created_at,
        "executed_at": context.executed_at,
    }
    for name in _JSON_FIELDS:
        value = getattr(context, name)
        if value is not None:
            row[name] = Json(value.model_dump(mode="json"))
    return row


def _row_to_context(row: Any) -> ExecutionContext:
    return ExecutionContext.model_validate(
        {
            "intent_id": row.id,
            "user_id": row.user_id,
            "intent": row.intent_json,
            "status": row.status,
            "quote": row.quote,
            "snapshot": row.snapshot,
            "preview": row.preview,
            "transaction": row.transaction,
            "transaction_id": row.transaction_id,
            "tx_hash": row.tx_hash,
            "error": row.error_message,
            "created_at": row.created_at,
            "updated_at": row.updated_at,
            "executed_at": row.executed_at,
        }
    )


def _patch_to_data(patch: Dict[str, Any]) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    for key, value in patch.items():
        if key in _JSON_FIELDS:
            # Unset JSON columns stay untouched
            if value is not None:
                data[key] = _to_json(value)
        elif key == "error":
            data["error_message"] = value
        else:
            data[key] = value
    return data


class PrismaIntentStore:
    def __init__(self, db: Prisma):
        self.db = db

    async def create(self, context: ExecutionContext) -> ExecutionContext:
        try:
            row = await self.db.intent.create(data=_context_to_row(context))
        except prisma_errors.PrismaError as e:
            raise PersistenceError(f"Failed to create intent {context.intent_id}: {e}") from e
        return _row_to_context(row)

    async def find_by_id(self, intent_id: str) -> Optional[ExecutionContext]:
        try:
            row = await self.db.intent.find_unique(where={"id": intent_id})
        except prisma_errors.PrismaError as e:
            raise PersistenceError(f"Failed to load intent {intent_id}: {e}") from e
        return _row_to_context(row) if row else None

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

        data = _patch_to_data(patch or {})
        data["status"] = status.value
        if executed_at is not None:
            data["executed_at"] = executed_at

        try:
            count = await self.db.intent.update_many(
                where={"id": intent_id, "status": expected.value},
                data=data,
            )
            row = await self.db.intent.find_unique(where={"id": intent_id})
        except prisma_errors.PrismaError as e:
            raise PersistenceError(f"Failed to update intent {intent_id}: {e}") from e

        if row is None:
            raise IntentNotFoundError(intent_id)
        if count == 0:
            raise StaleStatusError(intent_id, expected.value, row.status, status.value)
        return _row_to_context(row)


# -----------------------------
# Limits
# -----------------------------
def _row_to_limits(row: Any) -> UserLimits:
    return UserLimits(
        user_id=row.user_id,
        daily_usd_cap=row.daily_usd_cap,
        max_approval_usd=row.max_approval_usd,
        allowlist=list(row.allowlist or []),
        daily_spent_usd=row.daily_spent_usd,
        last_reset_at=row.last_reset_at,
    )


class PrismaLimitsStore:
    def __init__(self, db: Prisma):
        self.db = db

    async def _ensure(self, user_id: str) -> Any:
        return await self.db.userlimits.upsert(
            where={"user_id": user_id},
            data={"create": {"user_id": user_id}, "update": {}},
        )

    async def get(self, user_id: str) -> UserLimits:
        try:
            row = await self._ensure(user_id)
        except prisma_errors.PrismaError as e:
            raise PersistenceError(f"Failed to load limits for {user_id}: {e}") from e
        return _row_to_limits(row)

    async def configure(self, user_id: str, update: LimitsUpdate) -> UserLimits:
        validated = UserLimits(user_id=user_id, **update.model_dump())
        fields = {
            "daily_usd_cap": validated.daily_usd_cap,
            "max_approval_usd": validated.max_approval_usd,
            "allowlist": validated.allowlist,
        }
        try:
            row = await self.db.userlimits.upsert(
                where={"user_id": user_id},
                data={"create": {"user_id": user_id, **fields}, "update": fields},
            )
        except prisma_errors.PrismaError as e:
            raise PersistenceError(f"Failed to configure limits for {user_id}: {e}") from e
        return _row_to_limits(row)

    async def increment_spent(self, user_id: str, usd: Decimal, intent_id: str) -> bool:
        try:
            await self._ensure(user_id)
            async with self.db.tx() as tx:
                existing = await tx.spendrecord.find_unique(where={"intent_id": intent_id})
                if existing:
                    return False
                await tx.spendrecord.create(
                    data={"intent_id": intent_id, "user_id": user_id, "usd_value": usd}
                )
                await tx.execute_raw(
                    "UPDATE limits SET daily_spent_usd = daily_spent_usd + $1::numeric, "
                    "updated_at = NOW() WHERE user_id = $2",
                    str(usd),
                    user_id,
                )
                return True
        except prisma_errors.UniqueViolationError:
            logger.info(f"[LIMITER] spend for intent {intent_id} already recorded")
            return False
        except prisma_errors.PrismaError as e:
            raise PersistenceError(f"Failed to record spend for {intent_id}: {e}") from e

    async def reset_daily(self, user_id: str, now: datetime) -> UserLimits:
        try:
            await self._ensure(user_id)
            await self.db.userlimits.update_many(
                where={"user_id": user_id, "last_reset_at": {"lt": start_of_day(now)}},
                data={"daily_spent_usd": Decimal("0"), "last_reset_at": now},
            )
            row = await self.db.userlimits.find_unique(where={"user_id": user_id})
        except prisma_errors.PrismaError as e:
            raise PersistenceError(f"Failed to reset limits for {user_id}: {e}") from e
        return _row_to_limits(row)


# -----------------------------
# Transactions
# -----------------------------
def _row_to_transaction(row: Any) -> TransactionRecord:
    return TransactionRecord(
        id=row.id,
        intent_id=row.intent_id,
        user_id=row.user_id,
        chain_id=row.chain_id,
        from_address=row.from_address,
        to=row.to,
        value=row.value,
        data=row.data,
        status=row.status,
        tx_hash=row.tx_hash,
        gas_used=row.gas_used,
        gas_price=row.gas_price,
        error_message=row.error_message,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class PrismaTransactionStore:
    def __init__(self, db: Prisma):
        self.db = db

    async def create(self, record: TransactionRecord) -> TransactionRecord:
        data = record.model_dump(exclude={"created_at", "updated_at"})
        try:
            row = await self.db.chaintransaction.create(data=data)
        except prisma_errors.PrismaError as e:
            raise PersistenceError(f"Failed to create transaction {record.id}: {e}") from e
        return _row_to_transaction(row)

    async def find_by_id(self, transaction_id: str) -> Optional[TransactionRecord]:
        try:
            row = await self.db.chaintransaction.find_unique(where={"id": transaction_id})
        except prisma_errors.PrismaError as e:
            raise PersistenceError(f"Failed to load transaction {transaction_id}: {e}") from e
        return _row_to_transaction(row) if row else None

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
        data: Dict[str, Any] = {"status": status.value}
        for key, value in (
            ("tx_hash", tx_hash),
            ("gas_used", gas_used),
            ("gas_price", gas_price),
            ("error_message", error_message),
        ):
            if value is not None:
                data[key] = value
        try:
            row = await self.db.chaintransaction.update(where={"id": transaction_id}, data=data)
        except prisma_errors.PrismaError as e:
            raise PersistenceError(f"Failed to update transaction {transaction_id}: {e}") from e
        if row is None:
            raise PersistenceError(f"Transaction {transaction_id} not found")
        return _row_to_transaction(row)
