import asyncio
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from core.errors import IntentNotFoundError, PersistenceError, StaleStatusError
from core.status import IntentStatus
from models.quotes import utcnow
from storage import prisma_store
from storage.prisma_store import PrismaIntentStore, PrismaLimitsStore
from tests.fakes import TAKER


class FakePrismaError(Exception):
    pass


class FakeUniqueViolationError(FakePrismaError):
    pass


@pytest.fixture(autouse=True)
def real_prisma_errors():
    errors = SimpleNamespace(PrismaError=FakePrismaError, UniqueViolationError=FakeUniqueViolationError)
    with patch.object(prisma_store, "prisma_errors", errors):
        yield


def intent_row(status="planned", **overrides):
    now = utcnow()
    row = dict(
        id="intent-1",
        user_id="user-1",
        intent_json={
            "type": "trade.swap",
            "taker_address": TAKER,
            "chain_id": 1,
            "from_token": "USDC",
            "to_token": "ETH",
            "amount": "100",
        },
        status=status,
        quote=None,
        snapshot=None,
        preview=None,
        transaction=None,
        transaction_id=None,
        tx_hash=None,
        error_message=None,
        created_at=now,
        updated_at=now,
        executed_at=None,
    )
    row.update(overrides)
    return SimpleNamespace(**row)


def make_db():
    db = MagicMock()
    db.intent.update_many = AsyncMock()
    db.intent.find_unique = AsyncMock()
    return db


# ------------------------------------------------------------
# Intents
# ------------------------------------------------------------
def test_update_status_uses_compare_and_swap_filter():
    db = make_db()
    db.intent.update_many.return_value = 1
    db.intent.find_unique.return_value = intent_row(status="preflight")

    context = asyncio.run(
        PrismaIntentStore(db).update_status("intent-1", IntentStatus.PREFLIGHT, expected=IntentStatus.PLANNED)
    )

    assert context.status is IntentStatus.PREFLIGHT
    kwargs = db.intent.update_many.call_args.kwargs
    assert kwargs["where"] == {"id": "intent-1", "status": "planned"}
    assert kwargs["data"]["status"] == "preflight"


def test_update_status_zero_rows_is_stale():
    db = make_db()
    db.intent.update_many.return_value = 0
    db.intent.find_unique.return_value = intent_row(status="building")

    with pytest.raises(StaleStatusError) as exc:
        asyncio.run(
            PrismaIntentStore(db).update_status("intent-1", IntentStatus.BUILDING, expected=IntentStatus.PREVIEWED)
        )

    assert exc.value.current == "building"


def test_update_status_missing_row():
    db = make_db()
    db.intent.update_many.return_value = 0
    db.intent.find_unique.return_value = None

    with pytest.raises(IntentNotFoundError):
        asyncio.run(
            PrismaIntentStore(db).update_status("intent-1", IntentStatus.PREFLIGHT, expected=IntentStatus.PLANNED)
        )


def test_error_patch_maps_to_error_message_column():
    db = make_db()
    db.intent.update_many.return_value = 1
    db.intent.find_unique.return_value = intent_row(status="failed", error_message="boom")

    context = asyncio.run(
        PrismaIntentStore(db).update_status(
            "intent-1", IntentStatus.FAILED, expected=IntentStatus.PREFLIGHT, patch={"error": "boom", "quote": None}
        )
    )

    data = db.intent.update_many.call_args.kwargs["data"]
    assert data["error_message"] == "boom"
    assert "quote" not in data
    assert context.error == "boom"


def test_driver_errors_become_persistence_errors():
    db = make_db()
    db.intent.update_many.side_effect = FakePrismaError("connection reset")

    with pytest.raises(PersistenceError, match="connection reset"):
        asyncio.run(
            PrismaIntentStore(db).update_status("intent-1", IntentStatus.PREFLIGHT, expected=IntentStatus.PLANNED)
        )


# ------------------------------------------------------------
# Limits
# ------------------------------------------------------------
class FakeTx:
    def __init__(self, existing=None, create_error=None):
        self.spendrecord = MagicMock()
        self.spendrecord.find_unique = AsyncMock(return_value=existing)
        self.spendrecord.create = AsyncMock(side_effect=create_error)
        self.execute_raw = AsyncMock(return_value=1)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


def make_limits_db(tx):
    db = MagicMock()
    db.userlimits.upsert = AsyncMock(return_value=SimpleNamespace(user_id="user-1"))
    db.tx = MagicMock(return_value=tx)
    return db


def test_increment_spent_records_and_increments():
    tx = FakeTx()
    recorded = asyncio.run(PrismaLimitsStore(make_limits_db(tx)).increment_spent("user-1", Decimal("12.5"), "intent-1"))

    assert recorded is True
    tx.spendrecord.create.assert_awaited_once()
    sql, amount, user_id = tx.execute_raw.call_args.args
    assert "daily_spent_usd + $1" in sql
    assert (amount, user_id) == ("12.5", "user-1")


def test_increment_spent_is_idempotent_for_known_intent():
    tx = FakeTx(existing=SimpleNamespace(intent_id="intent-1"))
    recorded = asyncio.run(PrismaLimitsStore(make_limits_db(tx)).increment_spent("user-1", Decimal("12.5"), "intent-1"))

    assert recorded is False
    tx.execute_raw.assert_not_awaited()


def test_increment_spent_unique_violation_counts_as_already_recorded():
    tx = FakeTx(create_error=FakeUniqueViolationError("duplicate key"))
    recorded = asyncio.run(PrismaLimitsStore(make_limits_db(tx)).increment_spent("user-1", Decimal("5"), "intent-1"))

    assert recorded is False
