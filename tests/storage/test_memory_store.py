import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from core.errors import IntentNotFoundError, PersistenceError, StaleStatusError
from core.intent import TradeSwap
from core.status import IntentStatus, TransactionStatus
from models.execution import ExecutionContext, TransactionRecord
from storage.memory import InMemoryIntentStore, InMemoryLimitsStore, InMemoryTransactionStore
from tests.fakes import TAKER, make_swap_quote


def make_context(intent_id="intent-1"):
    return ExecutionContext(
        intent_id=intent_id,
        user_id="user-1",
        intent=TradeSwap(taker_address=TAKER, chain_id=1, from_token="USDC", to_token="ETH", amount="100"),
    )


def test_create_then_find_returns_equal_copy():
    store = InMemoryIntentStore()

    async def scenario():
        await store.create(make_context())
        return await store.find_by_id("intent-1")

    loaded = asyncio.run(scenario())

    assert loaded.intent.type == "trade.swap"
    assert loaded.status is IntentStatus.PLANNED
    assert loaded.intent.model_dump() == make_context().intent.model_dump()
    assert loaded.quote is None


def test_duplicate_create_is_a_persistence_error():
    store = InMemoryIntentStore()

    async def scenario():
        await store.create(make_context())
        await store.create(make_context())

    with pytest.raises(PersistenceError):
        asyncio.run(scenario())


def test_find_missing_returns_none():
    assert asyncio.run(InMemoryIntentStore().find_by_id("nope")) is None


def test_update_status_merges_patch_and_round_trips_quote():
    store = InMemoryIntentStore()
    quote = make_swap_quote()

    async def scenario():
        await store.create(make_context())
        await store.update_status("intent-1", IntentStatus.PREFLIGHT, expected=IntentStatus.PLANNED)
        return await store.update_status(
            "intent-1", IntentStatus.PREVIEWED, expected=IntentStatus.PREFLIGHT, patch={"quote": quote}
        )

    updated = asyncio.run(scenario())

    assert updated.status is IntentStatus.PREVIEWED
    assert updated.quote.kind == "swap"
    assert updated.quote.model_dump() == quote.model_dump()


def test_compare_and_swap_rejects_stale_expected_status():
    store = InMemoryIntentStore()

    async def scenario():
        await store.create(make_context())
        await store.update_status("intent-1", IntentStatus.PREFLIGHT, expected=IntentStatus.PLANNED)
        await store.update_status("intent-1", IntentStatus.PREFLIGHT, expected=IntentStatus.PLANNED)

    with pytest.raises(StaleStatusError) as exc:
        asyncio.run(scenario())

    assert exc.value.expected == "planned"
    assert exc.value.current == "preflight"
    assert asyncio.run(store.find_by_id("intent-1")).status is IntentStatus.PREFLIGHT


def test_update_status_unknown_intent():
    with pytest.raises(IntentNotFoundError):
        asyncio.run(
            InMemoryIntentStore().update_status("nope", IntentStatus.PREFLIGHT, expected=IntentStatus.PLANNED)
        )


def test_update_status_rejects_unpatchable_fields():
    store = InMemoryIntentStore()

    async def scenario():
        await store.create(make_context())
        await store.update_status(
            "intent-1", IntentStatus.PREFLIGHT, expected=IntentStatus.PLANNED, patch={"user_id": "someone-else"}
        )

    with pytest.raises(PersistenceError):
        asyncio.run(scenario())


def test_returned_context_is_a_copy():
    store = InMemoryIntentStore()

    async def scenario():
        created = await store.create(make_context())
        created.error = "mutated locally"
        return await store.find_by_id("intent-1")

    assert asyncio.run(scenario()).error is None


# ------------------------------------------------------------
# Transactions
# ------------------------------------------------------------
def make_record():
    return TransactionRecord(
        id="tx-1",
        intent_id="intent-1",
        user_id="user-1",
        chain_id=1,
        from_address=TAKER,
        to=TAKER,
    )


def test_transaction_status_update_keeps_unset_fields():
    store = InMemoryTransactionStore()

    async def scenario():
        await store.create(make_record())
        await store.update_status("tx-1", TransactionStatus.PENDING, tx_hash="0xhash")
        return await store.update_status("tx-1", TransactionStatus.CONFIRMED, gas_used="21000")

    record = asyncio.run(scenario())

    assert record.status == "confirmed"
    assert record.tx_hash == "0xhash"
    assert record.gas_used == "21000"


def test_transaction_status_update_unknown_id():
    with pytest.raises(PersistenceError):
        asyncio.run(InMemoryTransactionStore().update_status("missing", TransactionStatus.FAILED))


def test_recorded_spends_are_pruned_after_two_daily_resets():
    store = InMemoryLimitsStore()

    async def scenario():
        opened = (await store.get("user-1")).last_reset_at
        assert await store.increment_spent("user-1", Decimal("5"), "intent-1")

        await store.reset_daily("user-1", opened + timedelta(days=1))
        retried_after_midnight = await store.increment_spent("user-1", Decimal("5"), "intent-1")
        kept = dict(store._recorded["user-1"])

        await store.reset_daily("user-1", opened + timedelta(days=2))
        return retried_after_midnight, kept

    retried_after_midnight, kept = asyncio.run(scenario())

    assert retried_after_midnight is False
    assert list(kept) == ["intent-1"]
    assert "user-1" not in store._recorded
