import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from services.telemetry import LoggingTelemetrySink, PrismaTelemetrySink


def make_db(error=None):
    db = MagicMock()
    db.telemetryevent.create = AsyncMock(side_effect=error)
    return db


def test_prisma_sink_writes_in_background_and_flushes_on_shutdown():
    db = make_db()
    sink = PrismaTelemetrySink(db)

    async def scenario():
        sink.log("user-1", "intent_stage_enter", {"intent_id": "i-1", "usd": Decimal("1.5")})
        await sink.shutdown()

    asyncio.run(scenario())

    data = db.telemetryevent.create.call_args.kwargs["data"]
    assert data["user_id"] == "user-1"
    assert data["event"] == "intent_stage_enter"


def test_prisma_sink_swallows_write_failures():
    sink = PrismaTelemetrySink(make_db(error=RuntimeError("db down")))

    async def scenario():
        sink.log("user-1", "intent_failed", {})
        await sink.shutdown()

    asyncio.run(scenario())


def test_prisma_sink_without_loop_drops_event():
    db = make_db()

    PrismaTelemetrySink(db).log("user-1", "intent_failed", {})

    db.telemetryevent.create.assert_not_called()


def test_logging_sink_logs_event(caplog):
    caplog.set_level("INFO", logger="telemetry")

    LoggingTelemetrySink().log("user-1", "transaction_built", {"usd_value": Decimal("10")})

    assert "event=transaction_built" in caplog.text
