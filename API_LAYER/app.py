# app.py
import logging
import json
import sys
from typing import Any, Dict, Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from asyncio import Lock

from config import DATABASE_URL, DEBUG
from prisma import Prisma

from core.errors import (
    BuildError,
    ClassificationError,
    IntentNotFoundError,
    InvalidTransitionError,
    LimiterRejection,
    PersistenceError,
    ProviderError,
)
from core.status import TransactionStatus
from executors.balances import BalancesExecutor
from executors.bridge import BridgeExecutor
from executors.rewards import RewardsExecutor
from executors.swap import SwapExecutor
from executors.transfer import TransferExecutor
from models.limits import LimitsUpdate
from services.alchemy import AlchemyBalanceProvider
from services.intent_classifier import classify, describe, to_intent
from services.lifi import LiFiBridgeQuoteProvider
from services.pipeline_executor import PipelineExecutor
from services.providers import StaticGasPriceProvider, UnconfiguredRewardsProvider
from services.safety_limiter import SafetyLimiter
from services.telemetry import LoggingTelemetrySink, PrismaTelemetrySink
from services.utils import deep_serialize
from services.zeroex import ZeroExSwapQuoteProvider
from storage.memory import InMemoryIntentStore, InMemoryLimitsStore, InMemoryTransactionStore
from storage.prisma_store import PrismaIntentStore, PrismaLimitsStore, PrismaTransactionStore


# -----------------------------
# Structured Logging Setup
# -----------------------------
class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(
            {
                "time": self.formatTime(record, self.datefmt),
                "level": record.levelname,
                "name": record.name,
                "message": record.getMessage(),
                "exception": record.exc_text,
            }
        )


# Module loggers (pipeline_executor, safety_limiter, ...) propagate here
root_logger = logging.getLogger()
root_logger.setLevel(logging.INFO)
if not any(isinstance(h.formatter, JSONFormatter) for h in root_logger.handlers):
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

logger = logging.getLogger("wallet_hub_api")

# -----------------------------
# FastAPI App
# -----------------------------
app = FastAPI(title="Wallet Hub Intent API", version="1.0")

# -----------------------------
# Prisma + Pipeline (Lifecycle managed)
# -----------------------------
db: Optional[Prisma] = None

pipeline: Optional[PipelineExecutor] = None

DB_CONNECTED: bool = False
DB_ERROR: Optional[str] = None

# -----------------------------
# Error → HTTP mapping
# -----------------------------
ERROR_STATUS = [
    (ClassificationError, 422),
    (IntentNotFoundError, 404),
    (InvalidTransitionError, 409),
    (LimiterRejection, 403),
    (ProviderError, 502),
    (BuildError, 422),
    (PersistenceError, 503),
]

# -----------------------------
# Metrics
# -----------------------------
metrics_lock = Lock()
request_counters = {
    "classify": 0,
    "submit": 0,
    "build": 0,
    "cancel": 0,
    "total": 0,
    "errors": 0,
}

# -----------------------------
# Pydantic Models
# -----------------------------
class ClassifyRequest(BaseModel):
    text: str


class SubmitRequest(BaseModel):
    text: str
    user_id: str
    taker_address: str
    chain_id: int = 1
    execute: bool = True


class SubmittedRequest(BaseModel):
    tx_hash: str


class CompletedRequest(BaseModel):
    succeeded: bool
    error: Optional[str] = None


class TransactionStatusRequest(BaseModel):
    status: TransactionStatus
    tx_hash: Optional[str] = None
    gas_used: Optional[str] = None
    gas_price: Optional[str] = None
    error_message: Optional[str] = Field(None, max_length=2000)


# -----------------------------
# Wiring
# -----------------------------
def create_pipeline(intents, limits, transactions, telemetry) -> PipelineExecutor:
    gas = StaticGasPriceProvider()
    balances = AlchemyBalanceProvider()
    return PipelineExecutor(
        intents=intents,
        transactions=transactions,
        limiter=SafetyLimiter(limits),
        telemetry=telemetry,
        executors={
            "trade.swap": SwapExecutor(ZeroExSwapQuoteProvider(), gas),
            "bridge.transfer": BridgeExecutor(LiFiBridgeQuoteProvider(), gas),
            "transfer.send": TransferExecutor(balances, gas),
            "balances.get": BalancesExecutor(balances),
            "rewards.claim": RewardsExecutor(UnconfiguredRewardsProvider(), gas),
        },
    )


def _use_memory_stores() -> None:
    global pipeline
    pipeline = create_pipeline(
        InMemoryIntentStore(), InMemoryLimitsStore(), InMemoryTransactionStore(), LoggingTelemetrySink()
    )


# -----------------------------
# Startup / Shutdown Events
# -----------------------------
@app.on_event("startup")
async def startup():
    global db, DB_CONNECTED, DB_ERROR
    global pipeline

    if not DATABASE_URL:
        logger.warning("DATABASE_URL not set; using in-memory stores.")
        DB_CONNECTED = False
        DB_ERROR = "DATABASE_URL not set"
        _use_memory_stores()
        return

    try:
        db = Prisma()
        await db.connect()
        DB_CONNECTED = True
        DB_ERROR = None
        logger.info("✅ Prisma DB connected")

        # Pipeline is created ONLY after DB is ready
        pipeline = create_pipeline(
            PrismaIntentStore(db), PrismaLimitsStore(db), PrismaTransactionStore(db), PrismaTelemetrySink(db)
        )

    except Exception as e:
        DB_CONNECTED = False
        DB_ERROR = str(e)
        logger.exception("❌ Failed to connect Prisma DB")
        if DEBUG:
            raise


@app.on_event("shutdown")
async def shutdown():
    global DB_CONNECTED
    if pipeline is not None:
        await pipeline.shutdown()
    if DB_CONNECTED:
        await db.disconnect()
        DB_CONNECTED = False
        logger.info("✅ Prisma DB disconnected")


# -----------------------------
# Helpers
# -----------------------------
async def _count(key: str) -> None:
    async with metrics_lock:
        request_counters["total"] += 1
        request_counters[key] = request_counters.get(key, 0) + 1


async def _failure(exc: Exception, context: str) -> JSONResponse:
    async with metrics_lock:
        request_counters["errors"] += 1

    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            logger.warning(f"[ERROR] {context} {exc.__class__.__name__}: {exc}")
            return JSONResponse(
                status_code=status_code,
                content={"error": {"type": exc.__class__.__name__, "message": str(exc)}},
            )

    logger.exception(f"[ERROR] {context} exception={exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "type": "InternalError",
                "message": str(exc) if DEBUG else "An unexpected error occurred",
            }
        },
    )


def _require_pipeline() -> PipelineExecutor:
    if pipeline is None:
        raise PersistenceError("Pipeline is not initialised")
    return pipeline


# -----------------------------
# API Endpoints
# -----------------------------
@app.get("/")
async def root():
    return {"message": "Wallet Hub Intent API is running."}


@app.get("/health")
async def health() -> Dict[str, Any]:
    info = {"status": "ok", "db_connected": DB_CONNECTED, "pipeline_ready": pipeline is not None}
    if DB_ERROR:
        info["db_error"] = DB_ERROR
    return info


@app.get("/metrics")
async def metrics() -> Dict[str, Any]:
    async with metrics_lock:
        return request_counters.copy()


@app.post("/intents/classify")
async def classify_text(request: ClassifyRequest):
    await _count("classify")
    try:
        parsed = await classify(request.text)
        return {"parsed": deep_serialize(parsed), "description": describe(parsed)}
    except Exception as e:
        return await _failure(e, "classify")


@app.post("/intents/submit")
async def submit_intent(request: SubmitRequest):
    await _count("submit")
    try:
        logger.info(f"[REQUEST_START] user_id={request.user_id}, text_length={len(request.text)}")

        # Classification failures stop here: nothing is created downstream
        parsed = await classify(request.text)
        intent = to_intent(parsed, request.taker_address, request.chain_id)

        active = _require_pipeline()
        context = await active.create_intent(request.user_id, intent)
        logger.info(f"[INTENT] user_id={request.user_id}, type={intent.type}, intent_id={context.intent_id}")

        if request.execute:
            context = await active.execute(context)

        return {
            "intent": deep_serialize(context),
            "parsed": deep_serialize(parsed),
            "description": describe(parsed),
        }
    except Exception as e:
        return await _failure(e, f"submit user_id={request.user_id}")


@app.get("/intents/{intent_id}")
async def get_intent(intent_id: str):
    try:
        context = await _require_pipeline().get_intent(intent_id)
        return {"intent": deep_serialize(context)}
    except Exception as e:
        return await _failure(e, f"get intent_id={intent_id}")


@app.post("/intents/{intent_id}/execute")
async def execute_intent(intent_id: str):
    try:
        active = _require_pipeline()
        context = await active.execute(await active.get_intent(intent_id))
        return {"intent": deep_serialize(context)}
    except Exception as e:
        return await _failure(e, f"execute intent_id={intent_id}")


@app.post("/intents/{intent_id}/build")
async def build_intent(intent_id: str):
    await _count("build")
    try:
        active = _require_pipeline()
        context = await active.build_transaction(await active.get_intent(intent_id))
        return {"intent": deep_serialize(context), "transaction": deep_serialize(context.transaction)}
    except Exception as e:
        return await _failure(e, f"build intent_id={intent_id}")


@app.post("/intents/{intent_id}/cancel")
async def cancel_intent(intent_id: str):
    await _count("cancel")
    try:
        context = await _require_pipeline().cancel_intent(intent_id)
        return {"intent": deep_serialize(context)}
    except Exception as e:
        return await _failure(e, f"cancel intent_id={intent_id}")


@app.post("/intents/{intent_id}/submitted")
async def intent_submitted(intent_id: str, request: SubmittedRequest):
    try:
        context = await _require_pipeline().record_submission(intent_id, request.tx_hash)
        return {"intent": deep_serialize(context)}
    except Exception as e:
        return await _failure(e, f"submitted intent_id={intent_id}")


@app.post("/intents/{intent_id}/completed")
async def intent_completed(intent_id: str, request: CompletedRequest):
    try:
        context = await _require_pipeline().record_completion(intent_id, request.succeeded, request.error)
        return {"intent": deep_serialize(context)}
    except Exception as e:
        return await _failure(e, f"completed intent_id={intent_id}")


@app.post("/transactions/{transaction_id}/status")
async def transaction_status(transaction_id: str, request: TransactionStatusRequest):
    try:
        record = await _require_pipeline().monitor_transaction(
            transaction_id,
            request.status,
            tx_hash=request.tx_hash,
            gas_used=request.gas_used,
            gas_price=request.gas_price,
            error_message=request.error_message,
        )
        return {"transaction": deep_serialize(record)}
    except Exception as e:
        return await _failure(e, f"transaction_id={transaction_id}")


@app.get("/limits/{user_id}")
async def get_limits(user_id: str):
    try:
        active = _require_pipeline()
        limits = await active.limiter.store.get(user_id)
        return {
            "limits": deep_serialize(limits),
            "reserved_usd": str(active.limiter.reserved_usd(user_id)),
            "recent_violations": deep_serialize(active.limiter.recent_violations(user_id)),
        }
    except Exception as e:
        return await _failure(e, f"limits user_id={user_id}")


@app.put("/limits/{user_id}")
async def put_limits(user_id: str, update: LimitsUpdate):
    try:
        limits = await _require_pipeline().limiter.store.configure(user_id, update)
        return {"limits": deep_serialize(limits)}
    except Exception as e:
        return await _failure(e, f"configure limits user_id={user_id}")


# -----------------------------
# Entrypoint
# -----------------------------
import uvicorn

if __name__ == "__main__":
    from config import PORT

    uvicorn.run("API_LAYER.app:app", host="0.0.0.0", port=PORT, workers=1)
