# services/pipeline_executor.py

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from config import QUOTE_TTL_SECONDS
from core.errors import (
    IntentNotFoundError,
    InvalidTransitionError,
    LimiterRejection,
    PersistenceError,
    ProviderError,
)
from core.intent import BalancesGet, Intent, RewardsClaim, TransferSend
from core.status import IntentStatus, TransactionStatus
from core.tokens import from_base_units
from executors.base import BaseExecutor, PreflightResult
from models.execution import ExecutionContext, TransactionRecord
from models.quotes import RewardsQuote, SwapQuote, utcnow
from services.history import BoundedHistory, KeyedLocks
from services.preview_builder import PreviewBuilder
from services.providers import TransactionSimulator
from services.safety_limiter import SafetyLimiter
from services.telemetry import TelemetrySink
from services.transaction_builder import TransactionBuilder
from storage.base import IntentStore, TransactionStore

logger = logging.getLogger("pipeline_executor")


@dataclass(frozen=True)
class SwapRecord:
    intent_id: str
    sell_symbol: str
    buy_symbol: str
    sell_amount: str
    buy_amount: str
    built_at: datetime


class PipelineExecutor:
    """
    Drives one intent through planned → preflight → previewed → building.

    Guarantees:
    - one run per intent at a time (per-intent lock + compare-and-swap writes)
    - status is persisted after every stage transition
    - business failures end in `failed` with an error message and are re-raised
    - persistence failures are logged as ambiguous state and propagate untouched

    The ExecutionContext passed in is updated in place and returned.
    """

    def __init__(
        self,
        *,
        intents: IntentStore,
        transactions: TransactionStore,
        limiter: SafetyLimiter,
        executors: Dict[str, BaseExecutor],
        telemetry: TelemetrySink,
        previews: Optional[PreviewBuilder] = None,
        builder: Optional[TransactionBuilder] = None,
        simulator: Optional[TransactionSimulator] = None,
        quote_ttl_seconds: float = QUOTE_TTL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
        swap_history: Optional[BoundedHistory] = None,
    ):
        self.intents = intents
        self.transactions = transactions
        self.limiter = limiter
        self.executors = executors
        self.telemetry = telemetry
        self.previews = previews or PreviewBuilder()
        self.builder = builder or TransactionBuilder()
        self.simulator = simulator
        self.quote_ttl_seconds = quote_ttl_seconds
        self._clock = clock
        self._intent_locks = KeyedLocks()
        self._swaps = (
            swap_history if swap_history is not None else BoundedHistory(max_per_key=100, ttl_seconds=24 * 3600)
        )

    # =================================================
    # Intake
    # =================================================
    async def create_intent(self, user_id: str, intent: Intent) -> ExecutionContext:
        context = ExecutionContext(intent_id=str(uuid.uuid4()), user_id=user_id, intent=intent)
        context = await self.intents.create(context)
        self._emit(user_id, "intent_stage_enter", {"intent_id": context.intent_id, "stage": context.status.value})
        return context

    async def get_intent(self, intent_id: str) -> ExecutionContext:
        context = await self.intents.find_by_id(intent_id)
        if context is None:
            raise IntentNotFoundError(intent_id)
        return context

    # =================================================
    # Preflight → Preview
    # =================================================
    async def execute(self, context: ExecutionContext) -> ExecutionContext:
        async with self._intent_locks.hold(context.intent_id):
            self._sync(context, await self.get_intent(context.intent_id))
            if context.status is not IntentStatus.PLANNED:
                raise InvalidTransitionError(context.intent_id, context.status.value, IntentStatus.PREFLIGHT.value)

            try:
                await self._transition(context, IntentStatus.PREFLIGHT)

                executor = self._executor_for(context.intent)
                preflight = await executor.execute(context.intent)
                simulation = await self._simulate(executor, context, preflight)
                warnings = await self._limiter_warnings(context, preflight)
                preview = self.previews.build(
                    context.intent, preflight, simulation=simulation, extra_warnings=warnings
                )

                await self._transition(
                    context,
                    IntentStatus.PREVIEWED,
                    patch={"quote": preflight.quote, "snapshot": preflight.snapshot, "preview": preview},
                )
                if self._nothing_to_build(context.intent, preflight):
                    await self._transition(context, IntentStatus.COMPLETED, executed_at=self._clock())
            except PersistenceError as e:
                self._mark_ambiguous(context, e)
                raise
            except InvalidTransitionError:
                raise
            except Exception as e:
                await self._fail(context, e)
                raise

            return context

    # =================================================
    # Build
    # =================================================
    async def build_transaction(self, context: ExecutionContext) -> ExecutionContext:
        async with self._intent_locks.hold(context.intent_id):
            self._sync(context, await self.get_intent(context.intent_id))
            if context.status is not IntentStatus.PREVIEWED:
                raise InvalidTransitionError(
                    context.intent_id,
                    context.status.value,
                    IntentStatus.BUILDING.value,
                    f"Intent {context.intent_id} is '{context.status.value}'; only previewed intents can be built",
                )

            reserved = False
            try:
                await self._transition(context, IntentStatus.BUILDING)

                quote = await self._fresh_quote(context)
                tx = self.builder.build(context.intent, quote, now=self._clock())

                decision = await self.limiter.check_and_reserve(
                    context.user_id,
                    context.intent_id,
                    quote.usd_value,
                    self._counterparty(context.intent, quote),
                    approval_usd=tx.approval.usd_value if tx.approval else None,
                )
                if not decision.allowed:
                    raise LimiterRejection(decision.reason)
                reserved = True

                record = await self.transactions.create(
                    TransactionRecord(
                        id=str(uuid.uuid4()),
                        intent_id=context.intent_id,
                        user_id=context.user_id,
                        chain_id=tx.chain_id,
                        from_address=context.intent.taker_address,
                        to=tx.to,
                        value=tx.value,
                        data=tx.data,
                        gas_price=str(tx.gas_price) if tx.gas_price is not None else None,
                    )
                )
                await self._save(context, {"quote": quote, "transaction": tx, "transaction_id": record.id})

                await self.limiter.record_spend(context.user_id, context.intent_id, quote.usd_value)
                reserved = False
            except PersistenceError as e:
                if reserved:
                    await self.limiter.release(context.user_id, context.intent_id)
                self._mark_ambiguous(context, e)
                raise
            except InvalidTransitionError:
                raise
            except Exception as e:
                if reserved:
                    await self.limiter.release(context.user_id, context.intent_id)
                await self._fail(context, e)
                raise

            self._emit(
                context.user_id,
                "transaction_built",
                {
                    "intent_id": context.intent_id,
                    "transaction_id": context.transaction_id,
                    "strategy": tx.strategy.value,
                    "usd_value": quote.usd_value,
                },
            )
            if isinstance(quote, SwapQuote):
                self._swaps.add(
                    context.user_id,
                    SwapRecord(
                        intent_id=context.intent_id,
                        sell_symbol=quote.sell_symbol,
                        buy_symbol=quote.buy_symbol,
                        sell_amount=from_base_units(int(quote.sell_amount), quote.sell_decimals),
                        buy_amount=from_base_units(int(quote.buy_amount), quote.buy_decimals),
                        built_at=self._clock(),
                    ),
                )
            return context

    # =================================================
    # After build
    # =================================================
    async def cancel_intent(self, intent_id: str) -> ExecutionContext:
        async with self._intent_locks.hold(intent_id):
            context = await self.get_intent(intent_id)
            if not context.status.is_cancellable():
                raise InvalidTransitionError(
                    intent_id,
                    context.status.value,
                    IntentStatus.REJECTED.value,
                    f"Intent {intent_id} cannot be cancelled from '{context.status.value}'",
                )
            try:
                await self._transition(context, IntentStatus.REJECTED)
            except PersistenceError as e:
                self._mark_ambiguous(context, e)
                raise
            self._emit(context.user_id, "intent_cancelled", {"intent_id": intent_id})
            return context

    async def record_submission(self, intent_id: str, tx_hash: str) -> ExecutionContext:
        async with self._intent_locks.hold(intent_id):
            context = await self.get_intent(intent_id)
            try:
                await self._transition(context, IntentStatus.SUBMITTED, patch={"tx_hash": tx_hash})
                if context.transaction_id:
                    await self.transactions.update_status(
                        context.transaction_id, TransactionStatus.PENDING, tx_hash=tx_hash
                    )
            except PersistenceError as e:
                self._mark_ambiguous(context, e)
                raise
            self._emit(context.user_id, "intent_submitted", {"intent_id": intent_id, "tx_hash": tx_hash})
            return context

    async def record_completion(
        self, intent_id: str, succeeded: bool, error: Optional[str] = None
    ) -> ExecutionContext:
        async with self._intent_locks.hold(intent_id):
            context = await self.get_intent(intent_id)
            if context.status is not IntentStatus.SUBMITTED:
                raise InvalidTransitionError(
                    intent_id,
                    context.status.value,
                    (IntentStatus.COMPLETED if succeeded else IntentStatus.FAILED).value,
                    f"Intent {intent_id} is '{context.status.value}'; only submitted intents can complete",
                )
            try:
                if succeeded:
                    await self._transition(context, IntentStatus.COMPLETED, executed_at=self._clock())
                else:
                    await self._transition(
                        context,
                        IntentStatus.FAILED,
                        patch={"error": error or "Transaction failed on-chain"},
                    )
            except PersistenceError as e:
                self._mark_ambiguous(context, e)
                raise
            event = "intent_completed" if succeeded else "intent_failed"
            self._emit(context.user_id, event, {"intent_id": intent_id, "error": context.error})
            return context

    async def monitor_transaction(
        self,
        transaction_id: str,
        status: TransactionStatus,
        *,
        tx_hash: Optional[str] = None,
        gas_used: Optional[str] = None,
        gas_price: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> TransactionRecord:
        """Reporting sink only; the intent's own status is not touched."""
        record = await self.transactions.update_status(
            transaction_id,
            status,
            tx_hash=tx_hash,
            gas_used=gas_used,
            gas_price=gas_price,
            error_message=error_message,
        )
        self._emit(
            record.user_id,
            "transaction_status",
            {"transaction_id": transaction_id, "status": status.value, "tx_hash": tx_hash},
        )
        return record

    def recent_swaps(self, user_id: str) -> List[SwapRecord]:
        return self._swaps.get(user_id)

    async def shutdown(self) -> None:
        await self.telemetry.shutdown()
        self.limiter.shutdown()
        self._swaps.clear()
        self._intent_locks.clear()

    # =================================================
    # Internals
    # =================================================
    def _executor_for(self, intent: Intent) -> BaseExecutor:
        executor = self.executors.get(intent.type)
        if executor is None:
            raise ProviderError("pipeline", f"no executor configured for {intent.type}")
        return executor

    async def _transition(
        self,
        context: ExecutionContext,
        target: IntentStatus,
        *,
        executed_at: Optional[datetime] = None,
        patch: Optional[Dict[str, Any]] = None,
    ) -> None:
        previous = context.status
        if not previous.can_transition_to(target):
            raise InvalidTransitionError(context.intent_id, previous.value, target.value)

        stored = await self.intents.update_status(
            context.intent_id, target, expected=previous, executed_at=executed_at, patch=patch
        )
        self._sync(context, stored)
        logger.info(f"[STAGE] intent_id={context.intent_id} {previous.value} → {target.value}")
        self._emit(context.user_id, "intent_stage_exit", {"intent_id": context.intent_id, "stage": previous.value})
        self._emit(context.user_id, "intent_stage_enter", {"intent_id": context.intent_id, "stage": target.value})

    async def _save(self, context: ExecutionContext, patch: Dict[str, Any]) -> None:
        """Merges fields without changing status (still guarded by compare-and-swap)."""
        stored = await self.intents.update_status(
            context.intent_id, context.status, expected=context.status, patch=patch
        )
        self._sync(context, stored)

    async def _fail(self, context: ExecutionContext, exc: Exception) -> None:
        message = str(exc) or exc.__class__.__name__
        stage = context.status.value
        logger.error(f"[FAILED] intent_id={context.intent_id} stage={stage} {exc.__class__.__name__}: {message}")
        try:
            await self._transition(context, IntentStatus.FAILED, patch={"error": message})
        except PersistenceError as pe:
            context.error = message
            self._mark_ambiguous(context, pe)
            raise pe from exc
        self._emit(
            context.user_id,
            "intent_failed",
            {"intent_id": context.intent_id, "stage": stage, "error_type": exc.__class__.__name__, "error": message},
        )

    def _mark_ambiguous(self, context: ExecutionContext, exc: PersistenceError) -> None:
        # In-memory only: the store is the thing that just failed
        if context.error is None:
            context.error = f"Persistence failure: {exc}"
        context.status = IntentStatus.FAILED
        logger.critical(
            f"[PERSISTENCE] ambiguous state for intent_id={context.intent_id}; stored status unknown: {exc}"
        )

    def _sync(self, context: ExecutionContext, stored: ExecutionContext) -> None:
        for field in ExecutionContext.model_fields:
            setattr(context, field, getattr(stored, field))

    def _emit(self, user_id: Optional[str], event_type: str, payload: Dict[str, Any]) -> None:
        try:
            self.telemetry.log(user_id, event_type, payload)
        except Exception:
            logger.warning(f"[TELEMETRY] sink raised on event={event_type}", exc_info=True)

    async def _fresh_quote(self, context: ExecutionContext):
        quote = context.quote
        if quote is None or quote.age_seconds(self._clock()) <= self.quote_ttl_seconds:
            return quote
        logger.info(f"[STAGE] intent_id={context.intent_id} quote is {quote.age_seconds(self._clock()):.0f}s old; refreshing")
        preflight = await self._executor_for(context.intent).execute(context.intent)
        return preflight.quote

    async def _simulate(self, executor: BaseExecutor, context: ExecutionContext, preflight: PreflightResult):
        constraints = context.intent.constraints
        quote = preflight.quote
        if self.simulator is None or constraints is None or not constraints.simulate:
            return None
        if quote is None or not getattr(quote, "data", None):
            return None
        return await executor.call(
            "simulation",
            self.simulator.simulate(
                context.intent.chain_id, context.intent.taker_address, quote.to, quote.data, quote.value
            ),
        )

    async def _limiter_warnings(self, context: ExecutionContext, preflight: PreflightResult) -> List[str]:
        """Dry-run limit check; a rejection is shown to the user, not enforced yet."""
        quote = preflight.quote
        if quote is None or self._nothing_to_build(context.intent, preflight):
            return []
        decision = await self.limiter.check(
            context.user_id,
            quote.usd_value,
            self._counterparty(context.intent, quote),
            intent_id=context.intent_id,
        )
        if decision.allowed:
            return []
        self._emit(
            context.user_id,
            "limiter_warning",
            {"intent_id": context.intent_id, "reason": decision.reason, **(decision.meta or {})},
        )
        return [f"Safety limit: {decision.reason}"]

    @staticmethod
    def _counterparty(intent: Intent, quote) -> Optional[str]:
        if isinstance(intent, TransferSend):
            return intent.recipient
        if isinstance(quote, RewardsQuote):
            return quote.rewards[0].claim_contract if quote.rewards else None
        return getattr(quote, "to", None)

    @staticmethod
    def _nothing_to_build(intent: Intent, preflight: PreflightResult) -> bool:
        if isinstance(intent, BalancesGet):
            return True
        if isinstance(intent, RewardsClaim):
            return not isinstance(preflight.quote, RewardsQuote) or not preflight.quote.rewards
        return False
