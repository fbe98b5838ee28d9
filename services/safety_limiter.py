# services/safety_limiter.py

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from models.limits import UserLimits
from models.quotes import utcnow
from services.history import BoundedHistory, KeyedLocks
from storage.base import LimitsStore, start_of_day

logger = logging.getLogger("safety_limiter")


# ---------------------------------------------------------------------
# Decision Model
# ---------------------------------------------------------------------
class LimitDecisionType(str, Enum):
    ALLOW = "allow"
    REJECT = "reject"


@dataclass(frozen=True)
class LimitDecision:
    type: LimitDecisionType
    reason: Optional[str] = None
    meta: Optional[Dict[str, Any]] = None

    @property
    def allowed(self) -> bool:
        return self.type is LimitDecisionType.ALLOW


@dataclass(frozen=True)
class Violation:
    intent_id: Optional[str]
    reason: str
    at: datetime


# ---------------------------------------------------------------------
# Safety Limiter
# ---------------------------------------------------------------------
class SafetyLimiter:
    """
    Gates financial effects against per-user policy.

    Rules (evaluated after the lazy daily reset):
    - daily cap: spent + other reservations + candidate must not exceed cap
    - approval cap: a bounded allowance must not exceed max_approval_usd
    - allowlist: non-empty allowlist must contain the counterparty (case-folded)

    All reads and writes for one user happen under that user's lock, so two
    concurrent builds cannot both squeeze under the cap.
    """

    def __init__(
        self,
        store: LimitsStore,
        *,
        clock: Callable[[], datetime] = utcnow,
        violations: Optional[BoundedHistory] = None,
    ):
        self.store = store
        self._clock = clock
        self._user_locks = KeyedLocks()
        self._reservations: Dict[str, Dict[str, Decimal]] = {}
        self._violations = (
            violations if violations is not None else BoundedHistory(max_per_key=50, ttl_seconds=24 * 3600)
        )

    # -------------------------------------------------
    # Public API
    # -------------------------------------------------
    async def check(
        self,
        user_id: str,
        candidate_usd: Optional[Decimal],
        counterparty: Optional[str] = None,
        *,
        approval_usd: Optional[Decimal] = None,
        intent_id: Optional[str] = None,
    ) -> LimitDecision:
        """Dry run: evaluates the rules without reserving anything."""
        async with self._user_locks.hold(user_id):
            limits = await self._current_limits(user_id)
            return self._evaluate(limits, candidate_usd, counterparty, approval_usd, intent_id)

    async def check_and_reserve(
        self,
        user_id: str,
        intent_id: str,
        candidate_usd: Optional[Decimal],
        counterparty: Optional[str] = None,
        *,
        approval_usd: Optional[Decimal] = None,
    ) -> LimitDecision:
        async with self._user_locks.hold(user_id):
            limits = await self._current_limits(user_id)
            decision = self._evaluate(limits, candidate_usd, counterparty, approval_usd, intent_id)
            if not decision.allowed:
                self._violations.add(user_id, Violation(intent_id, decision.reason, self._clock()))
                logger.warning(f"[LIMITER] rejected user_id={user_id} intent_id={intent_id}: {decision.reason}")
                return decision

            self._reservations.setdefault(user_id, {})[intent_id] = candidate_usd or Decimal("0")
            return decision

    async def record_spend(self, user_id: str, intent_id: str, usd: Optional[Decimal]) -> bool:
        """
        Commits a spend. Idempotent per intent_id: a retried Build never
        double-counts. Returns False when the intent was already recorded.
        The daily window is rolled first, so a spend committed after midnight
        counts toward the new day.
        """
        async with self._user_locks.hold(user_id):
            try:
                await self._current_limits(user_id)
                recorded = await self.store.increment_spent(user_id, usd or Decimal("0"), intent_id)
            finally:
                self._drop_reservation(user_id, intent_id)
            if not recorded:
                logger.info(f"[LIMITER] spend already recorded for intent_id={intent_id}")
            return recorded

    async def release(self, user_id: str, intent_id: str) -> None:
        async with self._user_locks.hold(user_id):
            self._drop_reservation(user_id, intent_id)

    def recent_violations(self, user_id: str) -> List[Violation]:
        return self._violations.get(user_id)

    def reserved_usd(self, user_id: str) -> Decimal:
        return sum(self._reservations.get(user_id, {}).values(), Decimal("0"))

    def shutdown(self) -> None:
        self._reservations.clear()
        self._violations.clear()
        self._user_locks.clear()

    # -------------------------------------------------
    # Internals
    # -------------------------------------------------
    async def _current_limits(self, user_id: str) -> UserLimits:
        now = self._clock()
        limits = await self.store.get(user_id)
        if limits.last_reset_at < start_of_day(now):
            limits = await self.store.reset_daily(user_id, now)
            logger.info(f"[LIMITER] daily reset for user_id={user_id}")
        return limits

    def _drop_reservation(self, user_id: str, intent_id: str) -> None:
        reservations = self._reservations.get(user_id)
        if reservations is None:
            return
        reservations.pop(intent_id, None)
        if not reservations:
            del self._reservations[user_id]

    def _evaluate(
        self,
        limits: UserLimits,
        candidate_usd: Optional[Decimal],
        counterparty: Optional[str],
        approval_usd: Optional[Decimal],
        intent_id: Optional[str],
    ) -> LimitDecision:
        # DAILY CAP
        if limits.daily_usd_cap is not None:
            if candidate_usd is None:
                return LimitDecision(
                    type=LimitDecisionType.REJECT,
                    reason="USD value unavailable; daily spending limit cannot be verified",
                )
            reserved = sum(
                (
                    usd
                    for other_id, usd in self._reservations.get(limits.user_id, {}).items()
                    if other_id != intent_id
                ),
                Decimal("0"),
            )
            projected = limits.daily_spent_usd + reserved + candidate_usd
            if projected > limits.daily_usd_cap:
                return LimitDecision(
                    type=LimitDecisionType.REJECT,
                    reason=(
                        f"Exceeds daily spending limit: ${projected:,.2f} "
                        f"of ${limits.daily_usd_cap:,.2f}"
                    ),
                    meta={
                        "daily_spent_usd": str(limits.daily_spent_usd),
                        "reserved_usd": str(reserved),
                        "candidate_usd": str(candidate_usd),
                        "daily_usd_cap": str(limits.daily_usd_cap),
                    },
                )

        # APPROVAL CAP
        if (
            approval_usd is not None
            and limits.max_approval_usd is not None
            and approval_usd > limits.max_approval_usd
        ):
            return LimitDecision(
                type=LimitDecisionType.REJECT,
                reason=(
                    f"Approval of ${approval_usd:,.2f} exceeds maximum approval "
                    f"limit of ${limits.max_approval_usd:,.2f}"
                ),
            )

        # ALLOWLIST
        if counterparty and not limits.allows(counterparty):
            return LimitDecision(
                type=LimitDecisionType.REJECT,
                reason=f"Counterparty {counterparty} is not on your allowlist",
            )

        return LimitDecision(type=LimitDecisionType.ALLOW)
