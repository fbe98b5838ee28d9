# tests/fakes.py
"""
In-process stand-ins for providers, telemetry and stores, plus a
pipeline factory wired entirely to them.
"""

import asyncio
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from core.errors import PersistenceError
from core.tokens import NATIVE_TOKEN_ADDRESS
from executors.balances import BalancesExecutor
from executors.bridge import BridgeExecutor
from executors.rewards import RewardsExecutor
from executors.swap import SwapExecutor
from executors.transfer import TransferExecutor
from models.quotes import (
    BalanceSnapshot,
    BridgeQuote,
    ClaimableReward,
    Permit2Payload,
    SwapQuote,
    TokenBalance,
    utcnow,
)
from services.pipeline_executor import PipelineExecutor
from services.providers import StaticGasPriceProvider
from services.safety_limiter import SafetyLimiter
from services.zeroex import PERMIT2_ADDRESS
from storage.memory import InMemoryIntentStore, InMemoryLimitsStore, InMemoryTransactionStore

TAKER = "0x742d35Cc6634C0532925a3b844Bc454e4438f44e"
RECIPIENT = "0x1111111111111111111111111111111111111111"
ROUTER = "0xDef1C0ded9bec7F1a1670819833240f027b25EfF"
BRIDGE_ROUTER = "0x1231DEB6f5749EF6cE6943a275A1D3E7486F4EaE"
USDC_MAINNET = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
USDC_ARBITRUM = "0xaf88d065e77c8cC2239327C5EDb3A432268e5831"
GWEI = 10**9


# -----------------------------
# Quote factories
# -----------------------------
def make_swap_quote(
    *,
    usd_value: Optional[Decimal] = Decimal("100"),
    permit2: bool = True,
    slippage_pct: Decimal = Decimal("0.5"),
    gas_price: int = 20 * GWEI,
    allowance_target: Optional[str] = None,
    sell_token: str = USDC_MAINNET,
    fetched_at: Optional[datetime] = None,
) -> SwapQuote:
    return SwapQuote(
        chain_id=1,
        sell_token=sell_token,
        buy_token=NATIVE_TOKEN_ADDRESS,
        sell_symbol="USDC",
        buy_symbol="ETH",
        sell_decimals=6,
        buy_decimals=18,
        sell_amount="100000000",
        buy_amount="40000000000000000",
        min_buy_amount="39800000000000000",
        expected_slippage_pct=slippage_pct,
        sources=["Uniswap_V3"],
        to=ROUTER,
        data="0xdeadbeef",
        value="0",
        gas=180_000,
        gas_price=gas_price,
        usd_value=usd_value,
        allowance_target=allowance_target or (PERMIT2_ADDRESS if permit2 else ROUTER),
        permit2=Permit2Payload(eip712={"primaryType": "PermitTransferFrom"}, hash="0xabc") if permit2 else None,
        fetched_at=fetched_at or utcnow(),
    )


def make_bridge_quote(*, usd_value: Optional[Decimal] = Decimal("250")) -> BridgeQuote:
    return BridgeQuote(
        from_chain_id=1,
        to_chain_id=42161,
        token=USDC_MAINNET,
        token_symbol="USDC",
        decimals=6,
        from_amount="250000000",
        to_amount="249100000",
        to_amount_min="248000000",
        bridge="stargate",
        estimated_duration_seconds=900,
        fee_usd=Decimal("0.90"),
        to=BRIDGE_ROUTER,
        data="0xbeefcafe",
        value="0",
        gas=250_000,
        gas_price=15 * GWEI,
        usd_value=usd_value,
        allowance_target=BRIDGE_ROUTER,
    )


def make_snapshot(usdc_balance: str = "100000000000") -> BalanceSnapshot:
    return BalanceSnapshot(
        address=TAKER,
        balances=[
            TokenBalance(
                chain_id=1,
                token=USDC_MAINNET,
                symbol="USDC",
                decimals=6,
                balance=usdc_balance,
                usd_value=Decimal(usdc_balance) / Decimal(10**6),
            ),
            TokenBalance(
                chain_id=1,
                token=NATIVE_TOKEN_ADDRESS,
                symbol="ETH",
                decimals=18,
                balance="2000000000000000000",
            ),
        ],
    )


# -----------------------------
# Providers
# -----------------------------
class FakeSwapProvider:
    def __init__(self, quote: Optional[SwapQuote] = None, error: Optional[Exception] = None, delay: float = 0):
        self.quote = quote or make_swap_quote()
        self.error = error
        self.delay = delay
        self.calls = 0

    async def get_swap_quote(self, intent):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.quote


class FakeBridgeProvider:
    def __init__(self, quote: Optional[BridgeQuote] = None, error: Optional[Exception] = None):
        self.quote = quote or make_bridge_quote()
        self.error = error

    async def get_bridge_quote(self, intent):
        if self.error:
            raise self.error
        return self.quote


class FakeBalanceProvider:
    def __init__(self, snapshot: Optional[BalanceSnapshot] = None, error: Optional[Exception] = None):
        self.snapshot = snapshot or make_snapshot()
        self.error = error
        self.requests: List[Tuple[str, List[int], bool]] = []

    async def get_balances(self, address, chain_ids, include_nfts=False):
        self.requests.append((address, chain_ids, include_nfts))
        if self.error:
            raise self.error
        return self.snapshot


class FakeRewardsProvider:
    def __init__(self, rewards: Optional[List[ClaimableReward]] = None):
        self.rewards = rewards or []

    async def get_claimable_rewards(self, address, chain_id, platforms=None):
        if platforms:
            return [r for r in self.rewards if r.platform in platforms]
        return list(self.rewards)


class FakeSimulator:
    def __init__(self, result):
        self.result = result
        self.calls = 0

    async def simulate(self, chain_id, from_address, to, data, value):
        self.calls += 1
        return self.result


# -----------------------------
# Telemetry
# -----------------------------
class RecordingTelemetry:
    def __init__(self):
        self.events: List[Tuple[Optional[str], str, Dict[str, Any]]] = []
        self.shutdown_called = False

    def log(self, user_id, event_type, payload):
        self.events.append((user_id, event_type, payload))

    def types(self) -> List[str]:
        return [event_type for _user, event_type, _payload in self.events]

    async def shutdown(self):
        self.shutdown_called = True


class ExplodingTelemetry:
    def log(self, user_id, event_type, payload):
        raise RuntimeError("telemetry backend down")

    async def shutdown(self):
        return None


# -----------------------------
# Stores
# -----------------------------
class FlakyIntentStore(InMemoryIntentStore):
    """Fails status writes into the given target statuses."""

    def __init__(self, fail_on=()):
        super().__init__()
        self.fail_on = set(fail_on)

    async def update_status(self, intent_id, status, *, expected, executed_at=None, patch=None):
        if status in self.fail_on:
            raise PersistenceError(f"write to '{status.value}' failed")
        return await super().update_status(
            intent_id, status, expected=expected, executed_at=executed_at, patch=patch
        )


# -----------------------------
# Pipeline factory
# -----------------------------
def make_pipeline(
    *,
    swap: Optional[FakeSwapProvider] = None,
    bridge: Optional[FakeBridgeProvider] = None,
    balances: Optional[FakeBalanceProvider] = None,
    rewards: Optional[FakeRewardsProvider] = None,
    telemetry=None,
    intents=None,
    simulator=None,
    timeout: float = 1.0,
    **kwargs,
):
    gas = StaticGasPriceProvider(gwei=20)
    balances = balances or FakeBalanceProvider()
    limits = InMemoryLimitsStore()
    transactions = InMemoryTransactionStore()
    pipeline = PipelineExecutor(
        intents=intents or InMemoryIntentStore(),
        transactions=transactions,
        limiter=SafetyLimiter(limits),
        telemetry=telemetry or RecordingTelemetry(),
        simulator=simulator,
        executors={
            "trade.swap": SwapExecutor(swap or FakeSwapProvider(), gas, timeout=timeout),
            "bridge.transfer": BridgeExecutor(bridge or FakeBridgeProvider(), gas, timeout=timeout),
            "transfer.send": TransferExecutor(balances, gas, timeout=timeout),
            "balances.get": BalancesExecutor(balances, timeout=timeout),
            "rewards.claim": RewardsExecutor(rewards or FakeRewardsProvider(), gas, timeout=timeout),
        },
        **kwargs,
    )
    return pipeline
