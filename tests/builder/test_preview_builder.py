from decimal import Decimal

from core.intent import BalancesGet, BridgeTransfer, RewardsClaim, TradeSwap, TransferSend
from executors.base import PreflightResult
from models.quotes import BalanceSnapshot, ClaimableReward, RewardsQuote, SimulationResult, TransferQuote
from services.preview_builder import PreviewBuilder
from tests.fakes import GWEI, RECIPIENT, TAKER, USDC_MAINNET, make_bridge_quote, make_snapshot, make_swap_quote

SWAP = TradeSwap(taker_address=TAKER, chain_id=1, from_token="USDC", to_token="ETH", amount="100")


def test_swap_preview_summary_and_deltas():
    preview = PreviewBuilder().build(SWAP, PreflightResult(quote=make_swap_quote()))

    assert preview.summary == "Swap 100 USDC for ~0.04 ETH (min 0.0398)"
    assert [d.direction for d in preview.token_deltas] == ["out", "in"]
    assert preview.gas_cost.estimated_gas == 180_000
    assert preview.warnings == []


def test_high_slippage_warning():
    quote = make_swap_quote(slippage_pct=Decimal("2.5"))
    preview = PreviewBuilder(high_slippage_pct=1.0).build(SWAP, PreflightResult(quote=quote))

    assert "High slippage: 2.5% expected" in preview.warnings


def test_high_gas_warning():
    quote = make_swap_quote(gas_price=80 * GWEI)
    preview = PreviewBuilder(gas_warning_gwei=50).build(SWAP, PreflightResult(quote=quote))

    assert "Gas prices are high (80 gwei)" in preview.warnings


def test_failed_simulation_and_extra_warnings_are_appended():
    preview = PreviewBuilder().build(
        SWAP,
        PreflightResult(quote=make_swap_quote()),
        simulation=SimulationResult(success=False, revert_reason="STF"),
        extra_warnings=["Safety limit: over cap"],
    )

    assert preview.warnings == ["Simulation failed: STF", "Safety limit: over cap"]
    assert preview.simulation_result.success is False


def test_insufficient_balance_warning_on_transfer():
    intent = TransferSend(taker_address=TAKER, chain_id=1, token="USDC", amount="50", recipient=RECIPIENT)
    quote = TransferQuote(
        chain_id=1,
        token=USDC_MAINNET,
        symbol="USDC",
        decimals=6,
        amount="50000000",
        recipient=RECIPIENT,
        balance="10000000",
        gas=65_000,
        gas_price=20 * GWEI,
        usd_value=Decimal("50"),
    )
    preview = PreviewBuilder().build(intent, PreflightResult(quote=quote))

    assert "Insufficient USDC balance: have 10, need 50" in preview.warnings


def test_slow_bridge_warning():
    intent = BridgeTransfer(
        taker_address=TAKER, chain_id=1, token="USDC", amount="250", from_chain_id=1, to_chain_id=42161
    )
    preview = PreviewBuilder().build(intent, PreflightResult(quote=make_bridge_quote()))

    assert "Bridge may take about 15 minutes to complete" in preview.warnings
    assert "via stargate" in preview.summary


def test_rewards_preview_warns_about_unclaimed_rest():
    rewards = [
        ClaimableReward(id=f"r-{i}", platform="galxe", title=f"Quest {i}", claim_contract=RECIPIENT, claim_data="0x01")
        for i in range(3)
    ]
    quote = RewardsQuote(chain_id=1, rewards=rewards, gas=150_000, gas_price=20 * GWEI)
    preview = PreviewBuilder().build(RewardsClaim(taker_address=TAKER, chain_id=1), PreflightResult(quote=quote))

    assert preview.warnings == [
        "Only the highest-value reward (Quest 0) is claimed in this transaction; 2 more remain"
    ]


def test_empty_rewards_preview():
    quote = RewardsQuote(chain_id=1, rewards=[], gas=0, gas_price=0)
    preview = PreviewBuilder().build(RewardsClaim(taker_address=TAKER, chain_id=1), PreflightResult(quote=quote))

    assert preview.summary == "No claimable rewards found"
    assert preview.gas_cost is None


def test_balances_preview_summary():
    intent = BalancesGet(taker_address=TAKER, chain_id=1)
    preview = PreviewBuilder().build(intent, PreflightResult(snapshot=make_snapshot()))

    assert preview.summary.startswith("2 token balance(s) across 1 chain(s)")


def test_empty_balances_preview():
    intent = BalancesGet(taker_address=TAKER, chain_id=1)
    preview = PreviewBuilder().build(intent, PreflightResult(snapshot=BalanceSnapshot(address=TAKER)))

    assert preview.summary == "No token balances found"
