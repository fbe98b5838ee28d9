# FILE: services/preview_builder.py
"""
Turns preflight data into a human-readable Preview.

Pure: no I/O, no status changes. Warnings are advisory and never block a
transition; the pipeline appends limiter warnings of its own.
"""

from decimal import Decimal
from typing import List, Optional

from config import GAS_PRICE_WARNING_GWEI, HIGH_SLIPPAGE_PCT
from core.intent import BalancesGet, BridgeTransfer, Intent, RewardsClaim, TradeSwap, TransferSend
from core.tokens import SUPPORTED_CHAINS, from_base_units
from executors.base import PreflightResult
from models.execution import DecodedCall, GasCost, Preview, TokenDelta
from models.quotes import BridgeQuote, RewardsQuote, SimulationResult, SwapQuote, TransferQuote

GWEI = Decimal(10**9)
SLOW_BRIDGE_SECONDS = 600


def _chain_name(chain_id: int) -> str:
    return SUPPORTED_CHAINS.get(chain_id, str(chain_id)).capitalize()


def _usd(value: Optional[Decimal]) -> str:
    return f"${value:,.2f}" if value is not None else "unknown USD value"


class PreviewBuilder:
    def __init__(
        self,
        gas_warning_gwei: float = GAS_PRICE_WARNING_GWEI,
        high_slippage_pct: float = HIGH_SLIPPAGE_PCT,
    ):
        self.gas_warning_gwei = Decimal(str(gas_warning_gwei))
        self.high_slippage_pct = Decimal(str(high_slippage_pct))

    def build(
        self,
        intent: Intent,
        preflight: PreflightResult,
        *,
        simulation: Optional[SimulationResult] = None,
        extra_warnings: Optional[List[str]] = None,
    ) -> Preview:
        if isinstance(intent, TradeSwap):
            preview = self._swap(preflight.quote)
        elif isinstance(intent, BridgeTransfer):
            preview = self._bridge(preflight.quote)
        elif isinstance(intent, TransferSend):
            preview = self._transfer(preflight.quote)
        elif isinstance(intent, RewardsClaim):
            preview = self._rewards(preflight.quote)
        elif isinstance(intent, BalancesGet):
            preview = self._balances(preflight)
        else:
            raise TypeError(f"no preview for intent type {type(intent).__name__}")

        warnings = list(preview.warnings)
        if preview.gas_cost is not None:
            warnings.extend(self._gas_warnings(preview.gas_cost))
        if simulation is not None and not simulation.success:
            warnings.append(f"Simulation failed: {simulation.revert_reason or 'transaction would revert'}")
        warnings.extend(extra_warnings or [])

        return preview.model_copy(update={"warnings": warnings, "simulation_result": simulation})

    # -------------------------------------------------
    # Shared pieces
    # -------------------------------------------------
    def _gas_cost(self, quote) -> GasCost:
        total_wei = quote.gas * quote.gas_price
        total_eth = from_base_units(total_wei, 18)
        return GasCost(
            estimated_gas=quote.gas,
            gas_price=quote.gas_price,
            total_cost_eth=total_eth,
        )

    def _gas_warnings(self, gas_cost: GasCost) -> List[str]:
        gwei = Decimal(gas_cost.gas_price) / GWEI
        if gwei > self.gas_warning_gwei:
            return [f"Gas prices are high ({gwei:.0f} gwei)"]
        return []

    # -------------------------------------------------
    # Variants
    # -------------------------------------------------
    def _swap(self, quote: SwapQuote) -> Preview:
        sell = from_base_units(int(quote.sell_amount), quote.sell_decimals)
        buy = from_base_units(int(quote.buy_amount), quote.buy_decimals)
        min_buy = from_base_units(int(quote.min_buy_amount), quote.buy_decimals)

        warnings = []
        if quote.expected_slippage_pct > self.high_slippage_pct:
            warnings.append(f"High slippage: {quote.expected_slippage_pct.normalize()}% expected")

        return Preview(
            summary=f"Swap {sell} {quote.sell_symbol} for ~{buy} {quote.buy_symbol} (min {min_buy})",
            token_deltas=[
                TokenDelta(token=quote.sell_token, symbol=quote.sell_symbol, amount=sell, direction="out", usd_value=quote.usd_value),
                TokenDelta(token=quote.buy_token, symbol=quote.buy_symbol, amount=buy, direction="in"),
            ],
            gas_cost=self._gas_cost(quote),
            warnings=warnings,
            decoded_calls=[
                DecodedCall(
                    target=quote.to,
                    method="swap",
                    params={"sources": quote.sources, "permit2": quote.permit2 is not None},
                )
            ],
        )

    def _bridge(self, quote: BridgeQuote) -> Preview:
        sent = from_base_units(int(quote.from_amount), quote.decimals)
        received = from_base_units(int(quote.to_amount), quote.decimals)

        warnings = []
        if quote.estimated_duration_seconds and quote.estimated_duration_seconds > SLOW_BRIDGE_SECONDS:
            warnings.append(
                f"Bridge may take about {quote.estimated_duration_seconds // 60} minutes to complete"
            )
        if quote.fee_usd and quote.usd_value and quote.fee_usd > quote.usd_value * Decimal("0.05"):
            warnings.append(f"Bridge fees are high: {_usd(quote.fee_usd)} on {_usd(quote.usd_value)}")

        return Preview(
            summary=(
                f"Bridge {sent} {quote.token_symbol} from {_chain_name(quote.from_chain_id)} "
                f"to {_chain_name(quote.to_chain_id)} via {quote.bridge}"
            ),
            token_deltas=[
                TokenDelta(token=quote.token, symbol=quote.token_symbol, amount=sent, direction="out", usd_value=quote.usd_value),
                TokenDelta(token=quote.token, symbol=quote.token_symbol, amount=received, direction="in"),
            ],
            gas_cost=self._gas_cost(quote),
            warnings=warnings,
            decoded_calls=[DecodedCall(target=quote.to, method="bridge", params={"bridge": quote.bridge})],
        )

    def _transfer(self, quote: TransferQuote) -> Preview:
        amount = from_base_units(int(quote.amount), quote.decimals)
        warnings = []
        if quote.balance is not None and int(quote.balance) < int(quote.amount):
            have = from_base_units(int(quote.balance), quote.decimals)
            warnings.append(f"Insufficient {quote.symbol} balance: have {have}, need {amount}")

        return Preview(
            summary=f"Send {amount} {quote.symbol} ({_usd(quote.usd_value)}) to {quote.recipient}",
            token_deltas=[
                TokenDelta(token=quote.token, symbol=quote.symbol, amount=amount, direction="out", usd_value=quote.usd_value)
            ],
            gas_cost=self._gas_cost(quote),
            warnings=warnings,
        )

    def _rewards(self, quote: RewardsQuote) -> Preview:
        if not quote.rewards:
            return Preview(summary="No claimable rewards found")

        top = quote.rewards[0]
        warnings = []
        if len(quote.rewards) > 1:
            warnings.append(
                f"Only the highest-value reward ({top.title}) is claimed in this transaction; "
                f"{len(quote.rewards) - 1} more remain"
            )
        deltas = [
            TokenDelta(
                token=r.reward_token or "",
                symbol=r.reward_symbol or "?",
                amount=r.reward_amount or "0",
                direction="in",
                usd_value=r.usd_value,
            )
            for r in quote.rewards
            if r.reward_amount
        ]
        return Preview(
            summary=f"Claim {len(quote.rewards)} reward(s); top: {top.title} on {top.platform}",
            token_deltas=deltas,
            gas_cost=self._gas_cost(quote),
            warnings=warnings,
            decoded_calls=[DecodedCall(target=top.claim_contract, method="claim", params={"reward_id": top.id})],
        )

    def _balances(self, preflight: PreflightResult) -> Preview:
        snapshot = preflight.snapshot
        if snapshot is None or not snapshot.balances:
            summary = "No token balances found"
        else:
            chains = {b.chain_id for b in snapshot.balances}
            total = snapshot.total_usd
            summary = f"{len(snapshot.balances)} token balance(s) across {len(chains)} chain(s)"
            if total is not None:
                summary += f", stablecoins worth {_usd(total)}"
        if snapshot is not None and snapshot.nft_count is not None:
            summary += f"; {snapshot.nft_count} NFT(s)"
        return Preview(summary=summary)
