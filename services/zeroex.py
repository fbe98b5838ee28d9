# FILE: services/zeroex.py
import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import requests

from config import DEFAULT_SLIPPAGE_BPS, PROVIDER_TIMEOUT_SECONDS, ZEROX_API_KEY, ZEROX_BASE_URL
from core.errors import ProviderError
from core.intent import TradeSwap
from core.tokens import from_base_units, resolve_token, to_base_units
from models.quotes import Permit2Payload, SwapQuote
from services.providers import fetch_json, parse_int

logger = logging.getLogger("zeroex")

PERMIT2_ADDRESS = "0x000000000022D473030F116dDEE9F6B43aC78BA3"


class ZeroExSwapQuoteProvider:
    """
    0x Swap API v2, Permit2 flavour. The returned quote carries the EIP-712
    payload the wallet signs, so no separate approval transaction is needed.
    """

    name = "0x"

    def __init__(
        self,
        api_key: Optional[str] = ZEROX_API_KEY,
        base_url: str = ZEROX_BASE_URL,
        timeout: float = PROVIDER_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    async def get_swap_quote(self, intent: TradeSwap) -> SwapQuote:
        sell = resolve_token(intent.from_token, intent.chain_id)
        buy = resolve_token(intent.to_token, intent.chain_id)
        if sell is None or buy is None:
            missing = intent.from_token if sell is None else intent.to_token
            raise ProviderError(self.name, f"unsupported token {missing} on chain {intent.chain_id}")

        try:
            sell_amount = to_base_units(intent.amount, sell.decimals)
        except ValueError as e:
            raise ProviderError(self.name, str(e)) from e

        constraints = intent.constraints
        slippage_bps = (
            constraints.slippage_bps
            if constraints and constraints.slippage_bps is not None
            else DEFAULT_SLIPPAGE_BPS
        )
        params: Dict[str, Any] = {
            "chainId": intent.chain_id,
            "sellToken": sell.address,
            "buyToken": buy.address,
            "sellAmount": str(sell_amount),
            "taker": intent.taker_address,
            "slippageBps": slippage_bps,
        }
        if constraints and constraints.preferred_sources:
            params["includedSources"] = ",".join(constraints.preferred_sources)
        if constraints and constraints.max_gas_price_wei:
            params["gasPrice"] = str(constraints.max_gas_price_wei)

        logger.info(f"[0x] quote chain={intent.chain_id} {sell.symbol}->{buy.symbol} amount={intent.amount}")
        data = await asyncio.to_thread(
            fetch_json,
            self.session,
            "GET",
            f"{self.base_url}/swap/permit2/quote",
            provider=self.name,
            timeout=self.timeout,
            params=params,
            headers=self._headers(),
        )
        return self._to_quote(data, intent, sell, buy)

    def _headers(self) -> Dict[str, str]:
        headers = {"0x-version": "v2"}
        if self.api_key:
            headers["0x-api-key"] = self.api_key
        return headers

    def _to_quote(self, data: Dict[str, Any], intent: TradeSwap, sell, buy) -> SwapQuote:
        if not data.get("liquidityAvailable", True):
            raise ProviderError(self.name, "no liquidity available for this pair")
        tx = data.get("transaction") or {}
        if not tx.get("to") or not tx.get("data"):
            raise ProviderError(self.name, "quote response has no transaction")

        buy_amount = parse_int(data.get("buyAmount"))
        min_buy_amount = parse_int(data.get("minBuyAmount"), buy_amount)

        # Price impact when reported, otherwise the spread the route may slip
        if data.get("estimatedPriceImpact") is not None:
            slippage_pct = Decimal(str(data["estimatedPriceImpact"]))
        elif buy_amount > 0:
            slippage_pct = (Decimal(buy_amount - min_buy_amount) / Decimal(buy_amount)) * 100
        else:
            slippage_pct = Decimal("0")

        permit2 = None
        if data.get("permit2") and data["permit2"].get("eip712"):
            permit2 = Permit2Payload(eip712=data["permit2"]["eip712"], hash=data["permit2"].get("hash"))

        allowance = (data.get("issues") or {}).get("allowance") or {}
        allowance_target = allowance.get("spender") or (PERMIT2_ADDRESS if permit2 else None)

        fills = (data.get("route") or {}).get("fills") or []
        sources = sorted({f.get("source") for f in fills if f.get("source")})

        return SwapQuote(
            chain_id=intent.chain_id,
            sell_token=sell.address,
            buy_token=buy.address,
            sell_symbol=sell.symbol,
            buy_symbol=buy.symbol,
            sell_decimals=sell.decimals,
            buy_decimals=buy.decimals,
            sell_amount=str(parse_int(data.get("sellAmount"))),
            buy_amount=str(buy_amount),
            min_buy_amount=str(min_buy_amount),
            expected_slippage_pct=slippage_pct.quantize(Decimal("0.0001")),
            sources=sources,
            to=tx["to"],
            data=tx["data"],
            value=str(parse_int(tx.get("value"))),
            gas=parse_int(tx.get("gas")),
            gas_price=parse_int(tx.get("gasPrice")),
            usd_value=_usd_value(sell, buy, intent.amount, buy_amount),
            allowance_target=allowance_target,
            permit2=permit2,
        )


def _usd_value(sell, buy, sell_amount: str, buy_amount: int) -> Optional[Decimal]:
    """Valued through whichever side is a stablecoin; None when neither is."""
    if sell.usd_reference is not None:
        return Decimal(sell_amount) * sell.usd_reference
    if buy.usd_reference is not None:
        return Decimal(from_base_units(buy_amount, buy.decimals)) * buy.usd_reference
    return None
