# FILE: services/lifi.py
import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import requests

from config import DEFAULT_SLIPPAGE_BPS, LIFI_BASE_URL, PROVIDER_TIMEOUT_SECONDS
from core.errors import ProviderError
from core.intent import BridgeTransfer
from core.tokens import resolve_token, to_base_units
from models.quotes import BridgeQuote
from services.providers import fetch_json, parse_int

logger = logging.getLogger("lifi")


def _decimal_or_none(value: Any) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


class LiFiBridgeQuoteProvider:
    name = "lifi"

    def __init__(
        self,
        base_url: str = LIFI_BASE_URL,
        timeout: float = PROVIDER_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    async def get_bridge_quote(self, intent: BridgeTransfer) -> BridgeQuote:
        src = resolve_token(intent.token, intent.from_chain_id)
        dst = resolve_token(intent.token, intent.to_chain_id)
        if src is None or dst is None:
            chain = intent.from_chain_id if src is None else intent.to_chain_id
            raise ProviderError(self.name, f"unsupported token {intent.token} on chain {chain}")

        try:
            from_amount = to_base_units(intent.amount, src.decimals)
        except ValueError as e:
            raise ProviderError(self.name, str(e)) from e

        slippage_bps = DEFAULT_SLIPPAGE_BPS
        if intent.constraints and intent.constraints.slippage_bps is not None:
            slippage_bps = intent.constraints.slippage_bps

        params = {
            "fromChain": intent.from_chain_id,
            "toChain": intent.to_chain_id,
            "fromToken": src.address,
            "toToken": dst.address,
            "fromAmount": str(from_amount),
            "fromAddress": intent.taker_address,
            "slippage": str(Decimal(slippage_bps) / Decimal(10000)),
        }
        logger.info(
            f"[LIFI] quote {intent.amount} {src.symbol} {intent.from_chain_id}->{intent.to_chain_id}"
        )
        data = await asyncio.to_thread(
            fetch_json,
            self.session,
            "GET",
            f"{self.base_url}/quote",
            provider=self.name,
            timeout=self.timeout,
            params=params,
        )
        return self._to_quote(data, intent, src)

    def _to_quote(self, data: Dict[str, Any], intent: BridgeTransfer, src) -> BridgeQuote:
        estimate = data.get("estimate") or {}
        tx = data.get("transactionRequest") or {}
        if not tx.get("to") or not tx.get("data"):
            raise ProviderError(self.name, "quote response has no transaction request")

        fee_usd = sum(
            (_decimal_or_none(fee.get("amountUSD")) or Decimal("0") for fee in estimate.get("feeCosts") or []),
            Decimal("0"),
        )
        usd_value = _decimal_or_none(estimate.get("fromAmountUSD"))
        if usd_value is None and src.usd_reference is not None:
            usd_value = Decimal(intent.amount) * src.usd_reference

        return BridgeQuote(
            from_chain_id=intent.from_chain_id,
            to_chain_id=intent.to_chain_id,
            token=src.address,
            token_symbol=src.symbol,
            decimals=src.decimals,
            from_amount=str(parse_int(estimate.get("fromAmount") or data.get("action", {}).get("fromAmount"))),
            to_amount=str(parse_int(estimate.get("toAmount"))),
            to_amount_min=str(parse_int(estimate.get("toAmountMin"))),
            bridge=data.get("tool") or "unknown",
            estimated_duration_seconds=(
                int(estimate["executionDuration"]) if estimate.get("executionDuration") is not None else None
            ),
            fee_usd=fee_usd,
            to=tx["to"],
            data=tx["data"],
            value=str(parse_int(tx.get("value"))),
            gas=parse_int(tx.get("gasLimit")),
            gas_price=parse_int(tx.get("gasPrice")),
            usd_value=usd_value,
            allowance_target=estimate.get("approvalAddress"),
        )
