# FILE: services/providers.py
"""
Provider contracts the preflight executors call, plus the two providers
that need no external service (static gas price, unconfigured rewards).

HTTP-backed providers live in services/zeroex.py, services/lifi.py and
services/alchemy.py and share `fetch_json` below.
"""

import logging
from typing import Any, Dict, List, Optional, Protocol

import requests

from config import DEFAULT_GAS_PRICE_GWEI
from core.errors import ProviderError
from core.intent import BridgeTransfer, TradeSwap
from models.quotes import BalanceSnapshot, BridgeQuote, ClaimableReward, SimulationResult, SwapQuote

logger = logging.getLogger("providers")

DEFAULT_USER_AGENT = "wallet-hub/1.0"
GWEI = 10**9


# -----------------------------
# Contracts
# -----------------------------
class SwapQuoteProvider(Protocol):
    async def get_swap_quote(self, intent: TradeSwap) -> SwapQuote: ...


class BridgeQuoteProvider(Protocol):
    async def get_bridge_quote(self, intent: BridgeTransfer) -> BridgeQuote: ...


class BalanceProvider(Protocol):
    async def get_balances(
        self, address: str, chain_ids: List[int], include_nfts: bool = False
    ) -> BalanceSnapshot: ...


class RewardsProvider(Protocol):
    async def get_claimable_rewards(
        self, address: str, chain_id: int, platforms: Optional[List[str]] = None
    ) -> List[ClaimableReward]: ...


class GasPriceProvider(Protocol):
    async def get_gas_price(self, chain_id: int) -> int: ...


class TransactionSimulator(Protocol):
    async def simulate(
        self, chain_id: int, from_address: str, to: str, data: str, value: str
    ) -> SimulationResult: ...


# -----------------------------
# Local providers
# -----------------------------
class StaticGasPriceProvider:
    """Returns a configured gas price; live gas price fetching is not done here."""

    def __init__(self, gwei: float = DEFAULT_GAS_PRICE_GWEI, per_chain: Optional[Dict[int, float]] = None):
        self.gwei = gwei
        self.per_chain = per_chain or {}

    async def get_gas_price(self, chain_id: int) -> int:
        return int(self.per_chain.get(chain_id, self.gwei) * GWEI)


class UnconfiguredRewardsProvider:
    """
    No reward platform integration is configured: nothing is claimable.
    An empty result is a valid outcome, not an error.
    """

    def __init__(self):
        self._warned = False

    async def get_claimable_rewards(
        self, address: str, chain_id: int, platforms: Optional[List[str]] = None
    ) -> List[ClaimableReward]:
        if not self._warned:
            logger.warning("⚠️ No rewards platform configured; returning no claimable rewards")
            self._warned = True
        return []


# -----------------------------
# HTTP helper
# -----------------------------
def fetch_json(
    session: requests.Session,
    method: str,
    url: str,
    *,
    provider: str,
    timeout: float,
    params: Optional[Dict[str, Any]] = None,
    json_body: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> Any:
    """
    Blocking request; callers run it through asyncio.to_thread.
    Every transport or HTTP failure becomes a ProviderError.
    """
    merged_headers = {"User-Agent": DEFAULT_USER_AGENT}
    if headers:
        merged_headers.update(headers)
    try:
        resp = session.request(
            method,
            url,
            params=params,
            json=json_body,
            timeout=timeout,
            headers=merged_headers,
        )
        resp.raise_for_status()
        return resp.json()
    except requests.HTTPError as e:
        body = e.response.text[:200] if e.response is not None else ""
        raise ProviderError(provider, f"HTTP {getattr(e.response, 'status_code', '?')}: {body}") from e
    except requests.RequestException as e:
        raise ProviderError(provider, f"request failed: {e}") from e
    except ValueError as e:
        raise ProviderError(provider, "response was not valid JSON") from e


def parse_int(value: Any, default: int = 0) -> int:
    """Accepts decimal strings, 0x-hex strings and ints."""
    if value is None or value == "":
        return default
    if isinstance(value, int):
        return value
    text = str(value).strip()
    return int(text, 16) if text.lower().startswith("0x") else int(text)
