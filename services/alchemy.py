# FILE: services/alchemy.py
import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

import requests

from config import ALCHEMY_API_KEY, PROVIDER_TIMEOUT_SECONDS
from core.errors import ProviderError
from core.tokens import NATIVE_SYMBOL, from_base_units, native_token, resolve_token
from models.quotes import BalanceSnapshot, TokenBalance
from services.providers import fetch_json, parse_int

logger = logging.getLogger("alchemy")

NETWORKS: Dict[int, str] = {
    1: "eth-mainnet",
    10: "opt-mainnet",
    56: "bnb-mainnet",
    137: "polygon-mainnet",
    8453: "base-mainnet",
    42161: "arb-mainnet",
}


class AlchemyBalanceProvider:
    """
    Native + ERC-20 balances over Alchemy JSON-RPC.
    Zero balances are dropped; an address holding nothing yields an empty
    snapshot, which is a valid result.
    """

    name = "alchemy"

    def __init__(
        self,
        api_key: Optional[str] = ALCHEMY_API_KEY,
        timeout: float = PROVIDER_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()
        self._metadata_cache: Dict[tuple, Dict[str, Any]] = {}

    async def get_balances(
        self, address: str, chain_ids: List[int], include_nfts: bool = False
    ) -> BalanceSnapshot:
        if not self.api_key:
            raise ProviderError(self.name, "ALCHEMY_API_KEY is not configured")

        balances: List[TokenBalance] = []
        nft_count = 0 if include_nfts else None
        for chain_id in chain_ids:
            if chain_id not in NETWORKS:
                raise ProviderError(self.name, f"unsupported chain id: {chain_id}")
            balances.extend(await asyncio.to_thread(self._chain_balances, address, chain_id))
            if include_nfts:
                nft_count += await asyncio.to_thread(self._nft_count, address, chain_id)

        logger.info(f"[ALCHEMY] {len(balances)} balances for {address} on {chain_ids}")
        return BalanceSnapshot(address=address, balances=balances, nft_count=nft_count)

    # -------------------------------------------------
    # Blocking helpers (run in a worker thread)
    # -------------------------------------------------
    def _rpc_url(self, chain_id: int) -> str:
        return f"https://{NETWORKS[chain_id]}.g.alchemy.com/v2/{self.api_key}"

    def _rpc(self, chain_id: int, method: str, params: list) -> Any:
        data = fetch_json(
            self.session,
            "POST",
            self._rpc_url(chain_id),
            provider=self.name,
            timeout=self.timeout,
            json_body={"jsonrpc": "2.0", "id": 1, "method": method, "params": params},
        )
        if data.get("error"):
            raise ProviderError(self.name, f"{method}: {data['error'].get('message', data['error'])}")
        return data.get("result")

    def _chain_balances(self, address: str, chain_id: int) -> List[TokenBalance]:
        out: List[TokenBalance] = []

        native_wei = parse_int(self._rpc(chain_id, "eth_getBalance", [address, "latest"]))
        if native_wei > 0:
            native = native_token(chain_id)
            out.append(
                TokenBalance(
                    chain_id=chain_id,
                    token=native.address,
                    symbol=NATIVE_SYMBOL.get(chain_id, "ETH"),
                    decimals=native.decimals,
                    balance=str(native_wei),
                )
            )

        result = self._rpc(chain_id, "alchemy_getTokenBalances", [address, "erc20"]) or {}
        for entry in result.get("tokenBalances", []):
            raw = parse_int(entry.get("tokenBalance"))
            if raw == 0:
                continue
            contract = entry["contractAddress"]
            known = resolve_token(contract, chain_id)
            if known is not None:
                symbol, decimals, usd_ref = known.symbol, known.decimals, known.usd_reference
            else:
                meta = self._token_metadata(chain_id, contract)
                symbol, decimals, usd_ref = meta.get("symbol") or "UNKNOWN", meta.get("decimals") or 18, None

            usd_value = None
            if usd_ref is not None:
                usd_value = Decimal(from_base_units(raw, decimals)) * usd_ref
            out.append(
                TokenBalance(
                    chain_id=chain_id,
                    token=contract,
                    symbol=symbol,
                    decimals=decimals,
                    balance=str(raw),
                    usd_value=usd_value,
                )
            )
        return out

    def _token_metadata(self, chain_id: int, contract: str) -> Dict[str, Any]:
        key = (chain_id, contract.lower())
        if key not in self._metadata_cache:
            self._metadata_cache[key] = self._rpc(chain_id, "alchemy_getTokenMetadata", [contract]) or {}
        return self._metadata_cache[key]

    def _nft_count(self, address: str, chain_id: int) -> int:
        data = fetch_json(
            self.session,
            "GET",
            f"https://{NETWORKS[chain_id]}.g.alchemy.com/nft/v3/{self.api_key}/getNFTsForOwner",
            provider=self.name,
            timeout=self.timeout,
            params={"owner": address, "withMetadata": "false", "pageSize": 1},
        )
        return int(data.get("totalCount") or 0)
