# core/tokens.py
"""
Chain and token registry.

- Resolves chain names ("polygon", "arb") to chain ids
- Resolves token symbols to (address, decimals) per chain
- Converts human decimal strings <-> integer base units without floats
"""

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional

NATIVE_TOKEN_ADDRESS = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


def is_address(value: str) -> bool:
    return bool(value) and bool(_ADDRESS_RE.match(value))


def normalize_address(value: str) -> str:
    """Case-folded form used for every address comparison."""
    return value.strip().lower()


# -----------------------------
# Chains
# -----------------------------
SUPPORTED_CHAINS: Dict[int, str] = {
    1: "ethereum",
    10: "optimism",
    56: "bsc",
    137: "polygon",
    8453: "base",
    42161: "arbitrum",
}

CHAIN_ALIASES: Dict[str, int] = {
    "ethereum": 1, "eth": 1, "mainnet": 1,
    "optimism": 10, "op": 10,
    "bsc": 56, "bnb": 56, "binance": 56,
    "polygon": 137, "matic": 137,
    "base": 8453,
    "arbitrum": 42161, "arb": 42161,
}

NATIVE_SYMBOL: Dict[int, str] = {
    1: "ETH", 10: "ETH", 56: "BNB", 137: "POL", 8453: "ETH", 42161: "ETH",
}


def resolve_chain(value: str) -> Optional[int]:
    text = str(value).strip().lower()
    if text.isdigit():
        chain_id = int(text)
        return chain_id if chain_id in SUPPORTED_CHAINS else None
    return CHAIN_ALIASES.get(text)


# -----------------------------
# Tokens
# -----------------------------
@dataclass(frozen=True)
class TokenInfo:
    symbol: str
    address: str
    decimals: int
    usd_reference: Optional[Decimal] = None

    @property
    def is_native(self) -> bool:
        return normalize_address(self.address) == normalize_address(NATIVE_TOKEN_ADDRESS)


_ONE = Decimal("1")

_TOKENS: Dict[int, Dict[str, TokenInfo]] = {
    1: {
        "USDC": TokenInfo("USDC", "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", 6, _ONE),
        "USDT": TokenInfo("USDT", "0xdAC17F958D2ee523a2206206994597C13D831ec7", 6, _ONE),
        "DAI": TokenInfo("DAI", "0x6B175474E89094C44Da98b954EedeAC495271d0F", 18, _ONE),
        "WETH": TokenInfo("WETH", "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2", 18),
    },
    10: {
        "USDC": TokenInfo("USDC", "0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85", 6, _ONE),
        "USDT": TokenInfo("USDT", "0x94b008aA00579c1307B0EF2c499aD98a8ce58e58", 6, _ONE),
        "DAI": TokenInfo("DAI", "0xDA10009cBd5D07dd0CeCc66161FC93D7c9000da1", 18, _ONE),
        "WETH": TokenInfo("WETH", "0x4200000000000000000000000000000000000006", 18),
    },
    56: {
        "USDC": TokenInfo("USDC", "0x8AC76a51cc950d9822D68b83fE1Ad97B32Cd580d", 18, _ONE),
        "USDT": TokenInfo("USDT", "0x55d398326f99059fF775485246999027B3197955", 18, _ONE),
    },
    137: {
        "USDC": TokenInfo("USDC", "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359", 6, _ONE),
        "USDT": TokenInfo("USDT", "0xc2132D05D31c914a87C6611C10748AEb04B58e8F", 6, _ONE),
        "DAI": TokenInfo("DAI", "0x8f3Cf7ad23Cd3CaDbD9735AFf958023239c6A063", 18, _ONE),
        "WETH": TokenInfo("WETH", "0x7ceB23fD6bC0adD59E62ac25578270cFf1b9f619", 18),
    },
    8453: {
        "USDC": TokenInfo("USDC", "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913", 6, _ONE),
        "WETH": TokenInfo("WETH", "0x4200000000000000000000000000000000000006", 18),
    },
    42161: {
        "USDC": TokenInfo("USDC", "0xaf88d065e77c8cC2239327C5EDb3A432268e5831", 6, _ONE),
        "USDT": TokenInfo("USDT", "0xFd086bC7CD5C481DCC9C85ebE478A1C0b69FCbb9", 6, _ONE),
        "DAI": TokenInfo("DAI", "0xDA10009cBd5D07dd0CeCc66161FC93D7c9000da1", 18, _ONE),
        "WETH": TokenInfo("WETH", "0x82aF49447D8a07e3bd95BD0d56f35241523fBab1", 18),
    },
}


def resolve_token(symbol_or_address: str, chain_id: int) -> Optional[TokenInfo]:
    """
    Returns None for unknown symbols. Raw addresses pass through with unknown
    decimals resolved by the caller's provider.
    """
    value = symbol_or_address.strip()
    if is_address(value):
        for info in _TOKENS.get(chain_id, {}).values():
            if normalize_address(info.address) == normalize_address(value):
                return info
        if normalize_address(value) == normalize_address(NATIVE_TOKEN_ADDRESS):
            return native_token(chain_id)
        return None

    symbol = value.upper()
    if symbol == "MATIC":
        symbol = "POL"
    if symbol == NATIVE_SYMBOL.get(chain_id):
        return native_token(chain_id)
    return _TOKENS.get(chain_id, {}).get(symbol)


def native_token(chain_id: int) -> TokenInfo:
    return TokenInfo(NATIVE_SYMBOL.get(chain_id, "ETH"), NATIVE_TOKEN_ADDRESS, 18)


# -----------------------------
# Amount conversion
# -----------------------------
def parse_decimal_amount(value: str) -> Decimal:
    try:
        amount = Decimal(str(value).replace(",", "").strip())
    except InvalidOperation:
        raise ValueError(f"invalid amount: {value}")
    if not amount.is_finite():
        raise ValueError(f"invalid amount: {value}")
    return amount


def to_base_units(amount: str, decimals: int) -> int:
    value = parse_decimal_amount(amount)
    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"amount {amount} has more than {decimals} decimals")
    return int(scaled)


def from_base_units(amount: int, decimals: int) -> str:
    value = Decimal(int(amount)).scaleb(-decimals)
    text = format(value.normalize(), "f")
    return text if text != "-0" else "0"
