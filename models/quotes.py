# FILE: models/quotes.py
from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# -----------------------------
# Permit2 payload (Provider → Builder)
# -----------------------------
class Permit2Payload(BaseModel):
    """EIP-712 typed data the wallet signs instead of sending an approval."""

    model_config = ConfigDict(frozen=True)

    eip712: Dict[str, Any]
    hash: Optional[str] = None


class _QuoteBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    gas: int = Field(..., ge=0)
    gas_price: int = Field(..., ge=0, description="wei")
    usd_value: Optional[Decimal] = Field(None, description="USD value leaving the wallet")
    fetched_at: datetime = Field(default_factory=utcnow)

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        return ((now or utcnow()) - self.fetched_at).total_seconds()


# -----------------------------
# Swap
# -----------------------------
class SwapQuote(_QuoteBase):
    kind: Literal["swap"] = "swap"
    chain_id: int
    sell_token: str
    buy_token: str
    sell_symbol: str
    buy_symbol: str
    sell_decimals: int
    buy_decimals: int
    sell_amount: str = Field(..., description="base units")
    buy_amount: str = Field(..., description="base units")
    min_buy_amount: str = Field(..., description="base units")
    expected_slippage_pct: Decimal = Decimal("0")
    sources: List[str] = Field(default_factory=list)
    to: str
    data: str
    value: str = "0"
    allowance_target: Optional[str] = None
    permit2: Optional[Permit2Payload] = None


# -----------------------------
# Bridge
# -----------------------------
class BridgeQuote(_QuoteBase):
    kind: Literal["bridge"] = "bridge"
    from_chain_id: int
    to_chain_id: int
    token: str
    token_symbol: str
    decimals: int
    from_amount: str
    to_amount: str
    to_amount_min: str
    bridge: str
    estimated_duration_seconds: Optional[int] = None
    fee_usd: Optional[Decimal] = None
    to: str
    data: str
    value: str = "0"
    allowance_target: Optional[str] = None


# -----------------------------
# Transfer
# -----------------------------
class TransferQuote(_QuoteBase):
    kind: Literal["transfer"] = "transfer"
    chain_id: int
    token: str
    symbol: str
    decimals: int
    amount: str = Field(..., description="base units")
    recipient: str
    balance: Optional[str] = Field(None, description="sender balance, base units")


# -----------------------------
# Rewards
# -----------------------------
class ClaimableReward(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    platform: Literal["galxe", "rabbithole", "layer3"]
    title: str
    claim_contract: str
    claim_data: str
    reward_token: Optional[str] = None
    reward_symbol: Optional[str] = None
    reward_amount: Optional[str] = Field(None, description="human units")
    usd_value: Optional[Decimal] = None
    estimated_gas: int = 150_000


class RewardsQuote(_QuoteBase):
    kind: Literal["rewards"] = "rewards"
    chain_id: int
    rewards: List[ClaimableReward] = Field(default_factory=list)


Quote = Annotated[
    Union[SwapQuote, BridgeQuote, TransferQuote, RewardsQuote],
    Field(discriminator="kind"),
]


# -----------------------------
# Balances
# -----------------------------
class TokenBalance(BaseModel):
    model_config = ConfigDict(frozen=True)

    chain_id: int
    token: str
    symbol: str
    decimals: int
    balance: str = Field(..., description="base units")
    usd_value: Optional[Decimal] = None


class BalanceSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: str
    balances: List[TokenBalance] = Field(default_factory=list)
    nft_count: Optional[int] = None
    fetched_at: datetime = Field(default_factory=utcnow)

    @property
    def total_usd(self) -> Optional[Decimal]:
        priced = [b.usd_value for b in self.balances if b.usd_value is not None]
        return sum(priced, Decimal("0")) if priced else None


# -----------------------------
# Simulation
# -----------------------------
class SimulationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    gas_used: Optional[int] = None
    revert_reason: Optional[str] = None
