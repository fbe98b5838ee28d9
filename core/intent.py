# core/intent.py
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, computed_field, field_validator

from core.tokens import SUPPORTED_CHAINS, is_address, parse_decimal_amount


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    def raised(self) -> "RiskLevel":
        order = list(RiskLevel)
        return order[min(order.index(self) + 1, len(order) - 1)]


class ParsedIntent(BaseModel):
    """
    Classifier output. A passive container: it does NOT execute logic.
    """

    model_config = ConfigDict(frozen=True)

    action: str
    entities: Dict[str, Any] = Field(default_factory=dict)
    confidence: float = Field(..., ge=0.0, le=1.0)
    risk_level: RiskLevel

    # Derived from risk_level only; never set independently
    @computed_field
    @property
    def requires_confirmation(self) -> bool:
        return self.risk_level in {RiskLevel.HIGH, RiskLevel.CRITICAL}


# -----------------------------
# Constraints
# -----------------------------
class Constraints(BaseModel):
    model_config = ConfigDict(frozen=True)

    slippage_bps: Optional[int] = Field(None, ge=0, le=5000)
    preferred_sources: Optional[List[str]] = None
    max_gas_price_wei: Optional[int] = Field(None, gt=0)
    deadline: Optional[int] = Field(None, description="Unix seconds")
    simulate: bool = False


# -----------------------------
# Intent variants
# -----------------------------
class _IntentBase(BaseModel):
    """
    Immutable once constructed. Amounts are decimal strings, never floats.
    """

    model_config = ConfigDict(frozen=True)

    taker_address: str
    chain_id: int = Field(..., gt=0)
    constraints: Optional[Constraints] = None

    @field_validator("taker_address")
    @classmethod
    def check_taker_address(cls, v):
        if not is_address(v):
            raise ValueError(f"invalid address: {v}")
        return v


def _check_amount(v: str) -> str:
    amount = parse_decimal_amount(v)
    if amount <= 0:
        raise ValueError("amount must be greater than 0")
    return str(v).replace(",", "").strip()


Amount = Annotated[str, AfterValidator(_check_amount)]


class BalancesGet(_IntentBase):
    type: Literal["balances.get"] = "balances.get"
    chains: Optional[List[int]] = None
    include_nfts: bool = False


class TradeSwap(_IntentBase):
    type: Literal["trade.swap"] = "trade.swap"
    from_token: str
    to_token: str
    amount: Amount

    @field_validator("to_token")
    @classmethod
    def tokens_must_differ(cls, v, info):
        if v.upper() == str(info.data.get("from_token", "")).upper():
            raise ValueError("cannot swap a token for itself")
        return v


class BridgeTransfer(_IntentBase):
    type: Literal["bridge.transfer"] = "bridge.transfer"
    token: str
    amount: Amount
    from_chain_id: int
    to_chain_id: int

    @field_validator("from_chain_id", "to_chain_id")
    @classmethod
    def chain_must_be_supported(cls, v):
        if v not in SUPPORTED_CHAINS:
            raise ValueError(f"unsupported chain id: {v}")
        return v

    @field_validator("to_chain_id")
    @classmethod
    def chains_must_differ(cls, v, info):
        if v == info.data.get("from_chain_id"):
            raise ValueError("source and destination chains must differ")
        return v


class TransferSend(_IntentBase):
    type: Literal["transfer.send"] = "transfer.send"
    token: str
    amount: Amount
    recipient: str

    @field_validator("recipient")
    @classmethod
    def check_recipient(cls, v):
        if not is_address(v):
            raise ValueError(f"invalid recipient address: {v}")
        return v


class RewardsClaim(_IntentBase):
    type: Literal["rewards.claim"] = "rewards.claim"
    platforms: Optional[List[Literal["galxe", "rabbithole", "layer3"]]] = None
    reward_ids: Optional[List[str]] = None


Intent = Annotated[
    Union[BalancesGet, TradeSwap, BridgeTransfer, TransferSend, RewardsClaim],
    Field(discriminator="type"),
]
