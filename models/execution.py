# FILE: models/execution.py
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.intent import Intent
from core.status import IntentStatus
from models.quotes import BalanceSnapshot, Permit2Payload, Quote, SimulationResult, utcnow


# -----------------------------
# Preview (Pipeline → User)
# -----------------------------
class TokenDelta(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str
    symbol: str
    amount: str = Field(..., description="human units")
    direction: Literal["in", "out"]
    usd_value: Optional[Decimal] = None


class GasCost(BaseModel):
    model_config = ConfigDict(frozen=True)

    estimated_gas: int
    gas_price: int = Field(..., description="wei")
    total_cost_eth: str


class DecodedCall(BaseModel):
    model_config = ConfigDict(frozen=True)

    target: str
    method: str
    params: Dict[str, Any] = Field(default_factory=dict)


class Preview(BaseModel):
    """
    Derived data. Recomputed every time the Preview stage runs and
    always replaced wholesale.
    """

    model_config = ConfigDict(frozen=True)

    summary: str
    token_deltas: List[TokenDelta] = Field(default_factory=list)
    gas_cost: Optional[GasCost] = None
    warnings: List[str] = Field(default_factory=list)
    decoded_calls: Optional[List[DecodedCall]] = None
    simulation_result: Optional[SimulationResult] = None


# -----------------------------
# Built transaction (Builder → Wallet)
# -----------------------------
class ApprovalStrategy(str, Enum):
    NONE = "none"
    PERMIT2_SIGNATURE = "permit2_signature"
    BOUNDED_ALLOWANCE = "bounded_allowance"


class ApprovalTransaction(BaseModel):
    """Prerequisite ERC-20 approve for exactly the amount the route pulls."""

    model_config = ConfigDict(frozen=True)

    to: str
    data: str
    token: str
    spender: str
    amount: str = Field(..., description="base units")
    expires_at: int = Field(..., description="Unix seconds; the wallet must not submit the approval after this")
    usd_value: Optional[Decimal] = None


class BuiltTransaction(BaseModel):
    model_config = ConfigDict(frozen=True)

    to: str
    data: str
    value: str = "0"
    gas: int
    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None
    chain_id: int
    strategy: ApprovalStrategy = ApprovalStrategy.NONE
    permit2: Optional[Permit2Payload] = None
    permit2_signature: Optional[str] = None
    approval: Optional[ApprovalTransaction] = None

    def with_permit2_signature(self, signature: str) -> "BuiltTransaction":
        """
        Attaches the wallet's Permit2 signature and appends it to calldata
        as <32-byte length><signature>.
        """
        if self.strategy is not ApprovalStrategy.PERMIT2_SIGNATURE:
            raise ValueError("transaction does not use a Permit2 signature")
        if self.permit2_signature is not None:
            raise ValueError("Permit2 signature already attached")
        if not signature.startswith("0x") or len(signature) != 132:
            raise ValueError(
                f"Invalid signature length: {len(signature)}. Expected 132 characters."
            )
        sig_hex = signature[2:].lower()
        length_word = format(len(sig_hex) // 2, "064x")
        return self.model_copy(
            update={
                "data": self.data + length_word + sig_hex,
                "permit2_signature": signature,
            }
        )


# -----------------------------
# Execution context (owned by the Pipeline Executor)
# -----------------------------
class ExecutionContext(BaseModel):
    """
    Mutable record accompanying one intent through the pipeline.
    Stage completion is carried by `status`, never inferred from
    which optional fields happen to be set.
    """

    model_config = ConfigDict(validate_assignment=True)

    intent_id: str
    user_id: str
    intent: Intent
    status: IntentStatus = IntentStatus.PLANNED
    quote: Optional[Quote] = None
    snapshot: Optional[BalanceSnapshot] = None
    preview: Optional[Preview] = None
    transaction: Optional[BuiltTransaction] = None
    transaction_id: Optional[str] = None
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    executed_at: Optional[datetime] = None


# Fields a status write may merge into the persisted context
PATCHABLE_FIELDS = frozenset(
    {"quote", "snapshot", "preview", "transaction", "transaction_id", "tx_hash", "error"}
)


class TransactionRecord(BaseModel):
    """Reporting row updated by monitor_transaction; not a pipeline state."""

    id: str
    intent_id: str
    user_id: str
    chain_id: int
    from_address: str
    to: str
    value: str = "0"
    data: Optional[str] = None
    status: str = "pending"
    tx_hash: Optional[str] = None
    gas_used: Optional[str] = None
    gas_price: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
