# FILE: models/limits.py
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from core.tokens import is_address, normalize_address
from models.quotes import utcnow


def _normalize_allowlist(v):
    normalized = []
    for address in v or []:
        if not is_address(address):
            raise ValueError(f"invalid allowlist address: {address}")
        folded = normalize_address(address)
        if folded not in normalized:
            normalized.append(folded)
    return normalized


class UserLimits(BaseModel):
    """
    Per-user spending policy plus the running daily total.
    daily_spent_usd is mutated only by the Safety Limiter.
    """

    user_id: str
    daily_usd_cap: Optional[Decimal] = Field(None, ge=0)
    max_approval_usd: Optional[Decimal] = Field(None, ge=0)
    allowlist: List[str] = Field(default_factory=list)
    daily_spent_usd: Decimal = Field(default=Decimal("0"), ge=0)
    last_reset_at: datetime = Field(default_factory=utcnow)

    @field_validator("allowlist")
    @classmethod
    def normalize_allowlist(cls, v):
        return _normalize_allowlist(v)

    def allows(self, counterparty: str) -> bool:
        if not self.allowlist:
            return True
        return normalize_address(counterparty) in self.allowlist


class LimitsUpdate(BaseModel):
    """Policy fields a user may configure; spend tracking is not writable."""

    daily_usd_cap: Optional[Decimal] = Field(None, ge=0)
    max_approval_usd: Optional[Decimal] = Field(None, ge=0)
    allowlist: List[str] = Field(default_factory=list)

    @field_validator("allowlist")
    @classmethod
    def normalize_allowlist(cls, v):
        return _normalize_allowlist(v)
