# FILE: services/transaction_builder.py
"""
Assembles the final transaction for a previewed intent.

Approval preference:
1. Permit2 signature (the quote carries EIP-712 data; nothing to send on-chain)
2. Bounded allowance: ERC-20 approve(spender, amount) on the token contract
   for exactly the amount the route pulls, valid for submission until
   `expires_at`. Never an unlimited approval.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from config import APPROVAL_TTL_SECONDS
from core.errors import BuildError
from core.intent import BridgeTransfer, Constraints, Intent, RewardsClaim, TradeSwap, TransferSend
from core.tokens import NATIVE_TOKEN_ADDRESS, normalize_address
from models.execution import ApprovalStrategy, ApprovalTransaction, BuiltTransaction
from models.quotes import BridgeQuote, RewardsQuote, SwapQuote, TransferQuote, utcnow

logger = logging.getLogger("transaction_builder")

ERC20_TRANSFER_SELECTOR = "0xa9059cbb"
ERC20_APPROVE_SELECTOR = "0x095ea7b3"
MAX_UINT256 = 2**256 - 1


def _word(value: int) -> str:
    return format(value, "064x")


def _address_word(address: str) -> str:
    return normalize_address(address)[2:].rjust(64, "0")


def encode_erc20_transfer(recipient: str, amount: int) -> str:
    return ERC20_TRANSFER_SELECTOR + _address_word(recipient) + _word(amount)


def encode_erc20_approve(spender: str, amount: int) -> str:
    return ERC20_APPROVE_SELECTOR + _address_word(spender) + _word(amount)


def _is_native(token: str) -> bool:
    return normalize_address(token) == normalize_address(NATIVE_TOKEN_ADDRESS)


class TransactionBuilder:
    def __init__(self, approval_ttl_seconds: int = APPROVAL_TTL_SECONDS):
        self.approval_ttl_seconds = approval_ttl_seconds

    def build(self, intent: Intent, quote, now: Optional[datetime] = None) -> BuiltTransaction:
        """
        Same intent, quote and `now` always give the same transaction.
        Raises BuildError("no_quote") when preview never produced a quote.
        """
        if quote is None:
            raise BuildError("no_quote", "Cannot build a transaction without a quote; preview the intent first")
        now = now or utcnow()

        if isinstance(intent, TradeSwap) and isinstance(quote, SwapQuote):
            tx = self._swap(quote, now)
        elif isinstance(intent, BridgeTransfer) and isinstance(quote, BridgeQuote):
            tx = self._bridge(quote, now)
        elif isinstance(intent, TransferSend) and isinstance(quote, TransferQuote):
            tx = self._transfer(quote)
        elif isinstance(intent, RewardsClaim) and isinstance(quote, RewardsQuote):
            tx = self._rewards(quote)
        else:
            raise BuildError(
                "quote_mismatch",
                f"Quote of kind '{getattr(quote, 'kind', type(quote).__name__)}' cannot build a {intent.type} intent",
            )

        self._check_gas_price(tx, intent.constraints)
        logger.info(f"[BUILD] {intent.type} to={tx.to} strategy={tx.strategy.value}")
        return tx

    # -------------------------------------------------
    # Approval strategy
    # -------------------------------------------------
    def _bounded_approval(
        self, token: str, spender: str, amount: int, usd_value: Optional[Decimal], now: datetime
    ) -> ApprovalTransaction:
        # MAX_UINT256 is the unlimited-approval sentinel
        if amount <= 0 or amount >= MAX_UINT256:
            raise BuildError("invalid_allowance", f"Allowance amount {amount} is out of range")
        expires_at = int(now.timestamp()) + self.approval_ttl_seconds
        return ApprovalTransaction(
            to=token,
            data=encode_erc20_approve(spender, amount),
            token=token,
            spender=spender,
            amount=str(amount),
            expires_at=expires_at,
            usd_value=usd_value,
        )

    def _check_gas_price(self, tx: BuiltTransaction, constraints: Optional[Constraints]) -> None:
        if constraints is None or constraints.max_gas_price_wei is None or tx.gas_price is None:
            return
        if tx.gas_price > constraints.max_gas_price_wei:
            raise BuildError(
                "gas_price_too_high",
                f"Gas price {tx.gas_price} wei exceeds your maximum of {constraints.max_gas_price_wei} wei",
            )

    # -------------------------------------------------
    # Variants
    # -------------------------------------------------
    def _swap(self, quote: SwapQuote, now: datetime) -> BuiltTransaction:
        common = dict(
            to=quote.to,
            data=quote.data,
            value=quote.value,
            gas=quote.gas,
            gas_price=quote.gas_price,
            chain_id=quote.chain_id,
        )
        if _is_native(quote.sell_token):
            return BuiltTransaction(strategy=ApprovalStrategy.NONE, **common)
        if quote.permit2 is not None:
            return BuiltTransaction(strategy=ApprovalStrategy.PERMIT2_SIGNATURE, permit2=quote.permit2, **common)
        if not quote.allowance_target:
            raise BuildError("no_allowance_target", "Quote needs a token approval but names no spender")
        approval = self._bounded_approval(
            quote.sell_token, quote.allowance_target, int(quote.sell_amount), quote.usd_value, now
        )
        return BuiltTransaction(strategy=ApprovalStrategy.BOUNDED_ALLOWANCE, approval=approval, **common)

    def _bridge(self, quote: BridgeQuote, now: datetime) -> BuiltTransaction:
        common = dict(
            to=quote.to,
            data=quote.data,
            value=quote.value,
            gas=quote.gas,
            gas_price=quote.gas_price,
            chain_id=quote.from_chain_id,
        )
        if _is_native(quote.token) or not quote.allowance_target:
            return BuiltTransaction(strategy=ApprovalStrategy.NONE, **common)
        approval = self._bounded_approval(
            quote.token, quote.allowance_target, int(quote.from_amount), quote.usd_value, now
        )
        return BuiltTransaction(strategy=ApprovalStrategy.BOUNDED_ALLOWANCE, approval=approval, **common)

    def _transfer(self, quote: TransferQuote) -> BuiltTransaction:
        if _is_native(quote.token):
            return BuiltTransaction(
                to=quote.recipient,
                data="0x",
                value=quote.amount,
                gas=quote.gas,
                gas_price=quote.gas_price,
                chain_id=quote.chain_id,
            )
        return BuiltTransaction(
            to=quote.token,
            data=encode_erc20_transfer(quote.recipient, int(quote.amount)),
            gas=quote.gas,
            gas_price=quote.gas_price,
            chain_id=quote.chain_id,
        )

    def _rewards(self, quote: RewardsQuote) -> BuiltTransaction:
        if not quote.rewards:
            raise BuildError("no_rewards", "There are no claimable rewards to build a transaction for")
        top = quote.rewards[0]
        return BuiltTransaction(
            to=top.claim_contract,
            data=top.claim_data,
            gas=top.estimated_gas,
            gas_price=quote.gas_price,
            chain_id=quote.chain_id,
        )
