from decimal import Decimal
from typing import Optional

from core.errors import ProviderError
from core.intent import TransferSend
from core.tokens import normalize_address, resolve_token, to_base_units
from executors.base import BaseExecutor, PreflightResult
from models.quotes import BalanceSnapshot, TokenBalance, TransferQuote
from services.providers import BalanceProvider, GasPriceProvider

NATIVE_TRANSFER_GAS = 21_000
ERC20_TRANSFER_GAS = 65_000


def _find_balance(snapshot: BalanceSnapshot, chain_id: int, token: str) -> Optional[TokenBalance]:
    for entry in snapshot.balances:
        if entry.chain_id != chain_id:
            continue
        if normalize_address(entry.token) == normalize_address(token) or entry.symbol.upper() == token.upper():
            return entry
    return None


class TransferExecutor(BaseExecutor):
    """
    Resolves the token from the registry (or the sender's own holdings),
    reads the sender balance and values the transfer.
    """

    def __init__(self, balances: BalanceProvider, gas: GasPriceProvider, **kwargs):
        super().__init__(**kwargs)
        self.balances = balances
        self.gas = gas

    async def execute(self, intent: TransferSend) -> PreflightResult:
        snapshot = await self.call(
            "balances", self.balances.get_balances(intent.taker_address, [intent.chain_id])
        )
        gas_price = await self.call("gas_price", self.gas.get_gas_price(intent.chain_id))

        info = resolve_token(intent.token, intent.chain_id)
        held = _find_balance(snapshot, intent.chain_id, info.address if info else intent.token)
        if info is None and held is None:
            raise ProviderError("transfer", f"unknown token {intent.token} on chain {intent.chain_id}")

        address = info.address if info else held.token
        symbol = info.symbol if info else held.symbol
        decimals = info.decimals if info else held.decimals
        try:
            amount = to_base_units(intent.amount, decimals)
        except ValueError as e:
            raise ProviderError("transfer", str(e)) from e

        usd_value = None
        if info is not None and info.usd_reference is not None:
            usd_value = Decimal(intent.amount) * info.usd_reference
        elif held is not None and held.usd_value is not None and int(held.balance) > 0:
            usd_value = held.usd_value * Decimal(amount) / Decimal(int(held.balance))

        is_native = info.is_native if info else False
        quote = TransferQuote(
            chain_id=intent.chain_id,
            token=address,
            symbol=symbol,
            decimals=decimals,
            amount=str(amount),
            recipient=intent.recipient,
            balance=held.balance if held else "0",
            gas=NATIVE_TRANSFER_GAS if is_native else ERC20_TRANSFER_GAS,
            gas_price=gas_price,
            usd_value=usd_value,
        )
        return PreflightResult(quote=quote, snapshot=snapshot)
