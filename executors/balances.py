from core.intent import BalancesGet
from executors.base import BaseExecutor, PreflightResult
from services.providers import BalanceProvider


class BalancesExecutor(BaseExecutor):
    """Read-only. An empty snapshot is a valid result, not a failure."""

    def __init__(self, provider: BalanceProvider, **kwargs):
        super().__init__(**kwargs)
        self.provider = provider

    async def execute(self, intent: BalancesGet) -> PreflightResult:
        chains = intent.chains or [intent.chain_id]
        snapshot = await self.call(
            "balances",
            self.provider.get_balances(intent.taker_address, chains, intent.include_nfts),
        )
        return PreflightResult(snapshot=snapshot)
