from decimal import Decimal

from core.intent import RewardsClaim
from executors.base import BaseExecutor, PreflightResult
from models.quotes import RewardsQuote
from services.providers import GasPriceProvider, RewardsProvider


class RewardsExecutor(BaseExecutor):
    """
    Lists claimable rewards, narrowed to the requested ids. Nothing
    claimable is a valid (empty) result.
    """

    def __init__(self, provider: RewardsProvider, gas: GasPriceProvider, **kwargs):
        super().__init__(**kwargs)
        self.provider = provider
        self.gas = gas

    async def execute(self, intent: RewardsClaim) -> PreflightResult:
        rewards = await self.call(
            "rewards",
            self.provider.get_claimable_rewards(intent.taker_address, intent.chain_id, intent.platforms),
        )
        if intent.reward_ids:
            wanted = set(intent.reward_ids)
            rewards = [r for r in rewards if r.id in wanted]
        # Highest value first; unknown values last
        rewards = sorted(rewards, key=lambda r: r.usd_value if r.usd_value is not None else Decimal("-1"), reverse=True)

        gas_price = await self.call("gas_price", self.gas.get_gas_price(intent.chain_id)) if rewards else 0
        quote = RewardsQuote(
            chain_id=intent.chain_id,
            rewards=rewards,
            gas=rewards[0].estimated_gas if rewards else 0,
            gas_price=gas_price,
            # Claims move nothing out of the wallet
            usd_value=Decimal("0"),
        )
        return PreflightResult(quote=quote)
