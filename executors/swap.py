from core.intent import TradeSwap
from executors.base import BaseExecutor, PreflightResult
from services.providers import GasPriceProvider, SwapQuoteProvider


class SwapExecutor(BaseExecutor):
    """
    Fetches a swap quote. Quotes that come back without a gas price are
    priced with the gas provider so the preview can show a cost.
    """

    def __init__(self, provider: SwapQuoteProvider, gas: GasPriceProvider, **kwargs):
        super().__init__(**kwargs)
        self.provider = provider
        self.gas = gas

    async def execute(self, intent: TradeSwap) -> PreflightResult:
        quote = await self.call("swap_quote", self.provider.get_swap_quote(intent))
        if quote.gas_price == 0:
            gas_price = await self.call("gas_price", self.gas.get_gas_price(intent.chain_id))
            quote = quote.model_copy(update={"gas_price": gas_price})
        return PreflightResult(quote=quote)
