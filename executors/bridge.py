from core.intent import BridgeTransfer
from executors.base import BaseExecutor, PreflightResult
from services.providers import BridgeQuoteProvider, GasPriceProvider


class BridgeExecutor(BaseExecutor):
    def __init__(self, provider: BridgeQuoteProvider, gas: GasPriceProvider, **kwargs):
        super().__init__(**kwargs)
        self.provider = provider
        self.gas = gas

    async def execute(self, intent: BridgeTransfer) -> PreflightResult:
        quote = await self.call("bridge_quote", self.provider.get_bridge_quote(intent))
        if quote.gas_price == 0:
            gas_price = await self.call("gas_price", self.gas.get_gas_price(intent.from_chain_id))
            quote = quote.model_copy(update={"gas_price": gas_price})
        return PreflightResult(quote=quote)
