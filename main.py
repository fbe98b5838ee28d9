import asyncio
import json
import sys

from core.errors import ClassificationError
from services.intent_classifier import classify, describe, to_intent

DEMO_TAKER = "0x742d35Cc6634C0532925a3b844Bc454e4438f44e"


async def main(user_text: str):
    try:
        parsed = await classify(user_text)
        intent = to_intent(parsed, DEMO_TAKER, chain_id=1)
    except ClassificationError as e:
        print(f"Could not classify ({e.reason.value}):", e)
        return

    print("Understood:", describe(parsed))
    print("Parsed intent:", json.dumps(parsed.model_dump(mode="json"), indent=2))
    if parsed.requires_confirmation:
        print(f"⚠️ Risk {parsed.risk_level.value}: explicit confirmation required before building")
    print("Typed intent:", intent.model_dump_json(exclude_none=True))


if __name__ == "__main__":
    if sys.platform.startswith("win"):
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    text = " ".join(sys.argv[1:]) or "swap 100 USDC to ETH"
    asyncio.run(main(text))
