from typing import Any, Dict, Optional

from pydantic import BaseModel, Field
from pydantic_ai import Agent
from pydantic_ai.models.google import GoogleModel
from pydantic_ai.providers.google import GoogleProvider

from config import GEMINI_MODEL_NAME, get_env_var
from core.intent import ParsedIntent, RiskLevel
from services.intent_classifier import assess_risk

SUPPORTED_ACTIONS = {"trade.swap", "transfer.send", "bridge.transfer", "balances.get", "rewards.claim"}

_BASE_RISK = {
    "trade.swap": RiskLevel.MEDIUM,
    "transfer.send": RiskLevel.HIGH,
    "bridge.transfer": RiskLevel.HIGH,
    "balances.get": RiskLevel.LOW,
    "rewards.claim": RiskLevel.MEDIUM,
}


class AgentIntent(BaseModel):
    action: str  # one of SUPPORTED_ACTIONS or "unknown"
    entities: Dict[str, Any] = Field(default_factory=dict)
    confidence: float = Field(ge=0.0, le=1.0)


_agent: Optional[Agent] = None


def _build_agent() -> Agent:
    provider = GoogleProvider(api_key=get_env_var("GOOGLE_API_KEY"))
    model = GoogleModel(GEMINI_MODEL_NAME, provider=provider)
    return Agent(
        model,
        system_prompt=(
            "You classify wallet requests into exactly one action.\n\n"
            "ACTIONS:\n"
            "- 'trade.swap': entities fromAmount, fromToken, toToken\n"
            "- 'transfer.send': entities amount, token, recipient (0x address)\n"
            "- 'bridge.transfer': entities amount, token, fromChain, toChain\n"
            "- 'balances.get': optional entity includeNfts (bool)\n"
            "- 'rewards.claim': optional entity platforms (galxe, rabbithole, layer3)\n\n"
            "RULES:\n"
            "1. Amounts are decimal strings exactly as written, without commas.\n"
            "2. Token symbols are uppercase.\n"
            "3. If the request is not clearly one of the actions, return action 'unknown'.\n"
            "4. Never invent amounts, tokens or addresses that are not in the text."
        ),
        output_type=AgentIntent,
    )


def get_intent_agent() -> Agent:
    global _agent
    if _agent is None:
        _agent = _build_agent()
    return _agent


async def classify_with_agent(text: str) -> Optional[ParsedIntent]:
    """
    Returns None when the model cannot map the text to a supported action.
    Risk is recomputed locally; the model only supplies action and entities.
    """
    result = await get_intent_agent().run(text)
    output: AgentIntent = result.output
    if output.action not in SUPPORTED_ACTIONS:
        return None
    return ParsedIntent(
        action=output.action,
        entities=output.entities,
        confidence=min(output.confidence, 0.95),
        risk_level=assess_risk(output.action, output.entities, _BASE_RISK[output.action]),
    )
