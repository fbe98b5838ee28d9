# FILE: services/intent_classifier.py
"""
Natural-language → ParsedIntent → typed Intent.

Pattern matching first; the LLM fallback (agents/intent_agent.py) runs only
when enabled and nothing matched. A failed classification is terminal.
"""

import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from config import CLASSIFIER_AI_FALLBACK
from core.errors import ClassificationError, ClassificationReason
from core.intent import (
    BalancesGet,
    BridgeTransfer,
    Constraints,
    Intent,
    ParsedIntent,
    RewardsClaim,
    RiskLevel,
    TradeSwap,
    TransferSend,
)
from core.tokens import is_address, parse_decimal_amount, resolve_chain

logger = logging.getLogger("intent_classifier")

_AMOUNT = r"(\d+(?:,\d{3})*(?:\.\d+)?)"
_SLIPPAGE_RE = re.compile(r"(\d+(?:\.\d+)?)\s*%\s*(?:max\s+)?slippage", re.IGNORECASE)
_PLATFORMS = ("galxe", "rabbithole", "layer3")


@dataclass(frozen=True)
class IntentPattern:
    action: str
    pattern: re.Pattern
    base_risk: RiskLevel
    extract: Callable[[re.Match], Dict[str, Any]]


def _platforms(match: re.Match) -> Dict[str, Any]:
    found = [p for p in _PLATFORMS if p in match.string.lower()]
    return {"platforms": found} if found else {}


# Priority order: first match wins
INTENT_PATTERNS: List[IntentPattern] = [
    IntentPattern(
        action="trade.swap",
        pattern=re.compile(
            rf"(?:swap|trade|exchange|convert)\s+{_AMOUNT}\s+(\w+)\s+(?:for|to|into)\s+(\w+)",
            re.IGNORECASE,
        ),
        base_risk=RiskLevel.MEDIUM,
        extract=lambda m: {
            "fromAmount": m.group(1).replace(",", ""),
            "fromToken": m.group(2).upper(),
            "toToken": m.group(3).upper(),
        },
    ),
    IntentPattern(
        action="transfer.send",
        pattern=re.compile(
            rf"(?:send|transfer|pay)\s+{_AMOUNT}\s+(\w+)\s+to\s+(0x[a-fA-F0-9]{{40}})\b",
            re.IGNORECASE,
        ),
        base_risk=RiskLevel.HIGH,
        extract=lambda m: {
            "amount": m.group(1).replace(",", ""),
            "token": m.group(2).upper(),
            "recipient": m.group(3),
        },
    ),
    IntentPattern(
        action="bridge.transfer",
        pattern=re.compile(
            rf"(?:bridge|move)\s+{_AMOUNT}\s+(\w+)\s+from\s+(\w+)\s+to\s+(\w+)",
            re.IGNORECASE,
        ),
        base_risk=RiskLevel.HIGH,
        extract=lambda m: {
            "amount": m.group(1).replace(",", ""),
            "token": m.group(2).upper(),
            "fromChain": m.group(3).lower(),
            "toChain": m.group(4).lower(),
        },
    ),
    IntentPattern(
        action="balances.get",
        pattern=re.compile(r"(?:show|get|check|list)\s+(?:my\s+)?(?:balance|balances|nft|nfts|portfolio)\b", re.IGNORECASE),
        base_risk=RiskLevel.LOW,
        extract=lambda m: {"includeNfts": True} if "nft" in m.group(0).lower() else {},
    ),
    IntentPattern(
        action="rewards.claim",
        pattern=re.compile(r"claim\s+(?:all\s+)?(?:my\s+)?(?:\w+\s+)?(?:rewards?|quests?)\b", re.IGNORECASE),
        base_risk=RiskLevel.MEDIUM,
        extract=_platforms,
    ),
]


# -----------------------------
# Scoring
# -----------------------------
def calculate_confidence(text: str, entities: Dict[str, Any]) -> float:
    score = 0.7
    if 0 < len(text.strip()) < 200:
        score += 0.1
    values = [v for v in entities.values() if isinstance(v, str)]
    if any(re.search(r"\d", v) for v in values):
        score += 0.1
    if any(is_address(v) for v in values):
        score += 0.05
    # Never 100% confident in NLP
    return round(min(score, 0.95), 4)


def assess_risk(action: str, entities: Dict[str, Any], base_risk: RiskLevel) -> RiskLevel:
    risk = base_risk
    try:
        amount = parse_decimal_amount(entities.get("amount") or entities.get("fromAmount") or "0")
    except ValueError:
        amount = Decimal("0")

    if amount > 10000:
        risk = RiskLevel.CRITICAL
    elif amount > 1000 and risk in {RiskLevel.LOW, RiskLevel.MEDIUM}:
        risk = risk.raised()

    if action.startswith("bridge.") and risk is RiskLevel.MEDIUM:
        risk = RiskLevel.HIGH
    return risk


# -----------------------------
# Classification
# -----------------------------
def match_patterns(text: str) -> Optional[ParsedIntent]:
    for candidate in INTENT_PATTERNS:
        match = candidate.pattern.search(text)
        if not match:
            continue
        entities = candidate.extract(match)
        slippage = _SLIPPAGE_RE.search(text)
        if slippage:
            entities["slippageBps"] = int(Decimal(slippage.group(1)) * 100)
        return ParsedIntent(
            action=candidate.action,
            entities=entities,
            confidence=calculate_confidence(text, entities),
            risk_level=assess_risk(candidate.action, entities, candidate.base_risk),
        )
    return None


async def classify(raw_text: str, *, ai_fallback: Optional[bool] = None) -> ParsedIntent:
    """
    Returns a ParsedIntent or raises ClassificationError. Never guesses an action.
    """
    if raw_text is None or not raw_text.strip():
        raise ClassificationError(ClassificationReason.EMPTY_INPUT, "Input is empty")

    text = re.sub(r"<[^>]+>", "", raw_text).strip()
    parsed = match_patterns(text)
    if parsed is not None:
        logger.info(f"[CLASSIFY] action={parsed.action} risk={parsed.risk_level.value}")
        return parsed

    use_fallback = CLASSIFIER_AI_FALLBACK if ai_fallback is None else ai_fallback
    if use_fallback:
        from agents.intent_agent import classify_with_agent

        try:
            parsed = await classify_with_agent(text)
        except Exception as e:
            logger.warning(f"[CLASSIFY] agent fallback failed: {type(e).__name__}: {e}")
            raise ClassificationError(
                ClassificationReason.UNRECOGNIZED,
                f"Could not understand request: '{text[:100]}'",
            ) from e
        if parsed is not None:
            logger.info(f"[CLASSIFY] agent action={parsed.action}")
            return parsed

    raise ClassificationError(
        ClassificationReason.UNRECOGNIZED,
        f"Could not understand request: '{text[:100]}'",
    )


# -----------------------------
# ParsedIntent → Intent
# -----------------------------
def _constraints(entities: Dict[str, Any]) -> Optional[Constraints]:
    if "slippageBps" in entities:
        return Constraints(slippage_bps=entities["slippageBps"])
    return None


def to_intent(parsed: ParsedIntent, taker_address: str, chain_id: int) -> Intent:
    """
    Builds the typed Intent variant; entity problems surface here, at
    construction time, instead of later string-key lookups.
    """
    e = parsed.entities
    common = {
        "taker_address": taker_address,
        "chain_id": chain_id,
        "constraints": _constraints(e),
    }
    try:
        if parsed.action == "trade.swap":
            return TradeSwap(from_token=e.get("fromToken"), to_token=e.get("toToken"), amount=e.get("fromAmount"), **common)
        if parsed.action == "transfer.send":
            return TransferSend(token=e.get("token"), amount=e.get("amount"), recipient=e.get("recipient"), **common)
        if parsed.action == "bridge.transfer":
            from_chain = resolve_chain(e.get("fromChain", ""))
            to_chain = resolve_chain(e.get("toChain", ""))
            if from_chain is None or to_chain is None:
                raise ClassificationError(
                    ClassificationReason.INVALID_ENTITIES,
                    f"Unknown chain in '{e.get('fromChain')}' → '{e.get('toChain')}'",
                )
            return BridgeTransfer(
                token=e.get("token"),
                amount=e.get("amount"),
                from_chain_id=from_chain,
                to_chain_id=to_chain,
                **{**common, "chain_id": from_chain},
            )
        if parsed.action == "balances.get":
            return BalancesGet(include_nfts=bool(e.get("includeNfts")), **common)
        if parsed.action == "rewards.claim":
            return RewardsClaim(platforms=e.get("platforms"), reward_ids=e.get("rewardIds"), **common)
    except ValidationError as exc:
        raise ClassificationError(ClassificationReason.INVALID_ENTITIES, str(exc)) from exc

    raise ClassificationError(
        ClassificationReason.UNRECOGNIZED, f"Unsupported action: {parsed.action}"
    )


def describe(parsed: ParsedIntent) -> str:
    e = parsed.entities
    if parsed.action == "trade.swap":
        return f"Swap {e.get('fromAmount')} {e.get('fromToken')} for {e.get('toToken')}"
    if parsed.action == "transfer.send":
        return f"Send {e.get('amount')} {e.get('token')} to {e.get('recipient')}"
    if parsed.action == "bridge.transfer":
        return f"Bridge {e.get('amount')} {e.get('token')} from {e.get('fromChain')} to {e.get('toChain')}"
    if parsed.action == "balances.get":
        return "Get your NFT collection" if e.get("includeNfts") else "Get your token balances"
    if parsed.action == "rewards.claim":
        return "Claim your available rewards"
    return "Unknown action"
