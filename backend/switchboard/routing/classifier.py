"""
Rule-based request classification.

Scores the latest user message against four phrase groups and proposes an
intent plus a default provider/model. Pure and synchronous; it never raises
and never claims full certainty for a matched intent.
"""

import re
from typing import Dict, List, Optional, Pattern, Sequence

from switchboard.models.chat import ChatMessage
from switchboard.models.routing import ClassificationConfig, ClassificationResult, RequestIntent
from switchboard.providers.catalog import ModelCatalog

KNOWLEDGE_PATTERNS: List[Pattern[str]] = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"what\s+is|what\s+are|what's",
        r"how\s+do\s+(i|we)|how\s+does|how\s+to",
        r"explain\s+|tell\s+me\s+about",
        r"find\s+(me\s+)?.*documentation|search\s+for",
        r"company\s+policy|our\s+policy|the\s+policy",
        r"procedure\s+for|process\s+for|guidelines?\s+for",
        r"who\s+(is|are|can)|where\s+(is|can|do)",
        r"when\s+(is|was|did)",
        r"confluence|notion|sharepoint|wiki",
        r"documentation|docs\s+for|spec\s+for",
        r"knowledge\s+base|internal\s+docs",
        r"^(what|who|where|when|why|which|how)\b",
    )
]

CODE_PATTERNS: List[Pattern[str]] = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"write\s+(me\s+)?.*code|implement\s+|create\s+.*function",
        r"refactor\s+|optimize\s+.*code|debug\s+|fix\s+(the\s+)?bug",
        r"build\s+.*component|add\s+.*feature",
        r"typescript|javascript|python|react|nextjs|node\.?js",
        r"rust|golang|java|c\+\+|c#|ruby|php|swift|kotlin",
        r"html|css|sql|graphql|rest\s+api",
        r"function|class|component|module|interface|type",
        r"variable|constant|enum|struct|method",
        r"algorithm|data\s+structure|design\s+pattern",
        r"test\s+case|unit\s+test|integration\s+test",
        r"\.(ts|tsx|js|jsx|py|rs|go|java|rb|php|swift|kt)$",
        r"package\.json|tsconfig|dockerfile|makefile",
    )
]

DATA_ANALYSIS_PATTERNS: List[Pattern[str]] = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"analyze\s+(this|the)?\s*data|data\s+analysis",
        r"calculate|compute|sum|average|mean|median",
        r"statistics|statistical|regression|correlation",
        r"create\s+(a\s+)?chart|graph|plot|visualize",
        r"spreadsheet|excel|csv|json\s+data",
        r"math|equation|formula|solve\s+for",
        r"percentage|ratio|proportion|probability",
        r"report\s+on|summarize\s+.*data|metrics|kpi",
        r"trend|forecast|prediction|projection",
    )
]

ACTION_PATTERNS: List[Pattern[str]] = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"create\s+(a\s+)?(jira|ticket|issue|task)",
        r"update\s+(the\s+)?(record|entry|contact|deal)",
        r"send\s+(an?\s+)?email|slack\s+message|notification",
        r"schedule\s+(a\s+)?meeting|calendar",
        r"hubspot|salesforce|jira|confluence|slack",
        r"zendesk|intercom|freshdesk|servicenow",
        r"zapier|make|automate",
        r"post\s+to|push\s+to|sync\s+with",
        r"trigger\s+(a\s+)?workflow|run\s+(the\s+)?automation",
    )
]

INTENT_PATTERNS: Dict[RequestIntent, List[Pattern[str]]] = {
    RequestIntent.KNOWLEDGE_QUERY: KNOWLEDGE_PATTERNS,
    RequestIntent.CODE_TASK: CODE_PATTERNS,
    RequestIntent.DATA_ANALYSIS: DATA_ANALYSIS_PATTERNS,
    RequestIntent.ACTION_REQUEST: ACTION_PATTERNS,
}

INTENT_PROVIDERS: Dict[RequestIntent, str] = {
    RequestIntent.KNOWLEDGE_QUERY: "glean",
    RequestIntent.CODE_TASK: "anthropic",
    RequestIntent.DATA_ANALYSIS: "openai",
    RequestIntent.ACTION_REQUEST: "glean",
    RequestIntent.GENERAL_CHAT: "anthropic",
}

# Fallbacks when no catalog is supplied; kept in line with the built-in catalog defaults.
DEFAULT_PROVIDER_MODELS: Dict[str, str] = {
    "openai": "gpt-4o",
    "anthropic": "claude-sonnet-4-20250514",
    "glean": "glean-assistant",
    "dust": "dust-assistant",
    "ondobot": "ondobot-assistant",
}

VISION_PROVIDER = "anthropic"

# Group score is matches / (group size * SCALE), capped at 1.0.
SCALE = 0.2
MAX_CONFIDENCE = 0.95


def _default_model(provider: str, catalog: Optional[ModelCatalog]) -> str:
    if catalog is not None:
        model = catalog.default_model(provider)
        if model is not None:
            return model.id
    return DEFAULT_PROVIDER_MODELS[provider]


def extract_latest_user_text(messages: Sequence[ChatMessage]) -> str:
    for msg in reversed(messages):
        if msg.role == "user":
            return msg.first_text_part()
    return ""


def pattern_score(content: str, patterns: List[Pattern[str]]) -> tuple[int, float]:
    matches = sum(1 for p in patterns if p.search(content))
    score = min(matches / max(len(patterns) * SCALE, 1), 1.0)
    return matches, score


def _general_chat(confidence: float, reasoning: str, catalog: Optional[ModelCatalog]) -> ClassificationResult:
    provider = INTENT_PROVIDERS[RequestIntent.GENERAL_CHAT]
    return ClassificationResult(
        intent=RequestIntent.GENERAL_CHAT,
        confidence=confidence,
        suggested_provider=provider,
        suggested_model=_default_model(provider, catalog),
        reasoning=reasoning,
    )


def classify_content(content: str, catalog: Optional[ModelCatalog] = None) -> ClassificationResult:
    scored = []
    for intent, patterns in INTENT_PATTERNS.items():
        matches, score = pattern_score(content, patterns)
        scored.append((intent, matches, score))

    # sorted() is stable, so ties keep the group order above
    scored = sorted(scored, key=lambda s: s[2], reverse=True)
    top_intent, top_matches, top_score = scored[0]
    runner_up = scored[1][2]

    if top_matches == 0:
        return _general_chat(0.5, "No strong intent signals detected, defaulting to general chat.", catalog)

    separation = top_score - runner_up
    confidence = min(0.5 + separation + top_score * 0.3, MAX_CONFIDENCE)
    provider = INTENT_PROVIDERS[top_intent]
    return ClassificationResult(
        intent=top_intent,
        confidence=confidence,
        suggested_provider=provider,
        suggested_model=_default_model(provider, catalog),
        reasoning=f"Matched {top_matches} patterns for {top_intent.value} (score: {top_score:.2f}).",
    )


def classify(
    messages: Sequence[ChatMessage],
    config: Optional[ClassificationConfig] = None,
    catalog: Optional[ModelCatalog] = None,
) -> ClassificationResult:
    config = config or ClassificationConfig()
    content = extract_latest_user_text(messages)

    if not content.strip():
        return _general_chat(1.0, "Empty message content.", catalog)

    result = classify_content(content, catalog)

    # llm_hybrid has no second-stage model yet; low-confidence results are only flagged.
    if config.mode == "llm_hybrid" and result.confidence < config.confidence_threshold:
        result.reasoning += " (Below confidence threshold, consider LLM verification.)"
    return result


def has_multimodal_content(messages: Sequence[ChatMessage]) -> bool:
    return any(msg.has_multimodal_content() for msg in messages)


def adjust_for_multimodal(
    result: ClassificationResult,
    messages: Sequence[ChatMessage],
    catalog: Optional[ModelCatalog] = None,
) -> ClassificationResult:
    """Move to a vision-capable model when the conversation carries images or files."""
    if not has_multimodal_content(messages):
        return result

    if catalog is not None:
        needs_switch = not catalog.supports_vision(result.suggested_model)
    else:
        needs_switch = result.suggested_provider not in ("openai", "anthropic")
    if not needs_switch:
        return result

    return result.model_copy(
        update={
            "suggested_provider": VISION_PROVIDER,
            "suggested_model": _default_model(VISION_PROVIDER, catalog),
            "reasoning": result.reasoning + " Adjusted for multi-modal content (vision required).",
        }
    )
