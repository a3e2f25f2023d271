from enum import Enum
from typing import Dict, Literal, Optional

from pydantic import BaseModel, Field


class RequestIntent(str, Enum):
    KNOWLEDGE_QUERY = "knowledge_query"  # enterprise knowledge search
    CODE_TASK = "code_task"
    DATA_ANALYSIS = "data_analysis"
    ACTION_REQUEST = "action_request"  # actions on external systems
    GENERAL_CHAT = "general_chat"


class ClassificationConfig(BaseModel):
    mode: Literal["rule_based", "llm_hybrid"] = "rule_based"
    confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)


class ClassificationResult(BaseModel):
    intent: RequestIntent
    confidence: float = Field(ge=0.0, le=1.0)
    suggested_provider: str
    suggested_model: str
    reasoning: str


class RoutingOptions(BaseModel):
    auto_routing: bool = False
    confidence_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    # intent -> provider / model
    provider_preferences: Optional[Dict[RequestIntent, str]] = None
    model_overrides: Optional[Dict[RequestIntent, str]] = None


class RouteResult(BaseModel):
    model: str
    provider: Optional[str] = None
    was_auto_routed: bool = False
    classification: Optional[ClassificationResult] = None
