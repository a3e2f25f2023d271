from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

from switchboard.models.routing import RoutingOptions


class ImageUrl(BaseModel):
    url: str
    detail: Optional[str] = None


class ContentPart(BaseModel):
    type: Literal["text", "image_url"]
    text: Optional[str] = None
    image_url: Optional[ImageUrl] = None


class ImageAttachment(BaseModel):
    name: str = "image"
    url: Optional[str] = None
    base64: Optional[str] = None  # data URL: data:<mime>;base64,<payload>
    mime_type: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None

    @property
    def source(self) -> Optional[str]:
        return self.base64 or self.url


class FileAttachment(BaseModel):
    name: str
    mime_type: Optional[str] = None
    size: Optional[int] = None
    content: Optional[str] = None
    file_type: Optional[str] = None
    language: Optional[str] = None
    status: Literal["ready", "processing", "error"] = "ready"

    @property
    def is_inlineable(self) -> bool:
        return self.status == "ready" and bool(self.content)


class FunctionCall(BaseModel):
    name: str
    arguments: str = "{}"


class ToolCall(BaseModel):
    id: str
    type: Literal["function"] = "function"
    function: FunctionCall


class FunctionSpec(BaseModel):
    name: str
    description: str = ""
    parameters: Dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})


class ToolSpec(BaseModel):
    type: Literal["function"] = "function"
    function: FunctionSpec


class NamedToolChoice(BaseModel):
    type: Literal["function"] = "function"
    function: Dict[str, str]


ToolChoice = Union[Literal["auto", "none", "required"], NamedToolChoice]


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant", "tool"]
    content: Union[str, List[ContentPart], None] = None
    name: Optional[str] = None
    images: Optional[List[ImageAttachment]] = None
    files: Optional[List[FileAttachment]] = None
    tool_calls: Optional[List[ToolCall]] = None
    tool_call_id: Optional[str] = None

    @model_validator(mode="after")
    def _tool_message_has_call_id(self) -> "ChatMessage":
        if self.role == "tool" and not self.tool_call_id:
            raise ValueError("tool messages require a tool_call_id")
        return self

    def text_content(self) -> str:
        if isinstance(self.content, str):
            return self.content
        if isinstance(self.content, list):
            return " ".join(p.text or "" for p in self.content if p.type == "text")
        return ""

    def first_text_part(self) -> str:
        """Text used for intent detection: the string content or the first text part."""
        if isinstance(self.content, str):
            return self.content
        if isinstance(self.content, list):
            for part in self.content:
                if part.type == "text" and part.text is not None:
                    return part.text
        return ""

    def image_parts(self) -> List[ContentPart]:
        if isinstance(self.content, list):
            return [p for p in self.content if p.type == "image_url" and p.image_url]
        return []

    def has_multimodal_content(self) -> bool:
        return bool(self.images) or bool(self.files) or bool(self.image_parts())


class ChatCompletionOptions(BaseModel):
    system_prompt: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(default=None, gt=0)
    top_p: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    stream: bool = True
    tools: Optional[List[ToolSpec]] = None
    tool_choice: Optional[ToolChoice] = None
    parallel_tool_calls: Optional[bool] = None


class ChatCompletionRequest(BaseModel):
    """Canonical request handed to provider adapters. Never mutated; use ``with_messages``."""

    model_config = ConfigDict(frozen=True)

    conversation_id: Optional[str] = None
    messages: List[ChatMessage] = Field(min_length=1)
    model: str
    provider: Optional[str] = None
    options: ChatCompletionOptions = Field(default_factory=ChatCompletionOptions)
    routing: Optional[RoutingOptions] = None

    @model_validator(mode="after")
    def _tool_results_follow_calls(self) -> "ChatCompletionRequest":
        seen: set[str] = set()
        for msg in self.messages:
            if msg.role == "assistant" and msg.tool_calls:
                seen.update(tc.id for tc in msg.tool_calls)
            elif msg.role == "tool" and msg.tool_call_id not in seen:
                raise ValueError(
                    f"tool message references unknown tool_call_id '{msg.tool_call_id}'"
                )
        return self

    def with_messages(self, messages: List[ChatMessage]) -> "ChatCompletionRequest":
        return self.model_copy(update={"messages": list(messages)})

    def with_target(self, model: str, provider: Optional[str]) -> "ChatCompletionRequest":
        return self.model_copy(update={"model": model, "provider": provider})

    def latest_user_message(self) -> Optional[ChatMessage]:
        for msg in reversed(self.messages):
            if msg.role == "user":
                return msg
        return None


class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    estimated_cost: Optional[float] = None

    @computed_field
    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        cost = None
        if self.estimated_cost is not None or other.estimated_cost is not None:
            cost = (self.estimated_cost or 0.0) + (other.estimated_cost or 0.0)
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            estimated_cost=cost,
        )


class FinishReason(str, Enum):
    STOP = "stop"
    LENGTH = "length"
    CONTENT_FILTER = "content_filter"
    TOOL_CALLS = "tool_calls"


class CompletionMetadata(BaseModel):
    model: str
    provider: str
    processing_time_ms: int = 0
    finish_reason: FinishReason = FinishReason.STOP
    response_id: Optional[str] = None  # the upstream's own id, when it reports one
    structured: Optional[Dict[str, Any]] = None


class Citation(BaseModel):
    title: str = ""
    url: str = ""
    snippet: Optional[str] = None
    source: Optional[str] = None


class AssistantMessage(BaseModel):
    role: Literal["assistant"] = "assistant"
    content: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None


class ChatCompletionResponse(BaseModel):
    id: str
    message: AssistantMessage
    metadata: CompletionMetadata
    usage: TokenUsage = Field(default_factory=TokenUsage)
    citations: Optional[List[Citation]] = None

    @field_validator("citations")
    @classmethod
    def _empty_citations_to_none(cls, v: Optional[List[Citation]]) -> Optional[List[Citation]]:
        return v or None
