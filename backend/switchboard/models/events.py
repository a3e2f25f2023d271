from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from switchboard.models.chat import ChatMessage, Citation, CompletionMetadata, TokenUsage, ToolCall
from switchboard.models.tools import ToolExecutionRecord


class StreamEventType(str, Enum):
    START = "start"
    DELTA = "delta"
    DONE = "done"
    ERROR = "error"


class ToolCallDelta(BaseModel):
    """A partial tool call. Fragments sharing an ``index`` belong to one call."""

    index: int
    id: Optional[str] = None
    name: Optional[str] = None
    arguments: Optional[str] = None


class StreamEventData(BaseModel):
    # start
    id: Optional[str] = None
    routing: Optional[Dict[str, Any]] = None
    # delta (exactly one per event)
    delta: Optional[str] = None
    thinking: Optional[str] = None
    tool_call_delta: Optional[ToolCallDelta] = None
    # done
    content: Optional[str] = None
    usage: Optional[TokenUsage] = None
    metadata: Optional[CompletionMetadata] = None
    citations: Optional[List[Citation]] = None
    tool_calls: Optional[List[ToolCall]] = None
    messages: Optional[List[ChatMessage]] = None
    tool_executions: Optional[List[ToolExecutionRecord]] = None
    # error
    error: Optional[str] = None
    code: Optional[str] = None


class StreamEvent(BaseModel):
    type: StreamEventType
    data: StreamEventData = Field(default_factory=StreamEventData)
    timestamp: int  # epoch milliseconds

    @property
    def is_terminal(self) -> bool:
        return self.type in (StreamEventType.DONE, StreamEventType.ERROR)
