from enum import Enum
from typing import AsyncIterable, AsyncIterator, Dict, List, Optional

from switchboard.core.exceptions import StreamingError
from switchboard.models.chat import (
    AssistantMessage,
    ChatCompletionResponse,
    FunctionCall,
    ToolCall,
)
from switchboard.models.events import StreamEvent, StreamEventType


class StreamState(str, Enum):
    NOT_STARTED = "not_started"
    STREAMING = "streaming"
    DONE = "done"
    ERROR = "error"


class StreamLifecycle:
    """Enforces start -> delta* -> (done | error) for one canonical stream."""

    def __init__(self) -> None:
        self.state = StreamState.NOT_STARTED

    def observe(self, event: StreamEvent) -> StreamState:
        if self.state in (StreamState.DONE, StreamState.ERROR):
            raise StreamingError(f"Received '{event.type.value}' event after stream ended")

        if event.type == StreamEventType.START:
            if self.state != StreamState.NOT_STARTED:
                raise StreamingError("Duplicate start event")
            self.state = StreamState.STREAMING
        elif event.type == StreamEventType.DELTA:
            if self.state != StreamState.STREAMING:
                raise StreamingError("Delta event before start")
        elif event.type == StreamEventType.DONE:
            if self.state != StreamState.STREAMING:
                raise StreamingError("Done event before start")
            self.state = StreamState.DONE
        elif event.type == StreamEventType.ERROR:
            # Errors may end a stream that never started (e.g. a rejected request).
            self.state = StreamState.ERROR
        return self.state

    @property
    def finished(self) -> bool:
        return self.state in (StreamState.DONE, StreamState.ERROR)


async def checked(events: AsyncIterable[StreamEvent]) -> AsyncIterator[StreamEvent]:
    """Pass events through while validating the lifecycle; a stream that ends
    without a terminal event raises StreamingError."""
    lifecycle = StreamLifecycle()
    async for event in events:
        lifecycle.observe(event)
        yield event
    if not lifecycle.finished:
        raise StreamingError("Stream ended without a terminal event")


class StreamCollector:
    """Consumer-side fold of a canonical stream into a response."""

    def __init__(self) -> None:
        self.lifecycle = StreamLifecycle()
        self.id: Optional[str] = None
        self.routing: Optional[dict] = None
        self.text: List[str] = []
        self.thinking: List[str] = []
        self._fragments: Dict[int, Dict[str, str]] = {}
        self.terminal: Optional[StreamEvent] = None

    def feed(self, event: StreamEvent) -> None:
        self.lifecycle.observe(event)
        data = event.data
        if event.type == StreamEventType.START:
            self.id = data.id
            self.routing = data.routing
        elif event.type == StreamEventType.DELTA:
            if data.delta is not None:
                self.text.append(data.delta)
            elif data.thinking is not None:
                self.thinking.append(data.thinking)
            elif data.tool_call_delta is not None:
                frag = data.tool_call_delta
                slot = self._fragments.setdefault(frag.index, {"id": "", "name": "", "arguments": ""})
                if frag.id:
                    slot["id"] = frag.id
                if frag.name:
                    slot["name"] = frag.name
                if frag.arguments:
                    slot["arguments"] += frag.arguments
        elif event.is_terminal:
            self.terminal = event

    @property
    def content(self) -> str:
        return "".join(self.text)

    def streamed_tool_calls(self) -> List[ToolCall]:
        return [
            ToolCall(id=f["id"], function=FunctionCall(name=f["name"], arguments=f["arguments"] or "{}"))
            for _, f in sorted(self._fragments.items())
            if f["name"]
        ]

    def to_response(self) -> ChatCompletionResponse:
        if self.terminal is None:
            raise StreamingError("Stream has not finished")
        data = self.terminal.data
        if self.terminal.type == StreamEventType.ERROR:
            raise StreamingError(data.error or "Stream failed", {"code": data.code})
        return ChatCompletionResponse(
            id=self.id or "",
            message=AssistantMessage(
                content=data.content,
                tool_calls=data.tool_calls or self.streamed_tool_calls() or None,
            ),
            metadata=data.metadata,
            usage=data.usage,
            citations=data.citations,
        )


async def collect(events: AsyncIterable[StreamEvent]) -> ChatCompletionResponse:
    collector = StreamCollector()
    async for event in events:
        collector.feed(event)
    return collector.to_response()
