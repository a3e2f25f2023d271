"""
Tool-call orchestration

Runs one user turn across as many provider rounds as the model needs: every
round that ends with tool calls has its tools executed and their results
appended before the provider is called again. The caller sees a single
logical stream (one start, all deltas, one terminal event).
"""

from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional

from pydantic import BaseModel, Field

from switchboard.core.exceptions import StreamingError, SwitchboardError, ToolLoopExceededError
from switchboard.core.logging import get_logger
from switchboard.models.chat import (
    ChatCompletionRequest,
    ChatMessage,
    Citation,
    CompletionMetadata,
    TokenUsage,
)
from switchboard.models.events import StreamEvent, StreamEventType
from switchboard.models.tools import ToolExecutionRecord
from switchboard.providers.registry import ProviderRegistry
from switchboard.streaming.encoder import create_done_event, create_error_event
from switchboard.streaming.lifecycle import StreamCollector
from switchboard.tools.registry import ToolRegistry

logger = get_logger(__name__)

DEFAULT_MAX_ROUNDS = 10


class TurnStatus(str, Enum):
    COMPLETED = "completed"
    ERROR = "error"
    TOOL_LOOP_EXCEEDED = "tool_loop_exceeded"


class TurnResult(BaseModel):
    status: TurnStatus
    messages: List[ChatMessage] = Field(default_factory=list)  # appended during the turn
    final_message: Optional[ChatMessage] = None
    tool_executions: List[ToolExecutionRecord] = Field(default_factory=list)
    rounds: int = 0
    usage: TokenUsage = Field(default_factory=TokenUsage)
    metadata: Optional[CompletionMetadata] = None
    citations: Optional[List[Citation]] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


@dataclass
class _TurnState:
    messages: List[ChatMessage] = field(default_factory=list)
    executions: List[ToolExecutionRecord] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)
    rounds: int = 0
    status: TurnStatus = TurnStatus.COMPLETED
    final_message: Optional[ChatMessage] = None
    metadata: Optional[CompletionMetadata] = None
    citations: Optional[List[Citation]] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    def result(self) -> TurnResult:
        return TurnResult(
            status=self.status,
            messages=self.messages,
            final_message=self.final_message,
            tool_executions=self.executions,
            rounds=self.rounds,
            usage=self.usage,
            metadata=self.metadata,
            citations=self.citations,
            error=self.error,
            error_code=self.error_code,
        )


class ToolLoop:
    def __init__(
        self,
        providers: ProviderRegistry,
        tools: ToolRegistry,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        parallel_tools: bool = True,
    ):
        self._providers = providers
        self._tools = tools
        self.max_rounds = max_rounds
        self.parallel_tools = parallel_tools

    async def stream_turn(
        self, request: ChatCompletionRequest, routing: Optional[Dict[str, Any]] = None
    ) -> AsyncIterator[StreamEvent]:
        async for event in self._run(request, _TurnState(), routing):
            yield event

    async def run_turn(self, request: ChatCompletionRequest) -> TurnResult:
        state = _TurnState()
        async for _ in self._run(request, state):
            pass
        return state.result()

    async def _round(
        self, request: ChatCompletionRequest, collector: StreamCollector
    ) -> AsyncIterator[StreamEvent]:
        provider = self._providers.resolve(request.model, request.provider)
        async with aclosing(provider.stream(request)) as events:
            async for event in events:
                collector.feed(event)
                yield event
        if collector.terminal is None:
            raise StreamingError("Stream ended without a terminal event")

    def _fail(self, state: _TurnState, message: str, code: Optional[str], status: TurnStatus) -> StreamEvent:
        # Earlier assistant and tool messages stay in history; they did happen.
        notice = ChatMessage(role="assistant", content=f"Error: {message}")
        state.messages.append(notice)
        state.final_message = notice
        state.status = status
        state.error = message
        state.error_code = code
        logger.warning("turn_failed", status=status.value, error_code=code, rounds=state.rounds)
        return create_error_event(message, code)

    async def _run(
        self,
        request: ChatCompletionRequest,
        state: _TurnState,
        routing: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[StreamEvent]:
        current = request
        started = False

        while True:
            collector = StreamCollector()
            try:
                async for event in self._round(current, collector):
                    if event.type == StreamEventType.START:
                        # Later rounds' start events are internal to the turn.
                        if not started:
                            started = True
                            if routing is not None:
                                event.data.routing = routing
                            yield event
                    elif event.type == StreamEventType.DELTA:
                        yield event
            except SwitchboardError as e:
                yield self._fail(state, e.message, e.error_code, TurnStatus.ERROR)
                return

            terminal = collector.terminal
            if terminal.type == StreamEventType.ERROR:
                yield self._fail(
                    state, terminal.data.error or "Provider error", terminal.data.code, TurnStatus.ERROR
                )
                return

            data = terminal.data
            if data.usage is not None:
                state.usage = state.usage + data.usage
            state.metadata = data.metadata
            if data.citations:
                state.citations = (state.citations or []) + data.citations

            tool_calls = data.tool_calls or []
            if not tool_calls:
                final = ChatMessage(role="assistant", content=data.content)
                state.messages.append(final)
                state.final_message = final
                done = create_done_event(
                    data.content, state.usage, data.metadata, citations=state.citations
                )
                done.data.messages = list(state.messages)
                done.data.tool_executions = list(state.executions) or None
                logger.info("turn_completed", rounds=state.rounds, tool_calls=len(state.executions))
                yield done
                return

            if state.rounds >= self.max_rounds:
                exceeded = ToolLoopExceededError(self.max_rounds)
                yield self._fail(state, exceeded.message, exceeded.error_code, TurnStatus.TOOL_LOOP_EXCEEDED)
                return

            state.messages.append(ChatMessage(role="assistant", content=data.content, tool_calls=tool_calls))
            records = await self._tools.execute_tool_calls(tool_calls, parallel=self.parallel_tools)
            state.executions.extend(records)
            # Appended only after the whole batch finished, in call order.
            for record in records:
                state.messages.append(
                    ChatMessage(
                        role="tool",
                        tool_call_id=record.id,
                        name=record.tool_name,
                        content=record.result.as_message_content(),
                    )
                )
            state.rounds += 1
            logger.info("tool_round_completed", round=state.rounds, tools=[r.tool_name for r in records])

            current = current.with_messages([*request.messages, *state.messages])
