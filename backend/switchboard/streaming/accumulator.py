import time
from typing import Dict, List, Optional

from switchboard.models.chat import (
    Citation,
    CompletionMetadata,
    FinishReason,
    FunctionCall,
    TokenUsage,
    ToolCall,
)
from switchboard.models.events import StreamEvent
from switchboard.streaming.encoder import (
    create_delta_event,
    create_done_event,
    create_thinking_delta_event,
    create_tool_call_delta_event,
)


class _ToolCallBuffer:
    def __init__(self, index: int):
        self.index = index
        self.id: Optional[str] = None
        self.name: Optional[str] = None
        self.arguments: List[str] = []


class StreamAccumulator:
    """Collects one provider stream into the state needed for its ``done`` event.

    Adapters feed it through ``text``/``thinking``/``tool_call``, which also
    return the delta event to yield, so accumulation and forwarding stay in step.
    """

    def __init__(self, model: str, provider: str):
        self.model = model
        self.provider = provider
        self.started_at = time.monotonic()
        self._text: List[str] = []
        self._tool_calls: Dict[int, _ToolCallBuffer] = {}
        self.input_tokens: Optional[int] = None
        self.output_tokens: Optional[int] = None
        self.citations: List[Citation] = []
        self.finish_reason: Optional[FinishReason] = None
        self.structured: Optional[dict] = None
        self.response_id: Optional[str] = None

    @property
    def content(self) -> str:
        return "".join(self._text)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self._tool_calls)

    def text(self, delta: str) -> StreamEvent:
        self._text.append(delta)
        return create_delta_event(delta)

    def thinking(self, delta: str) -> StreamEvent:
        return create_thinking_delta_event(delta)

    def tool_call(
        self,
        index: int,
        id: Optional[str] = None,
        name: Optional[str] = None,
        arguments: Optional[str] = None,
    ) -> StreamEvent:
        buf = self._tool_calls.setdefault(index, _ToolCallBuffer(index))
        if id:
            buf.id = id
        if name:
            buf.name = name
        if arguments:
            buf.arguments.append(arguments)
        return create_tool_call_delta_event(index, id=id, name=name, arguments=arguments)

    def set_usage(self, input_tokens: Optional[int] = None, output_tokens: Optional[int] = None) -> None:
        # Providers report usage at different points; later values win.
        if input_tokens is not None:
            self.input_tokens = input_tokens
        if output_tokens is not None:
            self.output_tokens = output_tokens

    def add_citations(self, citations: List[Citation]) -> None:
        known = {(c.url, c.title) for c in self.citations}
        for citation in citations:
            if (citation.url, citation.title) not in known:
                self.citations.append(citation)
                known.add((citation.url, citation.title))

    def tool_calls(self) -> List[ToolCall]:
        calls = []
        for index in sorted(self._tool_calls):
            buf = self._tool_calls[index]
            if not buf.name:
                continue
            calls.append(
                ToolCall(
                    id=buf.id or f"call_{index}",
                    function=FunctionCall(name=buf.name, arguments="".join(buf.arguments) or "{}"),
                )
            )
        return calls

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started_at) * 1000)

    def metadata(self) -> CompletionMetadata:
        finish = self.finish_reason
        if finish is None:
            finish = FinishReason.TOOL_CALLS if self.has_tool_calls else FinishReason.STOP
        return CompletionMetadata(
            model=self.model,
            provider=self.provider,
            processing_time_ms=self.elapsed_ms,
            finish_reason=finish,
            structured=self.structured,
            response_id=self.response_id,
        )

    def done_event(self, usage: TokenUsage) -> StreamEvent:
        tool_calls = self.tool_calls()
        content: Optional[str] = self.content
        if not content and tool_calls:
            content = None
        return create_done_event(
            content,
            usage,
            self.metadata(),
            citations=self.citations,
            tool_calls=tool_calls,
        )
