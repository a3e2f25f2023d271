import time
from typing import Any, AsyncIterator, Dict, List, Optional

import openai as openai_lib

from switchboard.core.config import Settings
from switchboard.core.logging import get_logger
from switchboard.models.chat import (
    AssistantMessage,
    ChatCompletionRequest,
    ChatCompletionResponse,
    ChatMessage,
    CompletionMetadata,
    FinishReason,
    FunctionCall,
    ToolCall,
)
from switchboard.models.events import StreamEvent
from switchboard.providers.base import BaseProvider
from switchboard.providers.catalog import ModelCatalog
from switchboard.streaming.accumulator import StreamAccumulator

logger = get_logger(__name__)

FINISH_REASONS = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "content_filter": FinishReason.CONTENT_FILTER,
    "tool_calls": FinishReason.TOOL_CALLS,
    "function_call": FinishReason.TOOL_CALLS,
}


class OpenAIProvider(BaseProvider):
    provider_name = "openai"

    def __init__(
        self,
        settings: Settings,
        catalog: ModelCatalog,
        client: Optional[openai_lib.AsyncOpenAI] = None,
    ):
        super().__init__(settings, catalog)
        self._client = client

    @property
    def client(self) -> openai_lib.AsyncOpenAI:
        # Built on first use: the SDK refuses to construct without a key.
        if self._client is None:
            self._client = openai_lib.AsyncOpenAI(
                api_key=self.api_key,
                timeout=self._settings.provider_timeout_seconds,
                max_retries=self._settings.provider_max_retries,
            )
        return self._client

    def is_configured(self) -> bool:
        return self._client is not None or super().is_configured()

    def _build_user_content(self, msg: ChatMessage, vision: bool):
        if not vision or not (msg.images or msg.image_parts()):
            return self.flatten_text(msg, include_images=True)

        parts: List[Dict[str, Any]] = [{"type": "text", "text": self.flatten_text(msg, include_images=False)}]
        for img in msg.images or []:
            if img.source:
                parts.append({"type": "image_url", "image_url": {"url": img.source}})
        for part in msg.image_parts():
            parts.append({"type": "image_url", "image_url": part.image_url.model_dump(exclude_none=True)})
        return parts

    def _build_messages(self, request: ChatCompletionRequest) -> List[Dict[str, Any]]:
        vision = self._catalog.supports_vision(request.model)
        messages: List[Dict[str, Any]] = []

        system_prompt = self.system_prompt(request)
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})

        for msg in request.messages:
            if msg.role == "system":
                continue
            if msg.role == "user":
                messages.append({"role": "user", "content": self._build_user_content(msg, vision)})
            elif msg.role == "assistant":
                entry: Dict[str, Any] = {"role": "assistant", "content": msg.text_content() or None}
                if msg.tool_calls:
                    entry["tool_calls"] = [tc.model_dump() for tc in msg.tool_calls]
                messages.append(entry)
            elif msg.role == "tool":
                messages.append(
                    {"role": "tool", "tool_call_id": msg.tool_call_id, "content": msg.text_content()}
                )
        return messages

    def _build_kwargs(self, request: ChatCompletionRequest) -> Dict[str, Any]:
        options = request.options
        kwargs: Dict[str, Any] = dict(
            model=request.model,
            messages=self._build_messages(request),
        )
        if options.temperature is not None:
            kwargs["temperature"] = options.temperature
        if options.max_tokens is not None:
            kwargs["max_tokens"] = options.max_tokens
        if options.top_p is not None:
            kwargs["top_p"] = options.top_p
        if options.tools:
            kwargs["tools"] = [t.model_dump() for t in options.tools]
            if options.tool_choice is not None:
                kwargs["tool_choice"] = (
                    options.tool_choice
                    if isinstance(options.tool_choice, str)
                    else options.tool_choice.model_dump()
                )
            if options.parallel_tool_calls is not None:
                kwargs["parallel_tool_calls"] = options.parallel_tool_calls
        return kwargs

    async def _stream_events(
        self, request: ChatCompletionRequest, acc: StreamAccumulator
    ) -> AsyncIterator[StreamEvent]:
        stream = await self.client.chat.completions.create(
            **self._build_kwargs(request),
            stream=True,
            stream_options={"include_usage": True},
        )
        async for chunk in stream:
            acc.response_id = acc.response_id or chunk.id
            if chunk.usage:
                acc.set_usage(chunk.usage.prompt_tokens, chunk.usage.completion_tokens)
            if not chunk.choices:
                continue

            choice = chunk.choices[0]
            delta = choice.delta
            if delta is not None:
                if delta.content:
                    yield acc.text(delta.content)
                for tc in delta.tool_calls or []:
                    fn = tc.function
                    yield acc.tool_call(
                        tc.index,
                        id=tc.id,
                        name=fn.name if fn else None,
                        arguments=fn.arguments if fn else None,
                    )
            if choice.finish_reason:
                acc.finish_reason = FINISH_REASONS.get(choice.finish_reason, FinishReason.STOP)

    async def _complete(self, request: ChatCompletionRequest) -> ChatCompletionResponse:
        started = time.monotonic()
        response = await self.client.chat.completions.create(**self._build_kwargs(request), stream=False)

        choice = response.choices[0]
        tool_calls = [
            ToolCall(id=tc.id, function=FunctionCall(name=tc.function.name, arguments=tc.function.arguments or "{}"))
            for tc in choice.message.tool_calls or []
        ]
        usage = self.build_usage(
            request.model,
            response.usage.prompt_tokens if response.usage else self.count_tokens(request.messages),
            response.usage.completion_tokens if response.usage else 0,
        )
        return ChatCompletionResponse(
            id=response.id,
            message=AssistantMessage(content=choice.message.content, tool_calls=tool_calls or None),
            metadata=CompletionMetadata(
                model=request.model,
                provider=self.provider_name,
                processing_time_ms=int((time.monotonic() - started) * 1000),
                finish_reason=FINISH_REASONS.get(choice.finish_reason or "stop", FinishReason.STOP),
            ),
            usage=usage,
        )

    async def health_check(self) -> bool:
        try:
            await self.client.models.list()
            return True
        except Exception:
            return False

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
