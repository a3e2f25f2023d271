import re
import time
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import anthropic
import orjson

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

DATA_URL_RE = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)

FINISH_REASONS = {
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "max_tokens": FinishReason.LENGTH,
    "tool_use": FinishReason.TOOL_CALLS,
    "refusal": FinishReason.CONTENT_FILTER,
}


def _image_block(url: str) -> Dict[str, Any]:
    match = DATA_URL_RE.match(url)
    if match:
        return {
            "type": "image",
            "source": {"type": "base64", "media_type": match.group(1), "data": match.group(2)},
        }
    return {"type": "image", "source": {"type": "url", "url": url}}


def _parse_arguments(arguments: str) -> Dict[str, Any]:
    try:
        parsed = orjson.loads(arguments or "{}")
    except orjson.JSONDecodeError:
        logger.warning("tool_arguments_unparseable", arguments=arguments[:200])
        return {}
    return parsed if isinstance(parsed, dict) else {}


class AnthropicProvider(BaseProvider):
    provider_name = "anthropic"

    def __init__(
        self,
        settings: Settings,
        catalog: ModelCatalog,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ):
        super().__init__(settings, catalog)
        self._client = client

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(
                api_key=self.api_key,
                timeout=self._settings.provider_timeout_seconds,
                max_retries=self._settings.provider_max_retries,
            )
        return self._client

    def is_configured(self) -> bool:
        return self._client is not None or super().is_configured()

    # ── Request translation ────────────────────────────────────────────────

    def _user_content(self, msg: ChatMessage):
        if not msg.has_multimodal_content() and not isinstance(msg.content, list):
            return msg.text_content()

        blocks: List[Dict[str, Any]] = []
        text = self.flatten_text(msg, include_images=False)
        if text:
            blocks.append({"type": "text", "text": text})
        for img in msg.images or []:
            if img.source:
                blocks.append(_image_block(img.source))
        for part in msg.image_parts():
            blocks.append(_image_block(part.image_url.url))
        return blocks or ""

    def _build_messages(self, request: ChatCompletionRequest) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = []

        for msg in request.messages:
            if msg.role == "system":
                continue

            if msg.role == "tool":
                # Tool results travel as tool_result blocks on a user turn;
                # consecutive results share one turn.
                block = {
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id,
                    "content": msg.text_content(),
                }
                last = messages[-1] if messages else None
                if (
                    last is not None
                    and last["role"] == "user"
                    and isinstance(last["content"], list)
                    and all(b.get("type") == "tool_result" for b in last["content"])
                ):
                    last["content"].append(block)
                else:
                    messages.append({"role": "user", "content": [block]})
                continue

            if msg.role == "assistant":
                if msg.tool_calls:
                    blocks: List[Dict[str, Any]] = []
                    if msg.text_content():
                        blocks.append({"type": "text", "text": msg.text_content()})
                    for tc in msg.tool_calls:
                        blocks.append(
                            {
                                "type": "tool_use",
                                "id": tc.id,
                                "name": tc.function.name,
                                "input": _parse_arguments(tc.function.arguments),
                            }
                        )
                    messages.append({"role": "assistant", "content": blocks})
                else:
                    messages.append({"role": "assistant", "content": msg.text_content()})
                continue

            messages.append({"role": "user", "content": self._user_content(msg)})

        return messages

    def _map_tool_choice(self, choice) -> Optional[Dict[str, Any]]:
        if choice is None or choice == "auto":
            return {"type": "auto"}
        if choice == "required":
            return {"type": "any"}
        if isinstance(choice, str):
            return None
        name = choice.function.get("name")
        return {"type": "tool", "name": name} if name else {"type": "auto"}

    def _build_kwargs(self, request: ChatCompletionRequest) -> Dict[str, Any]:
        options = request.options
        model = self.model_config(request.model)
        kwargs: Dict[str, Any] = dict(
            model=request.model,
            messages=self._build_messages(request),
            max_tokens=options.max_tokens or (model.capabilities.max_output_tokens if model else 4096),
        )
        system_prompt = self.system_prompt(request)
        if system_prompt:
            kwargs["system"] = system_prompt
        if options.temperature is not None:
            kwargs["temperature"] = options.temperature
        if options.top_p is not None:
            kwargs["top_p"] = options.top_p
        # "none" has no Anthropic equivalent; the tools are simply not sent
        if options.tools and options.tool_choice != "none":
            kwargs["tools"] = [
                {
                    "name": t.function.name,
                    "description": t.function.description,
                    "input_schema": t.function.parameters,
                }
                for t in options.tools
            ]
            kwargs["tool_choice"] = self._map_tool_choice(options.tool_choice)
        return kwargs

    # ── Streaming ──────────────────────────────────────────────────────────

    async def _stream_events(
        self, request: ChatCompletionRequest, acc: StreamAccumulator
    ) -> AsyncIterator[StreamEvent]:
        stream = await self.client.messages.create(**self._build_kwargs(request), stream=True)

        # content block index -> tool call index
        tool_indexes: Dict[int, int] = {}

        async for event in stream:
            if event.type == "message_start":
                acc.response_id = event.message.id
                acc.set_usage(input_tokens=event.message.usage.input_tokens)

            elif event.type == "content_block_start":
                block = event.content_block
                if block.type == "tool_use":
                    tool_index = len(tool_indexes)
                    tool_indexes[event.index] = tool_index
                    yield acc.tool_call(tool_index, id=block.id, name=block.name)

            elif event.type == "content_block_delta":
                delta = event.delta
                if delta.type == "text_delta" and delta.text:
                    yield acc.text(delta.text)
                elif delta.type == "thinking_delta" and delta.thinking:
                    yield acc.thinking(delta.thinking)
                elif delta.type == "input_json_delta" and delta.partial_json:
                    yield acc.tool_call(tool_indexes[event.index], arguments=delta.partial_json)

            elif event.type == "message_delta":
                if event.delta.stop_reason:
                    acc.finish_reason = FINISH_REASONS.get(event.delta.stop_reason, FinishReason.STOP)
                if event.usage is not None:
                    acc.set_usage(output_tokens=event.usage.output_tokens)

    # ── Non-streaming ──────────────────────────────────────────────────────

    def _extract(self, content) -> Tuple[str, List[ToolCall]]:
        text = "".join(block.text for block in content if block.type == "text")
        tool_calls = [
            ToolCall(
                id=block.id,
                function=FunctionCall(name=block.name, arguments=orjson.dumps(block.input).decode()),
            )
            for block in content
            if block.type == "tool_use"
        ]
        return text, tool_calls

    async def _complete(self, request: ChatCompletionRequest) -> ChatCompletionResponse:
        started = time.monotonic()
        response = await self.client.messages.create(**self._build_kwargs(request))

        text, tool_calls = self._extract(response.content)
        return ChatCompletionResponse(
            id=response.id,
            message=AssistantMessage(content=text or None, tool_calls=tool_calls or None),
            metadata=CompletionMetadata(
                model=request.model,
                provider=self.provider_name,
                processing_time_ms=int((time.monotonic() - started) * 1000),
                finish_reason=FINISH_REASONS.get(response.stop_reason or "end_turn", FinishReason.STOP),
            ),
            usage=self.build_usage(request.model, response.usage.input_tokens, response.usage.output_tokens),
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
