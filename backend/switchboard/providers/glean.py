import time
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from switchboard.core.config import Settings
from switchboard.core.exceptions import ProviderError
from switchboard.core.logging import get_logger
from switchboard.core.tokens import estimate_tokens
from switchboard.models.chat import (
    AssistantMessage,
    ChatCompletionRequest,
    ChatCompletionResponse,
    Citation,
    CompletionMetadata,
)
from switchboard.models.events import StreamEvent
from switchboard.providers.catalog import ModelCatalog
from switchboard.providers.http import HTTPProvider
from switchboard.storage.continuation_cache import ContinuationCache
from switchboard.streaming.accumulator import StreamAccumulator
from switchboard.streaming.upstream import iter_ndjson

logger = get_logger(__name__)

AGENT_PREFIX = "glean-agent-"


def _citations(raw: Optional[List[Dict[str, Any]]]) -> List[Citation]:
    return [Citation.model_validate(c) for c in raw or [] if isinstance(c, dict)]


def _frame_error(frame: Dict[str, Any]) -> Optional[str]:
    error = frame.get("error")
    if not error:
        return None
    if isinstance(error, dict):
        return error.get("message") or "Glean reported an error"
    return str(error)


class GleanProvider(HTTPProvider):
    """Enterprise knowledge assistant.

    Text only: tool messages are dropped and attachments are inlined as text.
    Glean keeps conversation state server side under a ``chatId``; once one is
    known for a conversation only the newest user message is sent.
    """

    provider_name = "glean"

    def __init__(
        self,
        settings: Settings,
        catalog: ModelCatalog,
        http_client: Optional[httpx.AsyncClient] = None,
        continuations: Optional[ContinuationCache] = None,
    ):
        super().__init__(settings, catalog, http_client)
        self.continuations = continuations or ContinuationCache()

    def _build_payload(self, request: ChatCompletionRequest, stream: bool) -> Dict[str, Any]:
        chat_id = self.continuations.get(request.conversation_id)

        if chat_id:
            latest = request.latest_user_message()
            source = [latest] if latest is not None else []
        else:
            source = [m for m in request.messages if m.role in ("user", "assistant")]

        messages = []
        for msg in source:
            text = self.flatten_text(msg)
            if text:
                messages.append({"role": msg.role, "content": text})

        payload: Dict[str, Any] = {"messages": messages, "stream": stream}
        system_prompt = self.system_prompt(request)
        if system_prompt and not chat_id:
            payload["messages"].insert(0, {"role": "system", "content": system_prompt})
        if request.model.startswith(AGENT_PREFIX):
            payload["agentId"] = request.model[len(AGENT_PREFIX):]
        if chat_id:
            payload["chatId"] = chat_id
        return payload

    async def _stream_events(
        self, request: ChatCompletionRequest, acc: StreamAccumulator
    ) -> AsyncIterator[StreamEvent]:
        payload = self._build_payload(request, stream=True)
        chat_id: Optional[str] = None

        async with self.http.stream(
            "POST", f"{self.base_url}/chat", json=payload, headers=self.headers(streaming=True)
        ) as response:
            await self.raise_for_status(response)
            async for frame in iter_ndjson(response):
                message = _frame_error(frame)
                if message:
                    raise ProviderError(message, self.provider_name)
                if frame.get("delta"):
                    yield acc.text(frame["delta"])
                if frame.get("citations"):
                    acc.add_citations(_citations(frame["citations"]))
                chat_id = frame.get("chatId") or chat_id

        # Only a completed response may advance the conversation state.
        self.continuations.set(request.conversation_id, chat_id)
        acc.set_usage(output_tokens=estimate_tokens(acc.content))

    async def _complete(self, request: ChatCompletionRequest) -> ChatCompletionResponse:
        started = time.monotonic()
        data = await self.post_json("/chat", self._build_payload(request, stream=False))

        self.continuations.set(request.conversation_id, data.get("chatId"))
        content = (data.get("message") or {}).get("content", "")
        return ChatCompletionResponse(
            id=data.get("id") or self.generate_id(),
            message=AssistantMessage(content=content),
            metadata=CompletionMetadata(
                model=request.model,
                provider=self.provider_name,
                processing_time_ms=int((time.monotonic() - started) * 1000),
            ),
            usage=self.build_usage(
                request.model, self.count_tokens(request.messages), estimate_tokens(content)
            ),
            citations=_citations(data.get("citations")),
        )
