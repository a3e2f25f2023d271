import asyncio
import time
from typing import Any, AsyncIterator, Dict, Optional

from switchboard.core.logging import get_logger
from switchboard.core.tokens import estimate_tokens
from switchboard.models.chat import (
    AssistantMessage,
    ChatCompletionRequest,
    ChatCompletionResponse,
    CompletionMetadata,
)
from switchboard.models.events import StreamEvent
from switchboard.providers.http import HTTPProvider
from switchboard.streaming.accumulator import StreamAccumulator
from switchboard.streaming.upstream import iter_sse_data

logger = get_logger(__name__)


class OndoBotProvider(HTTPProvider):
    """Internal Ondo assistant.

    Streams SSE frames from ``/chat/stream``; the blocking path posts to
    ``/chat``. Either way the whole call runs under a hard wall-clock limit
    (``ONDOBOT_TIMEOUT_SECONDS``) and is cancelled when it expires.
    """

    provider_name = "ondobot"

    def _build_payload(self, request: ChatCompletionRequest, stream: bool) -> Dict[str, Any]:
        messages = [
            {"role": msg.role, "content": msg.first_text_part()}
            for msg in request.messages
            if msg.role in ("user", "assistant") and msg.first_text_part()
        ]
        system_prompt = self.system_prompt(request)
        if system_prompt:
            messages.insert(0, {"role": "system", "content": system_prompt})
        return {"messages": messages, "stream": stream}

    def _output_tokens(self, data: Dict[str, Any], content: str) -> int:
        used: Optional[int] = (data.get("metadata") or {}).get("tokensUsed")
        return used if used is not None else estimate_tokens(content)

    async def _stream_events(
        self, request: ChatCompletionRequest, acc: StreamAccumulator
    ) -> AsyncIterator[StreamEvent]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._settings.ondobot_timeout_seconds

        def remaining() -> float:
            left = deadline - loop.time()
            if left <= 0:
                raise asyncio.TimeoutError()
            return left

        upstream = self.http.build_request(
            "POST",
            f"{self.base_url}/chat/stream",
            json=self._build_payload(request, stream=True),
            headers=self.headers(streaming=True),
        )
        response = await asyncio.wait_for(self.http.send(upstream, stream=True), timeout=remaining())
        try:
            await asyncio.wait_for(self.raise_for_status(response), timeout=remaining())
            frames = iter_sse_data(response)

            async def next_frame() -> Dict[str, Any]:
                return await frames.__anext__()

            while True:
                try:
                    frame = await asyncio.wait_for(next_frame(), timeout=remaining())
                except StopAsyncIteration:
                    break
                # The first frame may carry the structured payload for rich rendering.
                if frame.get("structured"):
                    acc.structured = frame["structured"]
                if frame.get("id"):
                    acc.response_id = frame["id"]
                if frame.get("delta"):
                    yield acc.text(frame["delta"])
                used = (frame.get("metadata") or {}).get("tokensUsed")
                if used is not None:
                    acc.set_usage(output_tokens=used)
        finally:
            await response.aclose()

    async def _complete(self, request: ChatCompletionRequest) -> ChatCompletionResponse:
        started = time.monotonic()
        timeout = self._settings.ondobot_timeout_seconds
        data = await asyncio.wait_for(
            self.post_json("/chat", self._build_payload(request, stream=False), timeout=timeout),
            timeout=timeout,
        )

        content = data.get("response") or ""
        return ChatCompletionResponse(
            id=data.get("id") or self.generate_id(),
            message=AssistantMessage(content=content),
            metadata=CompletionMetadata(
                model=request.model,
                provider=self.provider_name,
                processing_time_ms=int((time.monotonic() - started) * 1000),
                structured=data.get("structured"),
                response_id=data.get("id"),
            ),
            usage=self.build_usage(
                request.model, self.count_tokens(request.messages), self._output_tokens(data, content)
            ),
        )
