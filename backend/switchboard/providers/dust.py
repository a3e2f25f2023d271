import time
from typing import Any, AsyncIterator, Dict

from switchboard.core.exceptions import ProviderError, ValidationError
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

DEFAULT_MODEL = "dust-assistant"


class DustProvider(HTTPProvider):
    """Workspace assistant platform. Each call posts only the newest user message."""

    provider_name = "dust"

    def _endpoint(self, model: str) -> str:
        # dust-assistant, or dust-{workspace}-{assistant} for a workspace-scoped agent
        if model != DEFAULT_MODEL:
            parts = model.split("-", 2)
            if len(parts) == 3:
                return f"{self.base_url}/w/{parts[1]}/assistant/conversations"
        return f"{self.base_url}/conversations"

    def _build_payload(self, request: ChatCompletionRequest, blocking: bool) -> Dict[str, Any]:
        latest = request.latest_user_message()
        text = latest.first_text_part() if latest is not None else ""
        if not text:
            raise ValidationError("No user message provided")

        payload: Dict[str, Any] = {"message": {"content": text}, "blocking": blocking}
        if request.model != DEFAULT_MODEL:
            parts = request.model.split("-", 2)
            if len(parts) == 3:
                payload["message"]["mentions"] = [{"configurationId": parts[2]}]
        return payload

    async def _stream_events(
        self, request: ChatCompletionRequest, acc: StreamAccumulator
    ) -> AsyncIterator[StreamEvent]:
        payload = self._build_payload(request, blocking=False)

        async with self.http.stream(
            "POST", self._endpoint(request.model), json=payload, headers=self.headers(streaming=True)
        ) as response:
            await self.raise_for_status(response)
            async for frame in iter_sse_data(response):
                frame_type = frame.get("type")
                if frame_type in ("error", "agent_error", "user_message_error"):
                    error = frame.get("error") or {}
                    message = error.get("message") if isinstance(error, dict) else str(error)
                    raise ProviderError(message or "Dust reported an error", self.provider_name)
                if frame_type == "assistant_message" and frame.get("content"):
                    yield acc.text(frame["content"])

        acc.set_usage(output_tokens=estimate_tokens(acc.content))

    async def _complete(self, request: ChatCompletionRequest) -> ChatCompletionResponse:
        started = time.monotonic()
        response = await self.http.post(
            self._endpoint(request.model),
            json=self._build_payload(request, blocking=True),
            headers=self.headers(),
        )
        await self.raise_for_status(response)
        conversation = response.json().get("conversation") or {}

        content = ""
        for message in reversed(conversation.get("messages") or []):
            if message.get("type") == "assistant":
                content = message.get("content") or ""
                break

        return ChatCompletionResponse(
            id=conversation.get("id") or self.generate_id(),
            message=AssistantMessage(content=content),
            metadata=CompletionMetadata(
                model=request.model,
                provider=self.provider_name,
                processing_time_ms=int((time.monotonic() - started) * 1000),
            ),
            usage=self.build_usage(
                request.model, self.count_tokens(request.messages), estimate_tokens(content)
            ),
        )
