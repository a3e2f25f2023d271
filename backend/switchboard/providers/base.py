import secrets
import time
from abc import ABC, abstractmethod
from typing import AsyncIterator, List, Optional

from pydantic import BaseModel

from switchboard.core.config import Settings
from switchboard.core.exceptions import (
    ModelNotFoundError,
    ProviderNotConfiguredError,
    SwitchboardError,
    classify_provider_error,
)
from switchboard.core.logging import get_logger
from switchboard.core.tokens import estimate_tokens
from switchboard.models.chat import ChatCompletionRequest, ChatCompletionResponse, ChatMessage, TokenUsage
from switchboard.models.events import StreamEvent
from switchboard.providers.catalog import ModelCatalog, ModelConfig
from switchboard.streaming.accumulator import StreamAccumulator
from switchboard.streaming.encoder import create_error_event, create_start_event

logger = get_logger(__name__)


class ProviderStatus(BaseModel):
    provider: str
    is_configured: bool
    is_enabled: bool
    is_healthy: bool
    error_message: Optional[str] = None


class BaseProvider(ABC):
    """Abstract base class for all provider adapters.

    Subclasses translate requests and responses; the streaming contract
    (start first, exactly one terminal event, no exception past the stream
    boundary) lives here.
    """

    provider_name: str = ""

    def __init__(self, settings: Settings, catalog: ModelCatalog):
        self._settings = settings
        self._catalog = catalog

    # ── Configuration ──────────────────────────────────────────────────────

    def is_configured(self) -> bool:
        return self._settings.is_provider_configured(self.provider_name)

    def is_enabled(self) -> bool:
        return self._settings.is_provider_enabled(self.provider_name)

    @property
    def api_key(self) -> str:
        key = self._settings.api_key_for(self.provider_name)
        if not key:
            raise ProviderNotConfiguredError(self.provider_name)
        return key

    def get_models(self) -> List[ModelConfig]:
        return self._catalog.models_for(self.provider_name)

    def supports_model(self, model_id: str) -> bool:
        return self._catalog.provider_for(model_id) == self.provider_name

    def model_config(self, model_id: str) -> Optional[ModelConfig]:
        return self._catalog.get(model_id)

    def validate_request(self, request: ChatCompletionRequest) -> None:
        """Raise before any event is produced if this adapter cannot serve the request."""
        if not self.supports_model(request.model):
            raise ModelNotFoundError(request.model, self.provider_name)
        if not self.is_configured():
            raise ProviderNotConfiguredError(self.provider_name)

    # ── Public contract ────────────────────────────────────────────────────

    async def stream(self, request: ChatCompletionRequest) -> AsyncIterator[StreamEvent]:
        self.validate_request(request)
        acc = StreamAccumulator(request.model, self.provider_name)
        yield create_start_event(self.generate_id())
        try:
            async for event in self._stream_events(request, acc):
                yield event
        except Exception as e:
            error = classify_provider_error(e, self.provider_name)
            logger.warning(
                "provider_stream_failed",
                provider=self.provider_name,
                model=request.model,
                error_code=error.error_code,
                details=error.details,
            )
            yield create_error_event(error.message, error.error_code)
            return
        yield acc.done_event(self._final_usage(request, acc))

    async def complete(self, request: ChatCompletionRequest) -> ChatCompletionResponse:
        self.validate_request(request)
        try:
            return await self._complete(request)
        except SwitchboardError:
            raise
        except Exception as e:
            error = classify_provider_error(e, self.provider_name)
            logger.warning(
                "provider_completion_failed",
                provider=self.provider_name,
                model=request.model,
                error_code=error.error_code,
                details=error.details,
            )
            raise error from e

    async def get_status(self) -> ProviderStatus:
        if not self.is_configured():
            return ProviderStatus(
                provider=self.provider_name,
                is_configured=False,
                is_enabled=self.is_enabled(),
                is_healthy=False,
                error_message="API key not configured",
            )
        healthy = await self.health_check()
        return ProviderStatus(
            provider=self.provider_name,
            is_configured=True,
            is_enabled=self.is_enabled(),
            is_healthy=healthy,
            error_message=None if healthy else "Health check failed",
        )

    # ── Adapter hooks ──────────────────────────────────────────────────────

    @abstractmethod
    def _stream_events(
        self, request: ChatCompletionRequest, acc: StreamAccumulator
    ) -> AsyncIterator[StreamEvent]:
        """Yield delta events for one upstream stream, recording state on ``acc``.

        Raising is the failure path; the caller turns it into an error event.
        """
        ...

    @abstractmethod
    async def _complete(self, request: ChatCompletionRequest) -> ChatCompletionResponse:
        """Non-streaming chat completion."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Returns True if the provider is reachable."""
        ...

    async def aclose(self) -> None:
        """Release any client this adapter holds."""

    # ── Shared helpers ─────────────────────────────────────────────────────

    def generate_id(self) -> str:
        return f"{self.provider_name}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"

    def count_tokens(self, messages: List[ChatMessage]) -> int:
        return sum(estimate_tokens(m.text_content()) for m in messages)

    def calculate_cost(self, usage: TokenUsage, model_id: str) -> Optional[float]:
        model = self._catalog.get(model_id)
        if model is None or model.pricing is None:
            return None
        return (
            usage.input_tokens / 1_000_000 * model.pricing.input_per_1m
            + usage.output_tokens / 1_000_000 * model.pricing.output_per_1m
        )

    def build_usage(self, model_id: str, input_tokens: int, output_tokens: int) -> TokenUsage:
        usage = TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens)
        usage.estimated_cost = self.calculate_cost(usage, model_id)
        return usage

    def _final_usage(self, request: ChatCompletionRequest, acc: StreamAccumulator) -> TokenUsage:
        # Fall back to estimates when the upstream never reported usage.
        input_tokens = acc.input_tokens
        if input_tokens is None:
            input_tokens = self.count_tokens(request.messages)
        output_tokens = acc.output_tokens
        if output_tokens is None:
            output_tokens = estimate_tokens(acc.content)
        return self.build_usage(request.model, input_tokens, output_tokens)

    def system_prompt(self, request: ChatCompletionRequest) -> Optional[str]:
        parts = [request.options.system_prompt] if request.options.system_prompt else []
        parts.extend(m.text_content() for m in request.messages if m.role == "system" and m.text_content())
        return "\n\n".join(parts) or None

    @staticmethod
    def inline_files(message: ChatMessage) -> str:
        """Render ready file attachments as text; code files are fenced."""
        blocks = []
        for f in message.files or []:
            if not f.is_inlineable:
                continue
            if f.file_type == "code" and f.language:
                blocks.append(f"\n\n--- File: {f.name} ---\n```{f.language}\n{f.content}\n```")
            else:
                blocks.append(f"\n\n--- File: {f.name} ---\n{f.content}")
        return "\n".join(blocks)

    @staticmethod
    def image_placeholders(message: ChatMessage) -> str:
        """Text stand-in for images sent to a model without vision."""
        names = [img.name for img in message.images or []]
        names.extend("image" for _ in message.image_parts())
        return "".join(f"\n\n[Image attached: {name}]" for name in names)

    def flatten_text(self, message: ChatMessage, include_images: bool = True) -> str:
        text = message.text_content() + self.inline_files(message)
        if include_images:
            text += self.image_placeholders(message)
        return text
