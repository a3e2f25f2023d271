from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from switchboard.core.config import Settings
from switchboard.core.logging import get_logger
from switchboard.models.chat import ChatCompletionRequest, ChatMessage, ToolSpec
from switchboard.models.events import StreamEvent, StreamEventType
from switchboard.models.routing import ClassificationConfig, ClassificationResult, RouteResult
from switchboard.orchestration.tool_loop import ToolLoop
from switchboard.providers.registry import ProviderRegistry
from switchboard.routing.classifier import adjust_for_multimodal, classify
from switchboard.routing.router import route_request, routing_payload
from switchboard.streaming.encoder import sse_event_stream
from switchboard.streaming.lifecycle import checked
from switchboard.tools.registry import ToolRegistry

logger = get_logger(__name__)
router = APIRouter()

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"}


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_provider_registry(request: Request) -> ProviderRegistry:
    return request.app.state.provider_registry


def get_tool_registry(request: Request) -> ToolRegistry:
    return request.app.state.tool_registry


def get_tool_loop(request: Request) -> ToolLoop:
    return request.app.state.tool_loop


class ClassifyRequest(BaseModel):
    messages: List[ChatMessage] = Field(default_factory=list)
    config: Optional[ClassificationConfig] = None


def _routing_headers(route: RouteResult, request: Request) -> Dict[str, str]:
    headers = {"X-Routing-Model": route.model}
    if route.provider:
        headers["X-Routing-Provider"] = route.provider
    if route.classification is not None:
        headers["X-Intent"] = route.classification.intent.value
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        headers["X-Request-Id"] = request_id
    return headers


async def _attach_routing(
    events: AsyncIterator[StreamEvent], routing: Dict[str, Any]
) -> AsyncIterator[StreamEvent]:
    async for event in events:
        if event.type == StreamEventType.START:
            event.data.routing = routing
        yield event


def _routed_request(
    body: ChatCompletionRequest, settings: Settings, registry: ProviderRegistry
) -> tuple[ChatCompletionRequest, RouteResult]:
    route = route_request(body, settings, registry.catalog)
    routed = body.with_target(route.model, route.provider)
    # Fail with a proper HTTP status before any stream is opened.
    registry.resolve(routed.model, routed.provider).validate_request(routed)
    return routed, route


@router.post("/chat")
async def chat(
    body: ChatCompletionRequest,
    request: Request,
    settings: Settings = Depends(get_settings_dep),
    registry: ProviderRegistry = Depends(get_provider_registry),
):
    """One provider round, streamed as SSE or returned as a single response."""
    routed, route = _routed_request(body, settings, registry)
    provider = registry.resolve(routed.model, routed.provider)
    headers = _routing_headers(route, request)

    if routed.options.stream:
        events = checked(_attach_routing(provider.stream(routed), routing_payload(route)))
        return StreamingResponse(
            sse_event_stream(events),
            media_type="text/event-stream",
            headers={**SSE_HEADERS, **headers},
        )

    response = await provider.complete(routed)
    content = response.model_dump(mode="json", exclude_none=True)
    content["routing"] = routing_payload(route)
    return JSONResponse(content=content, headers=headers)


@router.post("/chat/turn")
async def chat_turn(
    body: ChatCompletionRequest,
    request: Request,
    settings: Settings = Depends(get_settings_dep),
    registry: ProviderRegistry = Depends(get_provider_registry),
    tools: ToolRegistry = Depends(get_tool_registry),
    loop: ToolLoop = Depends(get_tool_loop),
):
    """A full user turn, including any tool-call rounds."""
    routed, route = _routed_request(body, settings, registry)

    model = registry.catalog.get(routed.model)
    if routed.options.tools is None and len(tools) and model is not None and model.capabilities.function_calling:
        options = routed.options.model_copy(
            update={"tools": [ToolSpec.model_validate(t) for t in tools.to_api_format()]}
        )
        routed = routed.model_copy(update={"options": options})

    headers = _routing_headers(route, request)
    if routed.options.stream:
        return StreamingResponse(
            sse_event_stream(loop.stream_turn(routed, routing=routing_payload(route))),
            media_type="text/event-stream",
            headers={**SSE_HEADERS, **headers},
        )

    result = await loop.run_turn(routed)
    content = result.model_dump(mode="json", exclude_none=True)
    content["routing"] = routing_payload(route)
    return JSONResponse(content=content, headers=headers)


@router.post("/classify", response_model=ClassificationResult)
async def classify_messages(
    body: ClassifyRequest,
    settings: Settings = Depends(get_settings_dep),
    registry: ProviderRegistry = Depends(get_provider_registry),
):
    config = body.config or ClassificationConfig(
        mode=settings.routing_mode,
        confidence_threshold=settings.routing_confidence_threshold,
    )
    result = classify(body.messages, config, registry.catalog)
    return adjust_for_multimodal(result, body.messages, registry.catalog)
