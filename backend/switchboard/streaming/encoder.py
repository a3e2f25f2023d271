"""
Canonical stream event vocabulary and its SSE framing.

Every provider adapter speaks in these events; the HTTP layer frames them as
``data: <json>\\n\\n`` and closes with the ``[DONE]`` sentinel, which is a
transport marker and never a StreamEvent itself.
"""

import time
from typing import AsyncIterable, AsyncIterator, Any, Dict, List, Optional

import orjson
from pydantic import ValidationError as PydanticValidationError

from switchboard.core.exceptions import StreamingError, SwitchboardError
from switchboard.core.logging import get_logger
from switchboard.models.chat import Citation, CompletionMetadata, TokenUsage, ToolCall
from switchboard.models.events import StreamEvent, StreamEventData, StreamEventType, ToolCallDelta

logger = get_logger(__name__)

SSE_DATA_PREFIX = "data: "
SSE_DONE = "data: [DONE]\n\n"
DONE_SENTINEL = "[DONE]"


def _now_ms() -> int:
    return int(time.time() * 1000)


def create_start_event(id: str, routing: Optional[Dict[str, Any]] = None) -> StreamEvent:
    return StreamEvent(
        type=StreamEventType.START,
        data=StreamEventData(id=id, routing=routing),
        timestamp=_now_ms(),
    )


def create_delta_event(text: str) -> StreamEvent:
    return StreamEvent(type=StreamEventType.DELTA, data=StreamEventData(delta=text), timestamp=_now_ms())


def create_thinking_delta_event(text: str) -> StreamEvent:
    return StreamEvent(type=StreamEventType.DELTA, data=StreamEventData(thinking=text), timestamp=_now_ms())


def create_tool_call_delta_event(
    index: int,
    id: Optional[str] = None,
    name: Optional[str] = None,
    arguments: Optional[str] = None,
) -> StreamEvent:
    return StreamEvent(
        type=StreamEventType.DELTA,
        data=StreamEventData(
            tool_call_delta=ToolCallDelta(index=index, id=id, name=name, arguments=arguments)
        ),
        timestamp=_now_ms(),
    )


def create_done_event(
    content: Optional[str],
    usage: TokenUsage,
    metadata: CompletionMetadata,
    citations: Optional[List[Citation]] = None,
    tool_calls: Optional[List[ToolCall]] = None,
) -> StreamEvent:
    return StreamEvent(
        type=StreamEventType.DONE,
        data=StreamEventData(
            content=content,
            usage=usage,
            metadata=metadata,
            citations=citations or None,
            tool_calls=tool_calls or None,
        ),
        timestamp=_now_ms(),
    )


def create_tool_calls_done_event(
    content: Optional[str],
    tool_calls: List[ToolCall],
    usage: TokenUsage,
    metadata: CompletionMetadata,
) -> StreamEvent:
    """Terminal event for a round that ended by requesting tools."""
    return create_done_event(content or None, usage, metadata, tool_calls=tool_calls)


def create_error_event(message: str, code: Optional[str] = None) -> StreamEvent:
    return StreamEvent(
        type=StreamEventType.ERROR,
        data=StreamEventData(error=message, code=code),
        timestamp=_now_ms(),
    )


def encode_sse_event(event: StreamEvent) -> str:
    payload = orjson.dumps(event.model_dump(mode="json", exclude_none=True)).decode()
    return f"{SSE_DATA_PREFIX}{payload}\n\n"


def decode_sse_event(frame: str) -> Optional[StreamEvent]:
    """Inverse of ``encode_sse_event``.

    Returns None for the ``[DONE]`` sentinel and for frames that carry no data
    line (comments, keep-alives). Malformed payloads raise StreamingError.
    """
    data_lines = [
        line[len("data:"):].lstrip(" ")
        for line in frame.splitlines()
        if line.startswith("data:")
    ]
    if not data_lines:
        return None
    payload = "\n".join(data_lines)
    if payload.strip() == DONE_SENTINEL:
        return None
    try:
        return StreamEvent.model_validate(orjson.loads(payload))
    except (orjson.JSONDecodeError, PydanticValidationError) as e:
        raise StreamingError("Malformed stream event", {"frame": frame[:200], "reason": str(e)}) from e


async def decode_sse_stream(chunks: AsyncIterable[str]) -> AsyncIterator[StreamEvent]:
    """Reassemble events from an arbitrarily chunked SSE body."""
    buffer = ""
    async for chunk in chunks:
        buffer += chunk
        while "\n\n" in buffer:
            frame, buffer = buffer.split("\n\n", 1)
            event = decode_sse_event(frame)
            if event is not None:
                yield event
    if buffer.strip():
        event = decode_sse_event(buffer)
        if event is not None:
            yield event


async def sse_event_stream(events: AsyncIterable[StreamEvent]) -> AsyncIterator[str]:
    """Frame events for an HTTP response.

    An exception escaping ``events`` is turned into one terminal error event so
    the client always sees a closed logical stream.
    """
    try:
        async for event in events:
            yield encode_sse_event(event)
    except SwitchboardError as e:
        logger.warning("stream_failed", error_code=e.error_code, error=e.message)
        yield encode_sse_event(create_error_event(e.message, e.error_code))
    except Exception as e:
        logger.exception("stream_crashed", error=str(e))
        yield encode_sse_event(create_error_event("Internal streaming error", StreamingError.error_code))
    yield SSE_DONE
