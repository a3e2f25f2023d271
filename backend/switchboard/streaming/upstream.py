from typing import Any, AsyncIterator, Dict

import httpx
import orjson

from switchboard.core.exceptions import StreamingError


async def iter_sse_data(response: httpx.Response) -> AsyncIterator[Dict[str, Any]]:
    """Yield the JSON payload of every ``data:`` line of an SSE body."""
    async for line in response.aiter_lines():
        line = line.strip()
        if not line or not line.startswith("data:"):
            continue
        data = line[len("data:"):].strip()
        if data == "[DONE]":
            return
        try:
            yield orjson.loads(data)
        except orjson.JSONDecodeError as e:
            raise StreamingError("Malformed frame from upstream", {"frame": data[:200]}) from e


async def iter_ndjson(response: httpx.Response) -> AsyncIterator[Dict[str, Any]]:
    """Yield one object per line of a newline-delimited JSON body.

    Lines carrying an SSE ``data:`` prefix are accepted as well.
    """
    async for line in response.aiter_lines():
        line = line.strip()
        if not line:
            continue
        if line.startswith("data:"):
            line = line[len("data:"):].strip()
        if line == "[DONE]":
            return
        try:
            yield orjson.loads(line)
        except orjson.JSONDecodeError as e:
            raise StreamingError("Malformed frame from upstream", {"frame": line[:200]}) from e
