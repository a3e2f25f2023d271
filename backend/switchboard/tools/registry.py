import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import orjson

from switchboard.core.logging import get_logger
from switchboard.models.chat import ToolCall
from switchboard.models.tools import ToolExecutionRecord, ToolResult
from switchboard.tools.base import ToolDefinition

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 1


@dataclass
class ParsedToolCall:
    id: str
    name: str
    arguments: Dict[str, Any]


class ToolRegistry:
    """Named tools the orchestration loop may execute.

    Execution never raises: unknown or disabled tools, timeouts and handler
    exceptions all come back as a failed ToolResult.
    """

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_seconds: float = 1.0,
    ):
        self._tools: Dict[str, ToolDefinition] = {}
        self._enabled: set[str] = set()
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds

    def register(self, tool: ToolDefinition) -> None:
        if tool.name in self._tools:
            logger.warning("tool_overwritten", tool=tool.name)
        self._tools[tool.name] = tool
        self._enabled.add(tool.name)

    def unregister(self, name: str) -> bool:
        self._enabled.discard(name)
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def set_enabled(self, name: str, enabled: bool) -> None:
        if name not in self._tools:
            raise KeyError(name)
        if enabled:
            self._enabled.add(name)
        else:
            self._enabled.discard(name)

    def is_enabled(self, name: str) -> bool:
        return name in self._enabled

    def list_tools(self, enabled_only: bool = True) -> List[ToolDefinition]:
        tools = [t for t in self._tools.values() if t.name in self._enabled or not enabled_only]
        return sorted(tools, key=lambda t: t.name)

    def to_api_format(self, names: Optional[Sequence[str]] = None) -> List[Dict[str, Any]]:
        if names is None:
            tools = self.list_tools()
        else:
            tools = [self._tools[n] for n in names if n in self._tools]
        return [t.to_api_format() for t in tools]

    def __len__(self) -> int:
        return len(self._tools)

    @staticmethod
    def parse_tool_call(tool_call: ToolCall) -> ParsedToolCall:
        # Model output is occasionally not valid JSON; the tool gets {} and can fail on its own terms.
        try:
            args = orjson.loads(tool_call.function.arguments or "{}")
        except orjson.JSONDecodeError:
            logger.warning(
                "tool_arguments_invalid",
                tool=tool_call.function.name,
                arguments=tool_call.function.arguments[:200],
            )
            args = {}
        if not isinstance(args, dict):
            args = {}
        return ParsedToolCall(id=tool_call.id, name=tool_call.function.name, arguments=args)

    async def execute_tool(
        self,
        name: str,
        args: Dict[str, Any],
        timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
    ) -> ToolResult:
        tool = self._tools.get(name)
        if tool is None:
            return ToolResult(success=False, output="", error=f'Tool "{name}" not found')
        if name not in self._enabled:
            return ToolResult(success=False, output="", error=f'Tool "{name}" is disabled')

        timeout = timeout_seconds if timeout_seconds is not None else self.timeout_seconds
        retries = max_retries if max_retries is not None else self.max_retries

        last_error = "Unknown error"
        for attempt in range(retries + 1):
            try:
                result = await asyncio.wait_for(tool.handler(args), timeout=timeout)
                if not isinstance(result, ToolResult):
                    result = ToolResult(success=True, output=result)
                return result
            except asyncio.TimeoutError:
                last_error = "Tool execution timeout"
            except Exception as e:
                last_error = str(e) or type(e).__name__
            logger.warning("tool_attempt_failed", tool=name, attempt=attempt + 1, error=last_error)
            if attempt < retries:
                await asyncio.sleep(self.retry_delay_seconds * (attempt + 1))

        return ToolResult(success=False, output="", error=last_error)

    async def _execute_one(self, call: ParsedToolCall) -> ToolExecutionRecord:
        started = datetime.now(timezone.utc)
        result = await self.execute_tool(call.name, call.arguments)
        completed = datetime.now(timezone.utc)
        return ToolExecutionRecord(
            id=call.id,
            tool_name=call.name,
            arguments=call.arguments,
            result=result,
            started_at=started,
            completed_at=completed,
            duration_ms=int((completed - started).total_seconds() * 1000),
        )

    async def execute_tool_calls(
        self, tool_calls: Sequence[ToolCall], parallel: bool = True
    ) -> List[ToolExecutionRecord]:
        """Execute a batch; the result list follows the input order."""
        parsed = [self.parse_tool_call(tc) for tc in tool_calls]
        if parallel:
            return list(await asyncio.gather(*[self._execute_one(c) for c in parsed]))
        return [await self._execute_one(c) for c in parsed]
