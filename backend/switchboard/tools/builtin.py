import math
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from switchboard.models.tools import ToolResult
from switchboard.tools.base import ToolDefinition, create_tool
from switchboard.tools.registry import ToolRegistry

BINARY_OPERATIONS: Dict[str, Callable[[float, float], float]] = {
    "add": lambda a, b: a + b,
    "subtract": lambda a, b: a - b,
    "multiply": lambda a, b: a * b,
    "divide": lambda a, b: a / b,
    "power": lambda a, b: math.pow(a, b),
    "modulo": lambda a, b: math.fmod(a, b),
}

UNARY_OPERATIONS: Dict[str, Callable[[float], float]] = {
    "sqrt": math.sqrt,
    "log": math.log,
    "log10": math.log10,
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "abs": abs,
    "round": lambda a: math.floor(a + 0.5),
    "floor": math.floor,
    "ceil": math.ceil,
}

OPERATIONS = [*BINARY_OPERATIONS, *UNARY_OPERATIONS]


def _format_number(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


async def calculate(args: Dict[str, Any]) -> ToolResult:
    operation = args.get("operation")
    a = args.get("a")
    b = args.get("b")

    if operation not in OPERATIONS:
        return ToolResult(
            success=False,
            output="",
            error=f"Unknown operation: {operation}. Available: {', '.join(OPERATIONS)}",
        )
    if not isinstance(a, (int, float)) or isinstance(a, bool):
        return ToolResult(success=False, output="", error='Operation requires a numeric "a"')
    if operation in BINARY_OPERATIONS and (not isinstance(b, (int, float)) or isinstance(b, bool)):
        return ToolResult(
            success=False, output="", error=f'Operation "{operation}" requires two numbers (a and b)'
        )
    if operation in ("divide", "modulo") and b == 0:
        return ToolResult(success=False, output="", error="Cannot divide by zero")

    try:
        if operation in BINARY_OPERATIONS:
            result = BINARY_OPERATIONS[operation](a, b)
        else:
            result = UNARY_OPERATIONS[operation](a)
    except (ValueError, OverflowError) as e:
        return ToolResult(success=False, output="", error=f"Calculation failed: {e}")

    if not math.isfinite(result):
        return ToolResult(success=False, output="", error=f"Result is not a finite number: {result}")

    return ToolResult(
        success=True,
        output=_format_number(result),
        metadata={
            "operation": operation,
            "operands": [a, b] if operation in BINARY_OPERATIONS else [a],
            "result": result,
        },
    )


async def get_current_time(args: Dict[str, Any]) -> ToolResult:
    tz_name = args.get("timezone") or "UTC"
    fmt = args.get("format") or "readable"
    metadata: Dict[str, Any] = {"timezone": tz_name, "timestamp": int(time.time() * 1000)}

    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        tz = timezone.utc
        metadata["warning"] = f'Invalid timezone "{tz_name}", using UTC'

    now = datetime.now(tz)
    if fmt == "iso":
        output = now.isoformat()
    elif fmt == "unix":
        output = str(int(now.timestamp()))
    else:
        output = now.strftime("%A, %B %d, %Y at %I:%M:%S %p %Z")

    return ToolResult(success=True, output=output, metadata=metadata)


CALCULATE_TOOL = create_tool(
    "calculate",
    "Perform mathematical calculations. Supports basic arithmetic and common math functions.",
    {
        "type": "object",
        "properties": {
            "operation": {
                "type": "string",
                "enum": OPERATIONS,
                "description": "The mathematical operation to perform.",
            },
            "a": {"type": "number", "description": "First number (required for all operations)."},
            "b": {
                "type": "number",
                "description": "Second number (required for add, subtract, multiply, divide, power, modulo).",
            },
        },
        "required": ["operation", "a"],
    },
    calculate,
)

GET_CURRENT_TIME_TOOL = create_tool(
    "get_current_time",
    "Get the current date and time. Useful for time-sensitive queries.",
    {
        "type": "object",
        "properties": {
            "timezone": {
                "type": "string",
                "description": 'IANA timezone (e.g. "America/New_York"). Defaults to UTC.',
            },
            "format": {
                "type": "string",
                "enum": ["iso", "readable", "unix"],
                "description": 'Output format: "iso", "readable" or "unix".',
            },
        },
        "required": [],
    },
    get_current_time,
)

BUILTIN_TOOLS: list[ToolDefinition] = [CALCULATE_TOOL, GET_CURRENT_TIME_TOOL]


def register_builtin_tools(registry: ToolRegistry) -> ToolRegistry:
    for tool in BUILTIN_TOOLS:
        registry.register(tool)
    return registry
