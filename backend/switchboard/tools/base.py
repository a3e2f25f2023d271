from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict

from switchboard.models.tools import ToolResult

ToolHandler = Callable[[Dict[str, Any]], Awaitable[ToolResult]]


@dataclass
class ToolDefinition:
    name: str
    description: str
    handler: ToolHandler
    parameters: Dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )

    def to_api_format(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


def create_tool(
    name: str, description: str, parameters: Dict[str, Any], handler: ToolHandler
) -> ToolDefinition:
    return ToolDefinition(name=name, description=description, parameters=parameters, handler=handler)
