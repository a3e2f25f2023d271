from datetime import datetime
from typing import Any, Dict, Optional

import orjson
from pydantic import BaseModel, Field


class ToolResult(BaseModel):
    success: bool
    output: Any = None
    error: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def as_message_content(self) -> str:
        """Text placed in the ``tool`` message the model sees next round."""
        if self.success:
            if isinstance(self.output, str):
                return self.output
            return orjson.dumps(self.output, default=str).decode()
        return self.error or "Tool execution failed"


class ToolExecutionRecord(BaseModel):
    id: str  # the ToolCall id
    tool_name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    result: ToolResult
    started_at: datetime
    completed_at: datetime
    duration_ms: int
