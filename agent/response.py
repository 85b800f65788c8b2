"""ToolCall, ToolResult and ProviderResponse dataclasses."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any


def new_tool_call_id() -> str:
    """Synthesize an id for a tool call the model did not label."""
    return f"tool_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class ToolCall:
    """A single tool invocation requested by the model."""
    id: str
    name: str
    arguments: dict = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResult:
    """Outcome of executing a ToolCall. Exactly one of result/error is set."""
    tool_use_id: str
    success: bool
    result: Any = None
    error: str | None = None

    def __post_init__(self):
        if self.success and self.error is not None:
            raise ValueError("successful ToolResult cannot carry an error")
        if not self.success and not self.error:
            raise ValueError("failed ToolResult requires an error message")

    @classmethod
    def ok(cls, tool_use_id: str, result: Any) -> "ToolResult":
        return cls(tool_use_id=tool_use_id, success=True, result=result)

    @classmethod
    def fail(cls, tool_use_id: str, error: str) -> "ToolResult":
        return cls(tool_use_id=tool_use_id, success=False, error=error or "Unknown error")

    def payload(self) -> Any:
        """The value fed back to the model: the result or an error marker."""
        if self.success:
            return self.result
        return {"error": self.error}


@dataclass(frozen=True)
class ProviderResponse:
    """Response from a native tool-calling generation."""
    content: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    stop_reason: str = "end_turn"
    raw: Any = None

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0
