"""Connectivity check tool."""

from datetime import UTC, datetime
from typing import Any

from pydantic import Field

from gateway_assistant.tools.registry import Tool, ToolArguments, ToolResult


class PingArgs(ToolArguments):
    message: str | None = Field(default=None, min_length=1, max_length=300)


class PingTool(Tool):
    """Echo a message back."""

    name = "ping"
    description = "Check that the tool gateway is alive; echoes the message back."
    args_model = PingArgs
    agent_visible = False
    timeout_seconds = 5.0

    async def execute(self, message: str | None = None, **kwargs: Any) -> ToolResult:
        echoed = (message or "").strip() or "pong"
        return ToolResult(
            content=f"pong: {echoed}",
            data={"echoed": echoed, "timestamp": datetime.now(UTC).isoformat()},
        )
