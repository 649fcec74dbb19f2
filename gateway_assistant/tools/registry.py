"""Tool registry and base tool class."""

import asyncio
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from gateway_assistant.exceptions import (
    ErrorCode,
    GatewayError,
    ToolNotFoundError,
    normalize_error,
)
from gateway_assistant.logging import get_logger

log = get_logger(__name__)


class ToolArguments(BaseModel):
    """Base model for tool arguments. Unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid", populate_by_name=False)


class NoArguments(ToolArguments):
    """Arguments model for tools that take none."""

    pass


class ToolResult(BaseModel):
    """Result from tool execution.

    ``content`` is the short human-readable summary, ``data`` the structured
    payload. Failed results carry ``code`` and optional ``details``.
    """

    success: bool = True
    content: str = ""
    data: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    code: str | None = None
    details: dict[str, Any] | None = None

    @model_validator(mode="after")
    def _normalize_failure_error(self) -> "ToolResult":
        """Ensure failed results always provide an error message and code."""
        if not self.success:
            if not (self.error or "").strip():
                fallback = (self.content or "").strip()
                self.error = fallback or "Tool execution failed"
            if not (self.code or "").strip():
                self.code = ErrorCode.INTERNAL_ERROR
        return self

    @classmethod
    def from_error(cls, error: GatewayError) -> "ToolResult":
        return cls(
            success=False,
            content=str(error),
            error=error.message,
            code=error.code,
            details=error.details,
        )

    def to_error(self) -> GatewayError:
        """Rebuild the typed failure carried by this result."""
        return GatewayError(
            self.code or ErrorCode.INTERNAL_ERROR,
            self.error or "Tool execution failed",
            self.details,
        )


def _strip_titles(schema: Any) -> Any:
    """Drop pydantic's generated ``title`` keys to keep schemas compact."""
    if isinstance(schema, dict):
        return {
            key: _strip_titles(value)
            for key, value in schema.items()
            if key != "title" or not isinstance(value, str)
        }
    if isinstance(schema, list):
        return [_strip_titles(item) for item in schema]
    return schema


class Tool(ABC):
    """Base class for all tools."""

    name: str = ""
    description: str = ""
    args_model: type[ToolArguments] = NoArguments
    timeout_seconds: float = 30.0
    agent_visible: bool = True

    @property
    def parameters(self) -> dict[str, Any]:
        """JSON schema of the arguments, derived from ``args_model``."""
        schema = _strip_titles(self.args_model.model_json_schema(by_alias=True))
        schema.setdefault("properties", {})
        schema["additionalProperties"] = False
        return schema

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool.

        Args:
            **kwargs: Validated tool arguments

        Returns:
            ToolResult with summary and structured data

        Raises:
            GatewayError for typed failures
        """
        pass

    def get_definition(self) -> dict[str, Any]:
        """Get the tool definition as published by ``tools/list``."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.parameters,
        }

    def validate_arguments(self, arguments: dict[str, Any] | None) -> dict[str, Any]:
        """Validate arguments against the schema.

        Raises:
            GatewayError(BAD_REQUEST) when arguments do not match
        """
        if arguments is not None and not isinstance(arguments, dict):
            raise GatewayError(ErrorCode.BAD_REQUEST, "Arguments must be a JSON object")
        try:
            parsed = self.args_model.model_validate(arguments or {})
        except Exception as e:
            raise normalize_error(e) from e
        return parsed.model_dump()


class ToolRegistry:
    """Registry for managing available tools."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool.

        Args:
            tool: Tool instance to register
        """
        if not tool.name:
            raise ValueError("Tool must have a name")

        log.debug("Registering tool", tool=tool.name)
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def has_tool(self, name: str) -> bool:
        """Return whether a tool name is currently registered."""
        return name in self._tools

    def get(self, name: str) -> Tool:
        """Get a tool by name.

        Raises:
            ToolNotFoundError if not found
        """
        if name not in self._tools:
            raise ToolNotFoundError(name)
        return self._tools[name]

    def list_tools(self, agent_only: bool = False) -> list[str]:
        """List registered tool names in registration order."""
        return [
            tool.name
            for tool in self._tools.values()
            if tool.agent_visible or not agent_only
        ]

    def get_definitions(self, agent_only: bool = False) -> list[dict[str, Any]]:
        """Get tool definitions in registration order."""
        return [self._tools[name].get_definition() for name in self.list_tools(agent_only=agent_only)]

    async def close(self) -> None:
        """Close tools that hold network clients."""
        for tool in self._tools.values():
            closer = getattr(tool, "close", None)
            if closer is not None:
                await closer()

    async def execute(self, name: str, arguments: dict[str, Any] | None) -> ToolResult:
        """Look up, validate and run a tool.

        Never raises for tool-level failures: every exception is classified
        and returned as a failed ToolResult. Cancellation propagates.
        """
        try:
            tool = self.get(name)
            validated = tool.validate_arguments(arguments)
            log.info("Executing tool", tool=name, args=arguments)
            try:
                result = await asyncio.wait_for(tool.execute(**validated), timeout=tool.timeout_seconds)
            except asyncio.TimeoutError:
                raise GatewayError(
                    ErrorCode.INTERNAL_ERROR,
                    f"Execution timed out after {tool.timeout_seconds:g}s",
                    {"tool": name},
                )
            if not isinstance(result, ToolResult):
                raise GatewayError(ErrorCode.INTERNAL_ERROR, "Tool returned invalid result payload")
            log.info("Tool executed", tool=name, success=result.success)
            return result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            normalized = normalize_error(e)
            log.error(
                "Tool call failed",
                tool=name,
                code=normalized.code,
                message=normalized.message,
                details=normalized.details,
            )
            return ToolResult.from_error(normalized)
