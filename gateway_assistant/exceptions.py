"""Custom exceptions for Gateway Assistant."""

from typing import Any

from pydantic import ValidationError as PydanticValidationError


class ErrorCode:
    """Error codes carried by capability failures."""

    BAD_REQUEST = "BAD_REQUEST"
    MISSING_CONFIG = "MISSING_CONFIG"
    PATH_NOT_ALLOWED = "PATH_NOT_ALLOWED"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    CONFIRM_REQUIRED = "CONFIRM_REQUIRED"
    DELETE_DENIED = "DELETE_DENIED"
    UNSUPPORTED_CONTENT = "UNSUPPORTED_CONTENT"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    UPSTREAM_NETWORK_ERROR = "UPSTREAM_NETWORK_ERROR"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    TOOL_NOT_FOUND = "TOOL_NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AssistantError(Exception):
    """Base exception for Gateway Assistant."""

    pass


class ConfigurationError(AssistantError):
    """Configuration-related errors."""

    pass


class LLMError(AssistantError):
    """LLM-related errors."""

    pass


class LLMAPIError(LLMError):
    """LLM API errors (rate limit, auth, etc.)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class GatewayError(AssistantError):
    """Typed capability failure that crosses the worker boundary."""

    def __init__(
        self,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details

    def __str__(self) -> str:
        return f"ERROR({self.code}): {self.message}"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ToolNotFoundError(GatewayError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str):
        super().__init__(ErrorCode.TOOL_NOT_FOUND, f"Tool not found: {tool_name}")
        self.tool_name = tool_name


class GatewayTransportError(GatewayError):
    """Worker process could not be spawned, timed out, or broke the protocol."""

    pass


class SessionError(AssistantError):
    """Session-related errors."""

    pass


class SessionNotFoundError(SessionError):
    """Session not found."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


def _summarize_validation_error(error: PydanticValidationError) -> tuple[str, list[dict[str, Any]]]:
    """Flatten pydantic validation issues into a message and JSON-safe details."""
    issues: list[dict[str, Any]] = []
    parts: list[str] = []
    for item in error.errors(include_url=False, include_context=False, include_input=False):
        location = ".".join(str(piece) for piece in item.get("loc", ())) or "arguments"
        message = str(item.get("msg", "invalid value"))
        issues.append({"field": location, "message": message, "type": item.get("type", "")})
        parts.append(f"{location}: {message}")
    return "; ".join(parts) or "Invalid arguments", issues


def normalize_error(error: BaseException) -> GatewayError:
    """Classify any exception as a GatewayError with a stable code."""
    if isinstance(error, GatewayError):
        return error
    if isinstance(error, PydanticValidationError):
        message, issues = _summarize_validation_error(error)
        return GatewayError(ErrorCode.BAD_REQUEST, message, {"issues": issues})
    message = str(error).strip() or error.__class__.__name__ or "Unknown error"
    return GatewayError(ErrorCode.INTERNAL_ERROR, message)
