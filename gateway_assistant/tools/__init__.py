"""Tools package for Gateway Assistant."""

from gateway_assistant.tools.registry import (
    Tool,
    ToolArguments,
    ToolRegistry,
    ToolResult,
)
from gateway_assistant.tools.ping import PingTool
from gateway_assistant.tools.local_files import (
    AppendTextFileTool,
    CopyPathTool,
    CreateTextFileTool,
    DeletePathTool,
    FindLocalFilesTool,
    GetLocalAccessPolicyTool,
    ListLocalFilesTool,
    MovePathTool,
    ReadTextFileTool,
    RenamePathTool,
    WriteTextFileTool,
)
from gateway_assistant.tools.document_extract import ExtractPdfTextTool, ReadOfficeFileTool
from gateway_assistant.tools.weather import GetWeatherTool
from gateway_assistant.tools.web_search import WebSearchTool
from gateway_assistant.tools.notion import ListNotionTargetsTool, SaveChatAnswerTool


def create_default_registry() -> ToolRegistry:
    """Build a registry holding every capability, in listing order."""
    registry = ToolRegistry()
    for tool in (
        PingTool(),
        GetLocalAccessPolicyTool(),
        ListLocalFilesTool(),
        ReadTextFileTool(),
        ExtractPdfTextTool(),
        ReadOfficeFileTool(),
        CreateTextFileTool(),
        WriteTextFileTool(),
        AppendTextFileTool(),
        CopyPathTool(),
        MovePathTool(),
        RenamePathTool(),
        DeletePathTool(),
        FindLocalFilesTool(),
        GetWeatherTool(),
        WebSearchTool(),
        SaveChatAnswerTool(),
        ListNotionTargetsTool(),
    ):
        registry.register(tool)
    return registry


__all__ = [
    "Tool",
    "ToolArguments",
    "ToolRegistry",
    "ToolResult",
    "create_default_registry",
    "PingTool",
    "GetLocalAccessPolicyTool",
    "ListLocalFilesTool",
    "ReadTextFileTool",
    "ExtractPdfTextTool",
    "ReadOfficeFileTool",
    "CreateTextFileTool",
    "WriteTextFileTool",
    "AppendTextFileTool",
    "CopyPathTool",
    "MovePathTool",
    "RenamePathTool",
    "DeletePathTool",
    "FindLocalFilesTool",
    "GetWeatherTool",
    "WebSearchTool",
    "SaveChatAnswerTool",
    "ListNotionTargetsTool",
]
