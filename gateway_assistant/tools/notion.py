"""Notion save and target-discovery tools (REST API over httpx)."""

from datetime import UTC, datetime
from typing import Any, Literal

import httpx
from pydantic import Field

from gateway_assistant.config import load_runtime_config, require_runtime_value
from gateway_assistant.exceptions import ErrorCode, GatewayError
from gateway_assistant.logging import get_logger
from gateway_assistant.tools.registry import Tool, ToolArguments, ToolResult

log = get_logger(__name__)

NOTION_API_URL = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"
RICH_TEXT_CHUNK = 1800
MAX_BLOCKS = 90
MAX_TITLE_CHARS = 100
DEFAULT_TITLE = "AI Answer"


def answer_to_markdown(title: str, answer: str, source_type: str, saved_at: datetime | None = None) -> str:
    """Render a saved answer as the markdown document stored in Notion."""
    stamp = (saved_at or datetime.now(UTC)).isoformat()
    return "\n".join(
        [
            f"# {title.strip() or DEFAULT_TITLE}",
            "",
            "## Content",
            answer.strip(),
            "",
            "## Metadata",
            f"- Source Type: {source_type}",
            f"- Saved At: {stamp}",
        ]
    )


def _rich_text(content: str) -> list[dict[str, Any]]:
    chunks = [content[i : i + RICH_TEXT_CHUNK] for i in range(0, len(content), RICH_TEXT_CHUNK)] or [""]
    return [{"type": "text", "text": {"content": chunk}} for chunk in chunks]


def _block(kind: str, content: str) -> dict[str, Any]:
    return {"object": "block", "type": kind, kind: {"rich_text": _rich_text(content)}}


def markdown_to_notion_blocks(markdown: str) -> list[dict[str, Any]]:
    """Map headings, bullets and paragraphs to Notion blocks (first 90 kept)."""
    blocks: list[dict[str, Any]] = []
    for raw_line in markdown.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if line.startswith("### "):
            blocks.append(_block("heading_3", line[4:]))
        elif line.startswith("## "):
            blocks.append(_block("heading_2", line[3:]))
        elif line.startswith("# "):
            blocks.append(_block("heading_1", line[2:]))
        elif line.startswith("- "):
            blocks.append(_block("bulleted_list_item", line[2:]))
        else:
            blocks.append(_block("paragraph", line))
    return blocks[:MAX_BLOCKS]


def page_url(page: dict[str, Any]) -> str:
    url = page.get("url")
    if isinstance(url, str) and url:
        return url
    return f"https://www.notion.so/{str(page.get('id', '')).replace('-', '')}"


def _normalize_title(value: Any) -> str:
    text = str(value or "").strip()
    return text or "Untitled"


def extract_page_title(page: dict[str, Any]) -> str:
    """Plain text of the first non-empty ``title`` property of a page object."""
    properties = page.get("properties")
    if not isinstance(properties, dict):
        return "Untitled"
    for value in properties.values():
        if not isinstance(value, dict) or value.get("type") != "title":
            continue
        parts = value.get("title")
        if not isinstance(parts, list):
            continue
        plain = "".join(
            str(item.get("plain_text") or "") for item in parts if isinstance(item, dict)
        ).strip()
        if plain:
            return plain
    return "Untitled"


class _NotionTool(Tool):
    """Shared Notion REST access."""

    agent_visible = False
    timeout_seconds = 45.0

    def __init__(self) -> None:
        self.client = httpx.AsyncClient(base_url=NOTION_API_URL, timeout=30.0)

    @staticmethod
    def _headers(api_key: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Notion-Version": NOTION_VERSION,
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, api_key: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self.client.request(method, path, headers=self._headers(api_key), **kwargs)
        except httpx.HTTPError as e:
            raise GatewayError(
                ErrorCode.UPSTREAM_NETWORK_ERROR,
                "Notion request failed",
                {"reason": str(e) or e.__class__.__name__},
            )
        if response.status_code < 200 or response.status_code >= 300:
            message = "Notion API returned an error"
            try:
                body = response.json()
                if isinstance(body, dict) and body.get("message"):
                    message = f"Notion API error: {body['message']}"
            except ValueError:
                pass
            raise GatewayError(ErrorCode.UPSTREAM_ERROR, message, {"status": response.status_code})
        payload = response.json()
        return payload if isinstance(payload, dict) else {}

    async def close(self) -> None:
        await self.client.aclose()


class SaveChatAnswerArgs(ToolArguments):
    title: str | None = Field(default=None, min_length=1, max_length=150)
    answer: str = Field(min_length=1)
    sourceType: Literal["chat_answer", "bookmark_article"] = "chat_answer"
    parentPageId: str | None = Field(default=None, min_length=1)


class SaveChatAnswerTool(_NotionTool):
    """Save an answer as a new Notion page."""

    name = "save_chat_answer"
    description = "Save a chat answer to Notion as a new page under the configured (or given) parent page."
    args_model = SaveChatAnswerArgs

    async def execute(
        self,
        answer: str,
        title: str | None = None,
        sourceType: str = "chat_answer",
        parentPageId: str | None = None,
        **kwargs: Any,
    ) -> ToolResult:
        runtime = load_runtime_config()
        api_key = require_runtime_value(runtime, "NOTION_API_KEY")
        default_parent = require_runtime_value(runtime, "NOTION_PARENT_PAGE_ID")
        parent_id = (parentPageId or "").strip() or default_parent

        page_title = (title or "").strip() or DEFAULT_TITLE
        markdown = answer_to_markdown(page_title, answer, sourceType)
        payload = {
            "parent": {"page_id": parent_id},
            "properties": {
                "title": {"title": [{"type": "text", "text": {"content": page_title[:MAX_TITLE_CHARS]}}]}
            },
            "children": markdown_to_notion_blocks(markdown),
        }

        page = await self._request("POST", "/pages", api_key, json=payload)
        url = page_url(page)
        log.info("Saved answer to Notion", page_id=page.get("id"), parent=parent_id)
        return ToolResult(
            content=f"Saved to Notion: {url}",
            data={
                "pageId": page.get("id", ""),
                "pageUrl": url,
                "parentPageId": parent_id,
                "markdown": markdown,
                "sourceType": sourceType,
            },
        )


class ListNotionTargetsArgs(ToolArguments):
    query: str | None = Field(default=None, max_length=100)


class ListNotionTargetsTool(_NotionTool):
    """List pages an answer may be saved under."""

    name = "list_notion_targets"
    description = "List the default Notion parent page and its child pages, optionally filtered by title."
    args_model = ListNotionTargetsArgs

    async def execute(self, query: str | None = None, **kwargs: Any) -> ToolResult:
        runtime = load_runtime_config()
        api_key = require_runtime_value(runtime, "NOTION_API_KEY")
        parent_id = require_runtime_value(runtime, "NOTION_PARENT_PAGE_ID")

        parent_page = await self._request("GET", f"/pages/{parent_id}", api_key)
        children = await self._request("GET", f"/blocks/{parent_id}/children", api_key, params={"page_size": 100})

        default_parent = {
            "id": parent_id,
            "title": _normalize_title(extract_page_title(parent_page)),
            "type": "default_parent",
            "isDefault": True,
        }
        child_pages = [
            {
                "id": block["id"],
                "title": _normalize_title((block.get("child_page") or {}).get("title")),
                "type": "child_page",
                "isDefault": False,
            }
            for block in children.get("results") or []
            if isinstance(block, dict) and block.get("type") == "child_page" and isinstance(block.get("id"), str)
        ]

        needle = (query or "").strip().lower()
        items = [
            item
            for item in [default_parent, *child_pages]
            if not needle or needle in item["title"].lower()
        ]
        return ToolResult(
            content=f"Found {len(items)} Notion target page(s)",
            data={"defaultParent": default_parent, "items": items},
        )
