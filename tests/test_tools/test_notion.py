from datetime import UTC, datetime

import httpx
import pytest

from gateway_assistant.exceptions import ErrorCode
from gateway_assistant.tools.notion import (
    ListNotionTargetsTool,
    SaveChatAnswerTool,
    answer_to_markdown,
    extract_page_title,
    markdown_to_notion_blocks,
    page_url,
)
from gateway_assistant.tools.registry import ToolRegistry


class _FakeClient:
    def __init__(self, routes: dict[tuple[str, str], httpx.Response]):
        self._routes = routes
        self.calls: list[dict] = []

    async def request(self, method: str, path: str, **kwargs):
        self.calls.append({"method": method, "path": path, **kwargs})
        return self._routes[(method, path)]

    async def aclose(self) -> None:
        pass


def _json(status: int, payload: dict) -> httpx.Response:
    return httpx.Response(status, json=payload, request=httpx.Request("GET", "https://api.notion.com/v1"))


@pytest.fixture
def notion_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("NOTION_API_KEY", "secret_abc")
    monkeypatch.setenv("NOTION_PARENT_PAGE_ID", "parent-1")


def test_answer_markdown_layout():
    markdown = answer_to_markdown("Trip", "Pack light.", "chat_answer", datetime(2024, 5, 1, tzinfo=UTC))

    assert markdown.splitlines() == [
        "# Trip",
        "",
        "## Content",
        "Pack light.",
        "",
        "## Metadata",
        "- Source Type: chat_answer",
        "- Saved At: 2024-05-01T00:00:00+00:00",
    ]


def test_blocks_map_headings_bullets_and_chunk_long_text():
    blocks = markdown_to_notion_blocks("# H1\n## H2\n### H3\n- item\n\n" + "x" * 4000)

    assert [block["type"] for block in blocks] == [
        "heading_1",
        "heading_2",
        "heading_3",
        "bulleted_list_item",
        "paragraph",
    ]
    chunks = blocks[-1]["paragraph"]["rich_text"]
    assert [len(chunk["text"]["content"]) for chunk in chunks] == [1800, 1800, 400]


def test_blocks_are_capped():
    blocks = markdown_to_notion_blocks("\n".join(f"line {i}" for i in range(200)))
    assert len(blocks) == 90


def test_page_url_falls_back_to_id():
    assert page_url({"id": "ab-cd-ef"}) == "https://www.notion.so/abcdef"
    assert page_url({"id": "x", "url": "https://notion.so/x"}) == "https://notion.so/x"


def test_extract_page_title_reads_title_property():
    page = {"properties": {"Name": {"type": "title", "title": [{"plain_text": "Inbox"}]}}}
    assert extract_page_title(page) == "Inbox"
    assert extract_page_title({}) == "Untitled"


@pytest.mark.asyncio
async def test_save_requires_api_key(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("NOTION_API_KEY", raising=False)
    tool = SaveChatAnswerTool()
    tool.client = _FakeClient({})
    registry = ToolRegistry()
    registry.register(tool)

    result = await registry.execute("save_chat_answer", {"answer": "hello"})

    assert result.code == ErrorCode.MISSING_CONFIG
    assert result.error == "Missing configuration: NOTION_API_KEY"


@pytest.mark.asyncio
async def test_save_creates_page_under_default_parent(notion_env):
    tool = SaveChatAnswerTool()
    tool.client = _FakeClient({("POST", "/pages"): _json(200, {"id": "1234-5678"})})
    registry = ToolRegistry()
    registry.register(tool)

    result = await registry.execute("save_chat_answer", {"answer": "The answer", "title": "My note"})

    assert result.success is True
    assert result.data["pageId"] == "1234-5678"
    assert result.data["pageUrl"] == "https://www.notion.so/12345678"
    assert result.data["parentPageId"] == "parent-1"
    assert result.data["sourceType"] == "chat_answer"
    call = tool.client.calls[0]
    assert call["headers"]["Authorization"] == "Bearer secret_abc"
    assert call["json"]["parent"] == {"page_id": "parent-1"}
    assert call["json"]["properties"]["title"]["title"][0]["text"]["content"] == "My note"


@pytest.mark.asyncio
async def test_save_surfaces_notion_error_message(notion_env):
    tool = SaveChatAnswerTool()
    tool.client = _FakeClient({("POST", "/pages"): _json(400, {"message": "parent not shared"})})
    registry = ToolRegistry()
    registry.register(tool)

    result = await registry.execute("save_chat_answer", {"answer": "x", "parentPageId": "other"})

    assert result.code == ErrorCode.UPSTREAM_ERROR
    assert result.error == "Notion API error: parent not shared"
    assert result.details == {"status": 400}


@pytest.mark.asyncio
async def test_list_targets_filters_by_query(notion_env):
    tool = ListNotionTargetsTool()
    tool.client = _FakeClient(
        {
            ("GET", "/pages/parent-1"): _json(
                200, {"properties": {"title": {"type": "title", "title": [{"plain_text": "Knowledge"}]}}}
            ),
            ("GET", "/blocks/parent-1/children"): _json(
                200,
                {
                    "results": [
                        {"id": "c1", "type": "child_page", "child_page": {"title": "Travel notes"}},
                        {"id": "c2", "type": "paragraph"},
                        {"id": "c3", "type": "child_page", "child_page": {"title": "Recipes"}},
                    ]
                },
            ),
        }
    )

    everything = await tool.execute()
    filtered = await tool.execute(query="TRAVEL")

    assert [item["id"] for item in everything.data["items"]] == ["parent-1", "c1", "c3"]
    assert everything.data["defaultParent"]["title"] == "Knowledge"
    assert everything.data["items"][0]["isDefault"] is True
    assert [item["title"] for item in filtered.data["items"]] == ["Travel notes"]
