import json

import pytest
from aiohttp.test_utils import TestClient, TestServer

from gateway_assistant.config import Config
from gateway_assistant.gateway.server import GatewayWorker, create_health_app, resolve_health_port
from gateway_assistant.tools import PingTool, ToolRegistry, create_default_registry


@pytest.fixture
def worker():
    registry = ToolRegistry()
    registry.register(PingTool())
    return GatewayWorker(registry=registry, config=Config())


@pytest.mark.asyncio
async def test_tools_list_returns_definitions(worker):
    response = await worker.handle_line(json.dumps({"id": 1, "method": "tools/list"}))

    assert response["id"] == 1
    tools = response["result"]["tools"]
    assert [tool["name"] for tool in tools] == ["ping"]
    assert tools[0]["inputSchema"]["type"] == "object"


@pytest.mark.asyncio
async def test_tools_list_agent_only_hides_internal_tools():
    registry = create_default_registry()
    worker = GatewayWorker(registry=registry, config=Config())
    try:
        everything = await worker.handle_request({"id": 1, "method": "tools/list"})
        agent = await worker.handle_request({"id": 2, "method": "tools/list", "params": {"agentOnly": True}})
    finally:
        await worker.close()

    all_names = {tool["name"] for tool in everything["result"]["tools"]}
    agent_names = {tool["name"] for tool in agent["result"]["tools"]}
    assert {"ping", "save_chat_answer", "list_notion_targets"} <= all_names
    assert all_names - agent_names == {"ping", "save_chat_answer", "list_notion_targets"}


@pytest.mark.asyncio
async def test_tools_call_success(worker):
    response = await worker.handle_request(
        {"id": "a", "method": "tools/call", "params": {"name": "ping", "arguments": {"message": "hi"}}}
    )

    result = response["result"]
    assert response["id"] == "a"
    assert result["isError"] is False
    assert result["content"] == [{"type": "text", "text": "pong: hi"}]
    assert result["structuredContent"]["echoed"] == "hi"


@pytest.mark.asyncio
async def test_tools_call_failure_carries_typed_error(worker):
    response = await worker.handle_request(
        {"id": 2, "method": "tools/call", "params": {"name": "missing", "arguments": {}}}
    )

    result = response["result"]
    assert result["isError"] is True
    assert result["structuredContent"] == {}
    assert result["error"]["code"] == "TOOL_NOT_FOUND"
    assert result["content"][0]["text"] == "ERROR(TOOL_NOT_FOUND): Tool not found: missing"


@pytest.mark.asyncio
async def test_malformed_and_unknown_requests_are_bad_request(worker):
    malformed = await worker.handle_line("{not json")
    unknown = await worker.handle_request({"id": 3, "method": "resources/list"})
    no_name = await worker.handle_request({"id": 4, "method": "tools/call", "params": {}})

    assert malformed["id"] is None
    assert malformed["result"]["error"]["code"] == "BAD_REQUEST"
    assert unknown["id"] == 3
    assert unknown["result"]["error"]["message"] == "Unknown method: resources/list"
    assert no_name["result"]["error"]["code"] == "BAD_REQUEST"
    assert await worker.handle_line("   \n") is None


@pytest.mark.asyncio
async def test_serve_writes_one_line_per_request(worker):
    lines = iter(
        [
            json.dumps({"id": 1, "method": "tools/call", "params": {"name": "ping"}}) + "\n",
            "\n",
            json.dumps({"id": 2, "method": "tools/list"}) + "\n",
            "",
        ]
    )
    written: list[str] = []

    await worker.serve(read_line=lambda: next(lines), write=written.append)

    assert len(written) == 2
    assert [json.loads(line)["id"] for line in written] == [1, 2]
    assert json.loads(written[0])["result"]["content"][0]["text"] == "pong: pong"


@pytest.mark.asyncio
async def test_health_endpoint():
    config = Config()
    client = TestClient(TestServer(create_health_app(config)))
    await client.start_server()
    try:
        ok = await client.get("/health")
        missing = await client.get("/other")

        assert ok.status == 200
        assert await ok.json() == {"ok": True, "service": config.gateway.name, "version": config.gateway.version}
        assert missing.status == 404
    finally:
        await client.close()


def test_health_port_env_override(monkeypatch):
    config = Config()
    monkeypatch.setenv("GATEWAY_HEALTH_PORT", "0")
    assert resolve_health_port(config) == 0

    monkeypatch.setenv("GATEWAY_HEALTH_PORT", "bogus")
    assert resolve_health_port(config) == config.gateway.health_port
