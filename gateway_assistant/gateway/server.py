"""Tool gateway worker: JSON-lines requests on stdin, responses on stdout."""

import asyncio
import json
import os
import sys
from typing import Any, Callable

from aiohttp import web

from gateway_assistant.config import Config, get_config
from gateway_assistant.exceptions import ErrorCode, GatewayError
from gateway_assistant.logging import get_logger
from gateway_assistant.tools import ToolRegistry, ToolResult, create_default_registry

log = get_logger(__name__)

HEALTH_PORT_ENV = "GATEWAY_HEALTH_PORT"


def _text_content(text: str) -> list[dict[str, str]]:
    return [{"type": "text", "text": text}]


def error_result(error: GatewayError) -> dict[str, Any]:
    """``tools/call`` result payload for a failed call."""
    return {
        "content": _text_content(str(error)),
        "structuredContent": {},
        "isError": True,
        "error": error.to_dict(),
    }


def call_result(result: ToolResult) -> dict[str, Any]:
    if not result.success:
        return error_result(result.to_error())
    return {
        "content": _text_content(result.content),
        "structuredContent": result.data,
        "isError": False,
    }


class GatewayWorker:
    """Dispatches protocol requests to a tool registry."""

    def __init__(self, registry: ToolRegistry | None = None, config: Config | None = None):
        self.config = config or get_config()
        self.registry = registry or create_default_registry()

    async def handle_request(self, request: Any) -> dict[str, Any]:
        request_id = request.get("id") if isinstance(request, dict) else None
        if not isinstance(request, dict):
            return {"id": None, "result": error_result(GatewayError(ErrorCode.BAD_REQUEST, "Request must be a JSON object"))}

        method = request.get("method")
        if method == "tools/list":
            params = request.get("params")
            agent_only = isinstance(params, dict) and bool(params.get("agentOnly"))
            return {"id": request_id, "result": {"tools": self.registry.get_definitions(agent_only=agent_only)}}

        if method == "tools/call":
            params = request.get("params")
            if not isinstance(params, dict) or not isinstance(params.get("name"), str):
                error = GatewayError(ErrorCode.BAD_REQUEST, "params.name is required")
                return {"id": request_id, "result": error_result(error)}
            result = await self.registry.execute(params["name"], params.get("arguments") or {})
            return {"id": request_id, "result": call_result(result)}

        error = GatewayError(ErrorCode.BAD_REQUEST, f"Unknown method: {method}")
        return {"id": request_id, "result": error_result(error)}

    async def handle_line(self, line: str) -> dict[str, Any] | None:
        """Parse one protocol line and build its response. Blank lines are ignored."""
        raw = line.strip()
        if not raw:
            return None
        try:
            request = json.loads(raw)
        except ValueError:
            error = GatewayError(ErrorCode.BAD_REQUEST, "Malformed JSON request")
            return {"id": None, "result": error_result(error)}
        return await self.handle_request(request)

    async def serve(
        self,
        read_line: Callable[[], str] | None = None,
        write: Callable[[str], None] | None = None,
    ) -> None:
        """Serve requests until end of input."""
        read_line = read_line or sys.stdin.readline

        def _write(text: str) -> None:
            sys.stdout.write(text)
            sys.stdout.flush()

        write = write or _write

        while True:
            line = await asyncio.to_thread(read_line)
            if not line:
                break
            response = await self.handle_line(line)
            if response is not None:
                write(json.dumps(response, ensure_ascii=False) + "\n")

    async def close(self) -> None:
        await self.registry.close()


def create_health_app(config: Config) -> web.Application:
    """Tiny app answering ``GET /health``; every other path is 404."""

    async def health(request: web.Request) -> web.Response:
        return web.json_response(
            {"ok": True, "service": config.gateway.name, "version": config.gateway.version}
        )

    app = web.Application()
    app.router.add_get("/health", health)
    return app


def resolve_health_port(config: Config) -> int:
    raw = os.environ.get(HEALTH_PORT_ENV, "").strip()
    if raw:
        try:
            return int(raw)
        except ValueError:
            log.warning("Invalid health port, using config", value=raw)
    return config.gateway.health_port


async def run_worker(config: Config | None = None) -> None:
    """Run the stdio worker, plus the health endpoint when its port is non-zero."""
    config = config or get_config()
    worker = GatewayWorker(config=config)

    runner: web.AppRunner | None = None
    port = resolve_health_port(config)
    if port > 0:
        runner = web.AppRunner(create_health_app(config))
        await runner.setup()
        try:
            await web.TCPSite(runner, "127.0.0.1", port).start()
            log.info("Health endpoint listening", port=port)
        except OSError as e:
            log.warning("Health endpoint unavailable", port=port, error=str(e))

    log.info("Gateway worker started", name=config.gateway.name, version=config.gateway.version)
    try:
        await worker.serve()
    finally:
        await worker.close()
        if runner is not None:
            await runner.cleanup()
