"""Client that runs each tool call in a fresh gateway worker process."""

import asyncio
import itertools
import json
import os
import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from gateway_assistant.config import Config, get_config
from gateway_assistant.exceptions import ErrorCode, GatewayError, GatewayTransportError
from gateway_assistant.logging import get_logger

log = get_logger(__name__)

WORKER_MODULE = "gateway_assistant.gateway"
# One response line holds the whole result, text and structured data both.
STREAM_LIMIT = 16 * 1024 * 1024


class GatewayClient:
    """Spawn-per-call client for the tool gateway.

    Every request starts a worker, sends one JSON line, reads one JSON line
    back and tears the worker down. The worker is killed on every exit
    path, including timeouts and task cancellation.
    """

    def __init__(
        self,
        config: Config | None = None,
        timeout: float | None = None,
        python_executable: str | None = None,
        cwd: str | None = None,
    ):
        self.config = config or get_config()
        self.timeout = timeout if timeout is not None else self.config.gateway.call_timeout_seconds
        self.python_executable = python_executable or self.config.gateway.python_executable or sys.executable
        self.cwd = cwd
        self._ids = itertools.count(1)

    def _worker_env(self) -> dict[str, str]:
        env = os.environ.copy()
        env["GATEWAY_HEALTH_PORT"] = "0"
        env.setdefault("PYTHONUNBUFFERED", "1")
        return env

    @asynccontextmanager
    async def _spawn(self) -> AsyncIterator[asyncio.subprocess.Process]:
        try:
            process = await asyncio.create_subprocess_exec(
                self.python_executable,
                "-m",
                WORKER_MODULE,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                cwd=self.cwd,
                env=self._worker_env(),
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise GatewayTransportError(
                ErrorCode.UPSTREAM_UNAVAILABLE,
                f"Failed to start tool gateway: {e}",
            )
        log.debug("Gateway worker spawned", pid=process.pid)
        try:
            yield process
        finally:
            if process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                log.debug("Gateway worker killed", pid=process.pid)
            await process.wait()

    async def request(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Send one request to a fresh worker and return its ``result`` object."""
        request_id = next(self._ids)
        payload: dict[str, Any] = {"id": request_id, "method": method}
        if params is not None:
            payload["params"] = params
        line = (json.dumps(payload, ensure_ascii=False) + "\n").encode("utf-8")

        async with self._spawn() as process:
            assert process.stdin is not None and process.stdout is not None

            async def exchange() -> bytes:
                process.stdin.write(line)
                await process.stdin.drain()
                return await process.stdout.readline()

            try:
                raw = await asyncio.wait_for(exchange(), timeout=self.timeout)
            except asyncio.TimeoutError:
                log.warning("Gateway call timed out", method=method, timeout=self.timeout)
                raise GatewayTransportError(
                    ErrorCode.UPSTREAM_UNAVAILABLE,
                    f"Tool gateway timed out after {self.timeout:g}s",
                    {"method": method},
                )
            except (BrokenPipeError, ConnectionResetError) as e:
                raise GatewayTransportError(
                    ErrorCode.UPSTREAM_UNAVAILABLE,
                    f"Tool gateway connection failed: {e}",
                )
            except (asyncio.LimitOverrunError, ValueError) as e:
                log.warning("Gateway response too large", method=method, limit=STREAM_LIMIT)
                raise GatewayTransportError(
                    ErrorCode.INTERNAL_ERROR,
                    f"Tool gateway response exceeded {STREAM_LIMIT} bytes",
                    {"method": method, "reason": str(e)},
                )
            finally:
                if not process.stdin.is_closing():
                    process.stdin.close()

        if not raw:
            raise GatewayTransportError(ErrorCode.UPSTREAM_UNAVAILABLE, "Tool gateway exited without a response")
        try:
            response = json.loads(raw.decode("utf-8"))
        except ValueError:
            raise GatewayTransportError(ErrorCode.INTERNAL_ERROR, "Tool gateway returned malformed output")
        result = response.get("result") if isinstance(response, dict) else None
        if not isinstance(result, dict):
            raise GatewayTransportError(ErrorCode.INTERNAL_ERROR, "Tool gateway response is missing a result")
        return result

    async def list_tools(self, agent_only: bool = False) -> list[dict[str, Any]]:
        """Discover capabilities; ``agent_only`` hides the ones the agent may not call."""
        result = await self.request("tools/list", {"agentOnly": True} if agent_only else None)
        if result.get("isError"):
            raise self._error_from_result(result)
        tools = result.get("tools")
        return tools if isinstance(tools, list) else []

    async def call_tool_raw(self, name: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
        """Return the full ``tools/call`` result, including its text content."""
        result = await self.request("tools/call", {"name": name, "arguments": arguments or {}})
        if result.get("isError"):
            raise self._error_from_result(result)
        return result

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
        """Invoke a capability and return its structured data.

        Raises:
            GatewayError with the worker's code, message and details
        """
        result = await self.call_tool_raw(name, arguments)
        data = result.get("structuredContent")
        if not isinstance(data, dict):
            raise GatewayError(ErrorCode.INTERNAL_ERROR, "Tool gateway response is missing structuredContent")
        return data

    @staticmethod
    def result_text(result: dict[str, Any]) -> str:
        for item in result.get("content") or []:
            if isinstance(item, dict) and item.get("type") == "text" and isinstance(item.get("text"), str):
                return item["text"]
        return ""

    @classmethod
    def _error_from_result(cls, result: dict[str, Any]) -> GatewayError:
        error = result.get("error")
        if isinstance(error, dict):
            return GatewayError(
                str(error.get("code") or ErrorCode.INTERNAL_ERROR),
                str(error.get("message") or "Tool call failed"),
                error.get("details") if isinstance(error.get("details"), dict) else None,
            )
        return GatewayError(ErrorCode.INTERNAL_ERROR, cls.result_text(result) or "Tool call failed")
