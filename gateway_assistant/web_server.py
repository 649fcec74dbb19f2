"""Web server for Gateway Assistant: streaming chat plus the REST surface."""

import asyncio
import json
import re
import signal
import sys
from typing import Any, Literal

from aiohttp import web
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from gateway_assistant.agent import Agent, ProgressEvent
from gateway_assistant.config import Config, load_runtime_config, save_runtime_config, set_config
from gateway_assistant.exceptions import ErrorCode, GatewayError, SessionError, SessionNotFoundError
from gateway_assistant.gateway import GatewayClient
from gateway_assistant.logging import configure_logging, get_logger
from gateway_assistant.session import SessionStore, get_session_store
from gateway_assistant.tools.notion import DEFAULT_TITLE

log = get_logger(__name__)

SSE_HEADERS = {
    "Content-Type": "text/event-stream; charset=utf-8",
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
}

_SAVE_INTENT_RE = re.compile(r"\b(save|store|write|sync|put)\b", re.IGNORECASE)
_SAVE_NEGATION_RE = re.compile(
    r"\b(don'?t|do not|never|no need to|without)\b.{0,12}\b(save|store|write|sync|put)\b.{0,16}notion",
    re.IGNORECASE,
)
_TITLE_PATTERNS = (
    re.compile(r"(?:titled|named|called)\s*[\"'“`]?\s*([^\n\r,.?!:\"'”`]{1,80})", re.IGNORECASE),
    re.compile(r"title\s*(?:is|=|:)?\s*[\"'“`]?([^\n\r,.?!:\"'”`]{1,80})", re.IGNORECASE),
)


class ChatTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str = Field(min_length=1)


class ChatRequest(BaseModel):
    messages: list[ChatTurn] = Field(min_length=1)


class CreateSessionRequest(BaseModel):
    title: str | None = None


class RenameSessionRequest(BaseModel):
    title: str = Field(min_length=1)


class AppendMessageRequest(BaseModel):
    role: Literal["user", "assistant"]
    content: str = Field(min_length=1)


class NotionSaveRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=150)
    answer: str = Field(min_length=1)
    sourceType: Literal["chat_answer", "bookmark_article"] = "chat_answer"
    parentPageId: str | None = Field(default=None, min_length=1)


class SettingsRequest(BaseModel):
    """Settings form payload; keys match the runtime settings file."""

    model_config = ConfigDict(extra="ignore")

    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = ""
    OPENAI_MODEL: str = "gpt-4o-mini"
    NOTION_API_KEY: str = ""
    NOTION_PARENT_PAGE_ID: str = ""
    LOCAL_DB_PATH: str = ""
    SEARCH_PROVIDER: Literal[
        "auto", "duckduckgo", "bing", "serpapi_google", "serpapi_bing", "serpapi_baidu", "tavily"
    ] = "auto"
    SEARCH_TIMEOUT_MS: str = "8000"
    SEARCH_DEFAULT_MAX_RESULTS: str = "5"
    SERPAPI_API_KEY: str = ""
    TAVILY_API_KEY: str = ""
    LOCAL_FILE_ALLOWED_ROOTS: str = ""
    LOCAL_FILE_MAX_READ_CHARS: str = "12000"
    LOCAL_FILE_MAX_LIST_ENTRIES: str = "100"
    LOCAL_FILE_MAX_PDF_PAGES: str = "30"


def to_sse_event(event: dict[str, Any]) -> bytes:
    return f"data: {json.dumps(event, ensure_ascii=False)}\n\n".encode("utf-8")


def latest_user_message(messages: list[ChatTurn]) -> str:
    for item in reversed(messages):
        if item.role == "user":
            return item.content
    return ""


def should_autosave_to_notion(text: str) -> bool:
    """Whether a user message asks for the answer to be saved to Notion."""
    if "notion" not in text.lower():
        return False
    if not _SAVE_INTENT_RE.search(text):
        return False
    return not _SAVE_NEGATION_RE.search(text)


def parse_autosave_title(text: str) -> str | None:
    for pattern in _TITLE_PATTERNS:
        match = pattern.search(text)
        if match:
            title = match.group(1).strip().rstrip("\"'`”").strip()
            if title:
                return title
    return None


def _bad_request(message: str = "Invalid request") -> web.Response:
    return web.json_response({"error": message}, status=400)


def _gateway_error_response(error: GatewayError) -> web.Response:
    status = 400 if error.code == ErrorCode.BAD_REQUEST else 500
    return web.json_response({"error": error.message, "code": error.code}, status=status)


async def _read_json(request: web.Request, default: Any = None) -> Any:
    try:
        return await request.json()
    except ValueError:
        return default


class WebServer:
    """HTTP surface in front of the agent, session store and tool gateway."""

    def __init__(
        self,
        config: Config,
        agent: Agent | None = None,
        gateway: GatewayClient | None = None,
        store: SessionStore | None = None,
    ):
        self.config = config
        self.gateway = gateway or GatewayClient(config=config)
        self.agent = agent or Agent(gateway=self.gateway, config=config)
        self.store = store or get_session_store()

    # ── Chat ─────────────────────────────────────────────────────────

    async def chat_handler(self, request: web.Request) -> web.StreamResponse:
        """POST /api/chat: run the agent and stream Server-Sent Events."""
        body = await _read_json(request)
        try:
            chat = ChatRequest.model_validate(body)
        except ValidationError:
            return web.Response(
                status=400,
                body=to_sse_event({"type": "error", "message": "Invalid request"}),
                headers=SSE_HEADERS,
            )

        response = web.StreamResponse(headers=SSE_HEADERS)
        await response.prepare(request)

        async def send(event: dict[str, Any]) -> None:
            await response.write(to_sse_event(event))

        async def on_progress(event: ProgressEvent) -> None:
            await send(event.to_dict())

        latest = latest_user_message(chat.messages)
        autosave = should_autosave_to_notion(latest)
        title = parse_autosave_title(latest) if autosave else None
        messages = [turn.model_dump() for turn in chat.messages]

        try:
            full_answer = ""
            async for delta in self.agent.stream(messages, on_progress=on_progress):
                full_answer += delta
                await send({"type": "delta", "delta": delta})

            if autosave and full_answer.strip():
                await send(await self._autosave(full_answer.strip(), title))

            await send({"type": "done"})
        except (ConnectionResetError, asyncio.CancelledError):
            log.info("Chat client disconnected")
            raise
        except Exception as e:
            log.error("Chat request failed", error=str(e))
            await send({"type": "error", "message": str(e) or "Chat request failed"})

        await response.write_eof()
        return response

    async def _autosave(self, answer: str, title: str | None) -> dict[str, Any]:
        args: dict[str, Any] = {"answer": answer, "sourceType": "chat_answer"}
        if title:
            args["title"] = title
        try:
            result = await self.gateway.call_tool("save_chat_answer", args)
        except GatewayError as e:
            log.warning("Notion autosave failed", code=e.code, error=e.message)
            return {"type": "notion_save_error", "message": e.message}
        return {"type": "notion_saved", "pageUrl": result.get("pageUrl", ""), "title": title or DEFAULT_TITLE}

    # ── Sessions ─────────────────────────────────────────────────────

    async def list_sessions_api(self, request: web.Request) -> web.Response:
        sessions = await self.store.list_sessions()
        return web.json_response({"items": [item.to_dict() for item in sessions]})

    async def create_session_api(self, request: web.Request) -> web.Response:
        body = await _read_json(request, default={})
        try:
            payload = CreateSessionRequest.model_validate(body or {})
        except ValidationError:
            return _bad_request()
        created = await self.store.create_session(payload.title or "")
        return web.json_response({"item": created.to_dict()})

    async def rename_session_api(self, request: web.Request) -> web.Response:
        session_id = request.match_info["id"]
        body = await _read_json(request, default={})
        try:
            payload = RenameSessionRequest.model_validate(body or {})
        except ValidationError:
            return _bad_request()
        try:
            await self.store.rename_session(session_id, payload.title)
        except SessionNotFoundError as e:
            return web.json_response({"error": str(e)}, status=404)
        except SessionError as e:
            return _bad_request(str(e))
        return web.json_response({"ok": True})

    async def delete_session_api(self, request: web.Request) -> web.Response:
        await self.store.delete_session(request.match_info["id"])
        return web.json_response({"ok": True})

    async def list_messages_api(self, request: web.Request) -> web.Response:
        messages = await self.store.get_messages(request.match_info["id"])
        return web.json_response({"items": [item.to_dict() for item in messages]})

    async def append_message_api(self, request: web.Request) -> web.Response:
        body = await _read_json(request)
        try:
            payload = AppendMessageRequest.model_validate(body)
        except ValidationError:
            return _bad_request()
        try:
            created = await self.store.append_message(request.match_info["id"], payload.role, payload.content)
        except SessionNotFoundError as e:
            return web.json_response({"error": str(e)}, status=404)
        except SessionError as e:
            return _bad_request(str(e))
        return web.json_response({"item": created.to_dict()})

    # ── Settings and storage ─────────────────────────────────────────

    async def get_settings_api(self, request: web.Request) -> web.Response:
        return web.json_response({"config": load_runtime_config().to_file_dict()})

    async def save_settings_api(self, request: web.Request) -> web.Response:
        body = await _read_json(request)
        if not isinstance(body, dict):
            return _bad_request()
        try:
            payload = SettingsRequest.model_validate(body)
        except ValidationError:
            return _bad_request()
        path = save_runtime_config(payload.model_dump())
        log.info("Runtime settings saved", path=str(path))
        return web.json_response({"ok": True})

    async def storage_stats_api(self, request: web.Request) -> web.Response:
        return web.json_response({"stats": await self.store.storage_stats()})

    async def storage_clear_api(self, request: web.Request) -> web.Response:
        await self.store.clear_all()
        return web.json_response({"ok": True})

    # ── Notion and tools ─────────────────────────────────────────────

    async def notion_save_api(self, request: web.Request) -> web.Response:
        body = await _read_json(request)
        try:
            payload = NotionSaveRequest.model_validate(body)
        except ValidationError:
            return _bad_request()
        try:
            result = await self.gateway.call_tool("save_chat_answer", payload.model_dump(exclude_none=True))
        except GatewayError as e:
            return _gateway_error_response(e)
        return web.json_response(
            {
                key: result.get(key)
                for key in ("pageId", "pageUrl", "markdown", "parentPageId", "sourceType")
            }
        )

    async def notion_parents_api(self, request: web.Request) -> web.Response:
        query = request.query.get("q", "").strip()
        try:
            result = await self.gateway.call_tool("list_notion_targets", {"query": query} if query else {})
        except GatewayError as e:
            return _gateway_error_response(e)
        return web.json_response({"defaultParent": result.get("defaultParent"), "items": result.get("items", [])})

    async def list_tools_api(self, request: web.Request) -> web.Response:
        try:
            tools = await self.gateway.list_tools()
        except GatewayError as e:
            return _gateway_error_response(e)
        return web.json_response({"tools": tools})

    # ── App setup ────────────────────────────────────────────────────

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/api/chat", self.chat_handler)
        app.router.add_get("/api/sessions", self.list_sessions_api)
        app.router.add_post("/api/sessions", self.create_session_api)
        app.router.add_patch("/api/sessions/{id}", self.rename_session_api)
        app.router.add_delete("/api/sessions/{id}", self.delete_session_api)
        app.router.add_get("/api/sessions/{id}/messages", self.list_messages_api)
        app.router.add_post("/api/sessions/{id}/messages", self.append_message_api)
        app.router.add_get("/api/settings", self.get_settings_api)
        app.router.add_post("/api/settings", self.save_settings_api)
        app.router.add_get("/api/storage", self.storage_stats_api)
        app.router.add_post("/api/storage/clear", self.storage_clear_api)
        app.router.add_post("/api/notion/save", self.notion_save_api)
        app.router.add_get("/api/notion/parents", self.notion_parents_api)
        app.router.add_get("/api/tools", self.list_tools_api)
        app.on_cleanup.append(self._on_cleanup)
        return app

    def create_runner(self) -> web.AppRunner:
        """Runner that cancels a handler when its client disconnects.

        Cancellation reaches the agent and the gateway client, which kills
        the in-flight worker.
        """
        return web.AppRunner(self.create_app(), handler_cancellation=True)

    async def _on_cleanup(self, app: web.Application) -> None:
        await self.store.close()


async def _run_server(config: Config, host: str | None = None, port: int | None = None) -> None:
    """Start the web server and wait for a stop signal."""
    server = WebServer(config)
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, OSError):
            # Windows doesn't support add_signal_handler
            pass

    runner = server.create_runner()
    await runner.setup()

    host = host or config.web.host
    port = port or config.web.port
    site = web.TCPSite(runner, host, port)
    await site.start()

    print(f"\n  Gateway Assistant running at http://{host}:{port}")
    print("  Press Ctrl+C to stop.\n")
    log.info("Web server started", host=host, port=port)

    try:
        await stop_event.wait()
    finally:
        print("\nShutting down...")
        await runner.cleanup()


def run_web_server(config: Config, host: str | None = None, port: int | None = None) -> None:
    """Entry point for running the web server."""
    try:
        asyncio.run(_run_server(config, host=host, port=port))
    except KeyboardInterrupt:
        pass


def main() -> None:
    """Standalone entry point for the web server."""
    cfg = Config.load()
    set_config(cfg)
    configure_logging()

    try:
        run_web_server(cfg)
    except Exception as e:
        print(f"Fatal error: {e}")
        sys.exit(1)
