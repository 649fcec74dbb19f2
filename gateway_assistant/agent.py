"""Agent decision loop for Gateway Assistant."""

import inspect
import json
import re
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Union

from gateway_assistant.config import Config, get_config
from gateway_assistant.exceptions import LLMError, normalize_error
from gateway_assistant.gateway import GatewayClient
from gateway_assistant.llm import LLMProvider, Message, create_provider
from gateway_assistant.logging import get_logger

log = get_logger(__name__)


_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*([\s\S]*?)\s*```$", re.IGNORECASE)


@dataclass
class FinalAction:
    """The model answered directly."""

    answer: str


@dataclass
class ToolCallAction:
    """The model asked for one capability call."""

    tool_name: str
    arguments: dict[str, Any]
    rationale: str | None = None


AgentAction = Union[FinalAction, ToolCallAction]


@dataclass
class ToolStartEvent:
    step: int
    tool_name: str
    args: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {"type": "tool_start", "step": self.step, "toolName": self.tool_name, "args": self.args}


@dataclass
class ToolResultEvent:
    step: int
    tool_name: str
    ok: bool
    duration_ms: int
    summary: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "tool_result",
            "step": self.step,
            "toolName": self.tool_name,
            "ok": self.ok,
            "durationMs": self.duration_ms,
            "summary": self.summary,
        }


ProgressEvent = Union[ToolStartEvent, ToolResultEvent]
ProgressCallback = Callable[[ProgressEvent], Union[None, Awaitable[None]]]


@dataclass
class _Citations:
    sources: list[dict[str, str]] = field(default_factory=list)
    providers: list[str] = field(default_factory=list)


def strip_code_fence(text: str) -> str:
    """Remove one surrounding ``` or ```json fence, if present."""
    trimmed = text.strip()
    if not trimmed.startswith("```"):
        return trimmed
    match = _CODE_FENCE_RE.match(trimmed)
    return match.group(1).strip() if match else trimmed


def parse_agent_action(raw: str, tool_names: set[str] | frozenset[str]) -> AgentAction | None:
    """Parse model output into an action.

    Returns None for anything that is not exactly one of the two accepted
    shapes, including tool calls naming an unknown capability.
    """
    try:
        parsed = json.loads(strip_code_fence(raw))
    except ValueError:
        return None
    if not isinstance(parsed, dict):
        return None

    kind = parsed.get("type")
    if kind == "final":
        answer = parsed.get("answer")
        if isinstance(answer, str) and answer.strip():
            return FinalAction(answer=answer.strip())
        return None

    if kind == "tool_call":
        name = parsed.get("toolName")
        arguments = parsed.get("arguments")
        if not isinstance(name, str) or name not in tool_names:
            return None
        if not isinstance(arguments, dict):
            return None
        rationale = parsed.get("rationale")
        return ToolCallAction(
            tool_name=name,
            arguments=arguments,
            rationale=rationale if isinstance(rationale, str) else None,
        )

    return None


def infer_forecast_days(text: str) -> int:
    lowered = (text or "").lower()
    if "day after tomorrow" in lowered:
        return 3
    if "tomorrow" in lowered:
        return 2
    return 1


def _describe_parameters(definition: dict[str, Any]) -> str:
    schema = definition.get("inputSchema") or {}
    properties = schema.get("properties") or {}
    required = set(schema.get("required") or [])
    if not properties:
        return "none"
    parts = []
    for name, prop in properties.items():
        kind = prop.get("type") if isinstance(prop, dict) else None
        if kind is None and isinstance(prop, dict):
            kinds = [item.get("type") for item in prop.get("anyOf", []) if item.get("type") != "null"]
            kind = "|".join(k for k in kinds if k) or "any"
        marker = "" if name in required else "?"
        parts.append(f"{name}{marker}: {kind}")
    return ", ".join(parts)


def build_system_prompt(now: datetime, definitions: list[dict[str, Any]]) -> str:
    """Build the fixed decision prompt listing every callable capability."""
    tool_lines = [
        f"{index}. {item['name']}: {item.get('description', '')} Parameters: {_describe_parameters(item)}"
        for index, item in enumerate(definitions, start=1)
    ]
    return "\n".join(
        [
            "You are a helpful assistant that can call tools.",
            f"Current date (UTC): {now.astimezone(UTC).strftime('%Y-%m-%d %H:%M')}.",
            "",
            "Available tools:",
            *tool_lines,
            "",
            "Decision rules:",
            "- Questions about real-time or external facts (weather, news, prices, recent events) need a tool.",
            "- Requests about local files or folders use the local file tools.",
            "- Word, Excel or PowerPoint files are read with read_office_file.",
            "- Questions about which paths are accessible use get_local_access_policy.",
            "- When a file name is known but its location is not, call find_local_files first.",
            "- Only move, rename, overwrite or delete files when the user explicitly asks for it.",
            "- Anything you can answer from general knowledge is answered directly.",
            "- You may call tools over several steps, but keep the number of steps small.",
            "",
            "Output format: reply with JSON only, in exactly one of these shapes:",
            '{"type":"final","answer":"<answer for the user>"}',
            '{"type":"tool_call","toolName":"<tool name>","arguments":{...},"rationale":"<optional short reason>"}',
            "Do not output anything other than the JSON object.",
        ]
    )


def append_sources(
    answer: str,
    sources: list[dict[str, str]],
    providers: list[str],
    max_citations: int = 8,
) -> str:
    """Append the provider line and a de-duplicated source list to an answer."""
    unique_providers = list(dict.fromkeys(p for p in providers if p))
    provider_line = f"Search providers: {', '.join(unique_providers)}" if unique_providers else ""

    seen: set[str] = set()
    lines: list[str] = []
    for source in sources:
        url = source.get("url", "")
        if not url or url in seen:
            continue
        seen.add(url)
        lines.append(f"{len(lines) + 1}. {source.get('title') or url} - {url}")
        if len(lines) >= max_citations:
            break

    if not lines:
        return f"{answer}\n\n{provider_line}" if provider_line else answer

    sections = [answer]
    if provider_line:
        sections.append(provider_line)
    sections.append("Sources:\n" + "\n".join(lines))
    return "\n\n".join(sections)


def chunk_text(text: str, size: int) -> list[str]:
    size = max(1, size)
    return [text[i:i + size] for i in range(0, len(text), size)]


def _to_messages(messages: list[Any]) -> list[Message]:
    result = []
    for item in messages:
        if isinstance(item, Message):
            result.append(item)
        elif isinstance(item, dict):
            result.append(Message(role=str(item.get("role", "user")), content=str(item.get("content", ""))))
    return result


class Agent:
    """Runs the decide-call-observe loop against the tool gateway."""

    def __init__(
        self,
        provider: LLMProvider | None = None,
        gateway: GatewayClient | None = None,
        config: Config | None = None,
        provider_factory: Callable[[], LLMProvider] | None = None,
    ):
        """Initialize the agent.

        Args:
            provider: Fixed LLM provider; it is not closed by the agent
            gateway: Gateway client used for discovery and capability calls
            config: Application config
            provider_factory: Builds a provider per request; defaults to
                reading the runtime settings fresh each time
        """
        self.config = config or get_config()
        self.gateway = gateway or GatewayClient(config=self.config)
        self.provider = provider
        self.provider_factory = provider_factory or (
            lambda: create_provider(temperature=self.config.agent.temperature)
        )

    @asynccontextmanager
    async def _provider_scope(self) -> AsyncIterator[LLMProvider]:
        if self.provider is not None:
            yield self.provider
            return
        provider = self.provider_factory()
        try:
            yield provider
        finally:
            await provider.close()

    @staticmethod
    async def _emit(on_progress: ProgressCallback | None, event: ProgressEvent) -> None:
        if on_progress is None:
            return
        outcome = on_progress(event)
        if inspect.isawaitable(outcome):
            await outcome

    async def _call_model(self, provider: LLMProvider, messages: list[Message]) -> str:
        response = await provider.complete(messages, temperature=self.config.agent.temperature)
        return response.content.strip()

    async def run(
        self,
        messages: list[Any],
        on_progress: ProgressCallback | None = None,
    ) -> str | None:
        """Run the tool loop and return the final answer.

        Returns None when the model produced empty text, so the caller can
        fall back to a plain completion.

        Raises:
            LLMError when the model call fails
        """
        settings = self.config.agent
        conversation = _to_messages(messages)
        latest_user_text = next((m.content for m in reversed(conversation) if m.role == "user"), "")
        citations = _Citations()

        definitions = await self.gateway.list_tools(agent_only=True)
        tool_names = frozenset(item["name"] for item in definitions if isinstance(item.get("name"), str))
        system = Message(role="system", content=build_system_prompt(datetime.now(UTC), definitions))

        async with self._provider_scope() as provider:
            for step in range(settings.max_tool_steps):
                text = await self._call_model(provider, [system, *conversation])
                if not text:
                    return None

                action = parse_agent_action(text, tool_names)
                log.debug(
                    "Agent step",
                    step=step,
                    parsed_type=type(action).__name__ if action else "invalid",
                    raw=text,
                )

                if action is None:
                    return text
                if isinstance(action, FinalAction):
                    return append_sources(action.answer, citations.sources, citations.providers, settings.max_citations)

                observation = await self._run_tool_call(step + 1, action, latest_user_text, citations, on_progress)
                conversation.append(Message(role="assistant", content=text))
                conversation.append(Message(role="user", content=observation))

            final_turn = Message(
                role="user",
                content="You have reached the maximum number of tool steps. Output the final JSON now.",
            )
            final_text = await self._call_model(provider, [system, *conversation, final_turn])

        final_action = parse_agent_action(final_text, tool_names)
        answer = final_action.answer if isinstance(final_action, FinalAction) else final_text
        return append_sources(answer, citations.sources, citations.providers, settings.max_citations)

    async def _run_tool_call(
        self,
        step: int,
        action: ToolCallAction,
        latest_user_text: str,
        citations: _Citations,
        on_progress: ProgressCallback | None,
    ) -> str:
        """Dispatch one capability call and return the follow-up user turn."""
        arguments = dict(action.arguments)
        if action.tool_name == "get_weather" and "days" not in arguments:
            arguments["days"] = infer_forecast_days(latest_user_text)

        started = time.monotonic()
        await self._emit(on_progress, ToolStartEvent(step=step, tool_name=action.tool_name, args=arguments))
        try:
            result = await self.gateway.call_tool_raw(action.tool_name, arguments)
            text = self.gateway.result_text(result)
            data = result.get("structuredContent")
        except Exception as e:
            error = normalize_error(e)
            duration_ms = int((time.monotonic() - started) * 1000)
            log.info("Agent tool call failed", tool=action.tool_name, code=error.code, error=error.message)
            await self._emit(
                on_progress,
                ToolResultEvent(
                    step=step, tool_name=action.tool_name, ok=False, duration_ms=duration_ms, summary=str(error)
                ),
            )
            return (
                f"Tool call failed: {error}. Adjust the arguments and retry, "
                "or return final and explain the limitation."
            )

        duration_ms = int((time.monotonic() - started) * 1000)
        data = data if isinstance(data, dict) else {}
        for source in data.get("sources") or []:
            if isinstance(source, dict) and source.get("url"):
                citations.sources.append({"title": str(source.get("title") or ""), "url": str(source["url"])})
        if isinstance(data.get("provider"), str) and action.tool_name == "web_search":
            citations.providers.append(data["provider"])

        await self._emit(
            on_progress,
            ToolResultEvent(
                step=step,
                tool_name=action.tool_name,
                ok=True,
                duration_ms=duration_ms,
                summary=text[: self.config.agent.summary_chars],
            ),
        )
        return "\n".join(
            [
                f"Tool result ({action.tool_name}):",
                text,
                "Decide based on this result: if the information is sufficient, return final; "
                "otherwise return the next tool_call.",
            ]
        )

    async def stream(
        self,
        messages: list[Any],
        on_progress: ProgressCallback | None = None,
    ) -> AsyncIterator[str]:
        """Yield the answer as text deltas."""
        answer = await self.run(messages, on_progress=on_progress)
        if answer and answer.strip():
            for chunk in chunk_text(answer, self.config.agent.stream_chunk_size):
                yield chunk
            return

        async with self._provider_scope() as provider:
            async for delta in provider.complete_streaming(
                _to_messages(messages), temperature=self.config.agent.temperature
            ):
                if delta:
                    yield delta

    async def complete(self, messages: list[Any]) -> str:
        """Return the full answer without streaming."""
        answer = await self.run(messages)
        if answer and answer.strip():
            return answer

        async with self._provider_scope() as provider:
            text = await self._call_model(provider, _to_messages(messages))
        if not text:
            raise LLMError("Model returned empty content")
        return text
