"""OpenAI-compatible provider - direct HTTP calls to a chat completions API."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import httpx

from gateway_assistant.config import RuntimeConfig, load_runtime_config
from gateway_assistant.exceptions import ConfigurationError, LLMAPIError, LLMError
from gateway_assistant.logging import get_logger

log = get_logger(__name__)


OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"


@dataclass
class Message:
    """A message in the conversation."""

    role: str  # "system", "user", "assistant"
    content: str


@dataclass
class LLMResponse:
    """Response from the LLM."""

    content: str
    model: str = ""
    usage: dict[str, int] = field(default_factory=dict)


def get_text_from_content(content: Any) -> str:
    """Flatten message content into plain text.

    Lists of fragments are joined with newlines; strings and the ``text``
    of dict fragments count, anything else is dropped.
    """
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, dict) and isinstance(item.get("text"), str):
                parts.append(item["text"])
        return "\n".join(parts)
    return ""


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @abstractmethod
    async def complete(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        pass

    @abstractmethod
    def complete_streaming(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[str]:
        pass

    @abstractmethod
    def count_tokens(self, text: str) -> int:
        pass

    async def close(self) -> None:
        pass


class OpenAICompatibleProvider(LLMProvider):
    """Chat completions provider for OpenAI and compatible endpoints."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        base_url: str = OPENAI_BASE_URL,
        temperature: float = 0.2,
        max_tokens: int | None = None,
    ):
        """Initialize the provider.

        Args:
            api_key: Bearer token for the API
            model: Model name (e.g., 'gpt-4o-mini')
            base_url: API base URL, without the ``/chat/completions`` suffix
            temperature: Sampling temperature
            max_tokens: Optional cap on generated tokens
        """
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_tokens = max_tokens

        self.client = httpx.AsyncClient(
            timeout=120.0,
            follow_redirects=True,
        )

    def _convert_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        result = []
        for msg in messages:
            if isinstance(msg, dict):
                role = msg.get("role")
                content = msg.get("content")
            else:
                role = msg.role
                content = msg.content
            if role in ("system", "user", "assistant"):
                result.append({"role": role, "content": content or ""})
        return result

    def _build_body(
        self,
        messages: list[Message],
        temperature: float | None,
        max_tokens: int | None,
        stream: bool,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": self._convert_messages(messages),
            "temperature": self.temperature if temperature is None else temperature,
            "stream": stream,
        }
        if max_tokens or self.max_tokens:
            body["max_tokens"] = max_tokens or self.max_tokens
        return body

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    async def complete(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a completion."""
        url = f"{self.base_url}/chat/completions"
        body = self._build_body(messages, temperature, max_tokens, stream=False)

        try:
            log.debug("Calling chat completions", model=self.model, url=url, msg_count=len(body["messages"]))

            response = await self.client.post(url, json=body, headers=self._headers())

            if not response.is_success:
                raise LLMAPIError(
                    f"LLM API error {response.status_code}: {response.text}",
                    status_code=response.status_code,
                )

            data = response.json()
            choices = data.get("choices") or [{}]
            content = get_text_from_content((choices[0].get("message") or {}).get("content"))

            usage = data.get("usage") or {}
            return LLMResponse(
                content=content,
                model=str(data.get("model") or self.model),
                usage={
                    "prompt_tokens": int(usage.get("prompt_tokens", 0) or 0),
                    "completion_tokens": int(usage.get("completion_tokens", 0) or 0),
                    "total_tokens": int(usage.get("total_tokens", 0) or 0),
                },
            )

        except LLMError:
            raise
        except httpx.HTTPError as e:
            raise LLMAPIError(f"LLM HTTP error: {e}")
        except json.JSONDecodeError as e:
            raise LLMError(f"LLM response decode error: {e}")
        except Exception as e:
            raise LLMError(f"LLM call failed: {e}")

    async def complete_streaming(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[str]:
        """Stream a completion as text deltas."""
        url = f"{self.base_url}/chat/completions"
        body = self._build_body(messages, temperature, max_tokens, stream=True)

        try:
            async with self.client.stream("POST", url, json=body, headers=self._headers()) as response:
                if not response.is_success:
                    error_text = (await response.aread()).decode("utf-8", errors="replace")
                    raise LLMAPIError(
                        f"LLM API error {response.status_code}: {error_text}",
                        status_code=response.status_code,
                    )

                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line.startswith("data:"):
                        continue
                    payload = line[len("data:"):].strip()
                    if payload == "[DONE]":
                        break
                    try:
                        chunk = json.loads(payload)
                    except json.JSONDecodeError:
                        continue
                    choices = chunk.get("choices") or []
                    if not choices:
                        continue
                    delta = get_text_from_content((choices[0].get("delta") or {}).get("content"))
                    if delta:
                        yield delta

        except LLMError:
            raise
        except httpx.HTTPError as e:
            raise LLMAPIError(f"LLM streaming error: {e}")
        except Exception as e:
            raise LLMError(f"LLM stream failed: {e}")

    def count_tokens(self, text: str) -> int:
        """Count tokens (rough estimate)."""
        # ~1 token per 4 characters for English
        return len(text) // 4

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


def create_provider(
    runtime: RuntimeConfig | None = None,
    temperature: float = 0.2,
    max_tokens: int | None = None,
) -> LLMProvider:
    """Create an LLM provider from the runtime settings.

    Args:
        runtime: Runtime settings; loaded fresh when omitted
        temperature: Default temperature
        max_tokens: Default max tokens

    Returns:
        Configured LLMProvider instance

    Raises:
        ConfigurationError if OPENAI_API_KEY is not set
    """
    runtime = runtime or load_runtime_config()
    api_key = runtime.openai_api_key.strip()
    if not api_key:
        raise ConfigurationError("Missing configuration: OPENAI_API_KEY")
    return OpenAICompatibleProvider(
        api_key=api_key,
        model=runtime.openai_model.strip() or DEFAULT_MODEL,
        base_url=runtime.openai_base_url.strip() or OPENAI_BASE_URL,
        temperature=temperature,
        max_tokens=max_tokens,
    )


__all__ = [
    "LLMProvider",
    "LLMResponse",
    "Message",
    "OpenAICompatibleProvider",
    "create_provider",
    "get_text_from_content",
]
