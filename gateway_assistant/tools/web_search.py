"""Web search tool backed by an ordered chain of search providers."""

import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx
from bs4 import BeautifulSoup
from pydantic import Field

from gateway_assistant.config import RuntimeConfig, load_runtime_config
from gateway_assistant.exceptions import ErrorCode, GatewayError
from gateway_assistant.logging import get_logger
from gateway_assistant.tools.local_policy import to_positive_int
from gateway_assistant.tools.registry import Tool, ToolArguments, ToolResult

log = get_logger(__name__)

BROWSER_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
DUCKDUCKGO_URL = "https://html.duckduckgo.com/html/"
BING_URL = "https://www.bing.com/search"
SERPAPI_URL = "https://serpapi.com/search.json"
TAVILY_URL = "https://api.tavily.com/search"

SEARCH_MODES = ("auto", "duckduckgo", "bing", "serpapi_google", "serpapi_bing", "serpapi_baidu", "tavily")


def _clean_text(value: str) -> str:
    return re.sub(r"\s+", " ", value or "").strip()


def normalize_query(query: str) -> str:
    return _clean_text(query)


def clamp_max_results(value: int | None, fallback: int) -> int:
    return max(1, min(10, value if value is not None else fallback))


def parse_duckduckgo_html(html: str, limit: int) -> list[dict[str, str]]:
    """Parse result blocks from the DuckDuckGo HTML endpoint."""
    soup = BeautifulSoup(html, "html.parser")
    items: list[dict[str, str]] = []
    for block in soup.select(".result__body"):
        link = block.select_one("a.result__a")
        if link is None:
            continue
        snippet = block.select_one(".result__snippet")
        title = _clean_text(link.get_text(" "))
        url = str(link.get("href") or "").strip()
        if not title or not url:
            continue
        items.append({"title": title, "url": url, "snippet": _clean_text(snippet.get_text(" ")) if snippet else ""})
        if len(items) >= limit:
            break
    return items


def parse_bing_rss(xml_text: str, limit: int) -> list[dict[str, str]]:
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError:
        return []
    items: list[dict[str, str]] = []
    for item in root.iter("item"):
        title = _clean_text(item.findtext("title") or "")
        url = (item.findtext("link") or "").strip()
        if not title or not url:
            continue
        description = BeautifulSoup(item.findtext("description") or "", "html.parser").get_text(" ")
        items.append({"title": title, "url": url, "snippet": _clean_text(description)})
        if len(items) >= limit:
            break
    return items


def _parse_json_results(
    entries: Any,
    limit: int,
    url_key: str,
    snippet_key: str,
) -> list[dict[str, str]]:
    items: list[dict[str, str]] = []
    for entry in entries if isinstance(entries, list) else []:
        if not isinstance(entry, dict):
            continue
        title = str(entry.get("title") or "").strip()
        url = str(entry.get(url_key) or "").strip()
        if not title or not url:
            continue
        items.append({"title": title, "url": url, "snippet": str(entry.get(snippet_key) or "").strip()})
        if len(items) >= limit:
            break
    return items


@dataclass
class SearchBackend:
    """One provider in the chain. ``run`` returns parsed results."""

    name: str
    run: Callable[[str, int, float], Awaitable[list[dict[str, str]]]]


class WebSearchArgs(ToolArguments):
    query: str = Field(min_length=1, max_length=200, description="Search keywords")
    max_results: int | None = Field(default=None, ge=1, le=10, description="Number of results (1-10)")


class WebSearchTool(Tool):
    """Search the web, falling back across providers."""

    name = "web_search"
    description = (
        "Search the web for current information. Returns titles, links and snippets "
        "to cite as sources."
    )
    args_model = WebSearchArgs
    timeout_seconds = 90.0

    def __init__(self) -> None:
        self.client = httpx.AsyncClient(
            follow_redirects=True,
            headers={"User-Agent": BROWSER_USER_AGENT},
        )

    async def _fetch(
        self,
        provider: str,
        method: str,
        url: str,
        timeout: float,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            response = await self.client.request(method, url, timeout=timeout, **kwargs)
        except httpx.HTTPError as e:
            raise GatewayError(
                ErrorCode.UPSTREAM_NETWORK_ERROR,
                f"{provider} request failed",
                {"provider": provider, "reason": str(e) or e.__class__.__name__},
            )
        if response.status_code < 200 or response.status_code >= 300:
            raise GatewayError(
                ErrorCode.UPSTREAM_ERROR,
                f"{provider} returned HTTP {response.status_code}",
                {"provider": provider, "status": response.status_code},
            )
        return response

    @staticmethod
    def _json(provider: str, response: httpx.Response) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError:
            raise GatewayError(ErrorCode.UPSTREAM_ERROR, f"{provider} returned invalid JSON", {"provider": provider})
        return payload if isinstance(payload, dict) else {}

    async def _duckduckgo(self, query: str, limit: int, timeout: float) -> list[dict[str, str]]:
        response = await self._fetch(
            "duckduckgo-html", "GET", DUCKDUCKGO_URL, timeout,
            params={"q": query}, headers={"Accept": "text/html"},
        )
        return parse_duckduckgo_html(response.text, limit)

    async def _bing_rss(self, query: str, limit: int, timeout: float) -> list[dict[str, str]]:
        response = await self._fetch(
            "bing-rss", "GET", BING_URL, timeout,
            params={"format": "rss", "q": query},
            headers={"Accept": "application/rss+xml, application/xml, text/xml"},
        )
        return parse_bing_rss(response.text, limit)

    def _serpapi(self, engine: str, api_key: str) -> Callable[[str, int, float], Awaitable[list[dict[str, str]]]]:
        async def run(query: str, limit: int, timeout: float) -> list[dict[str, str]]:
            if not api_key:
                raise GatewayError(ErrorCode.MISSING_CONFIG, "SERPAPI_API_KEY is not configured")
            response = await self._fetch(
                f"serpapi-{engine}", "GET", SERPAPI_URL, timeout,
                params={"engine": engine, "q": query, "num": limit, "api_key": api_key},
            )
            return _parse_json_results(self._json(f"serpapi-{engine}", response).get("organic_results"), limit, "link", "snippet")

        return run

    def _tavily(self, api_key: str) -> Callable[[str, int, float], Awaitable[list[dict[str, str]]]]:
        async def run(query: str, limit: int, timeout: float) -> list[dict[str, str]]:
            if not api_key:
                raise GatewayError(ErrorCode.MISSING_CONFIG, "TAVILY_API_KEY is not configured")
            response = await self._fetch(
                "tavily", "POST", TAVILY_URL, timeout,
                json={"api_key": api_key, "query": query, "max_results": limit, "include_answer": False},
            )
            return _parse_json_results(self._json("tavily", response).get("results"), limit, "url", "content")

        return run

    def build_chain(self, mode: str, runtime: RuntimeConfig) -> list[SearchBackend]:
        """Backends for a search mode. Unknown modes fall back to Tavily."""
        ddg = SearchBackend("duckduckgo-html", self._duckduckgo)
        bing = SearchBackend("bing-rss", self._bing_rss)
        tavily = SearchBackend("tavily", self._tavily(runtime.tavily_api_key))

        def serp(engine: str) -> SearchBackend:
            return SearchBackend(f"serpapi-{engine}", self._serpapi(engine, runtime.serpapi_api_key))

        if mode == "auto":
            return [ddg, bing, tavily, serp("google")]
        if mode == "duckduckgo":
            return [ddg]
        if mode == "bing":
            return [bing]
        if mode.startswith("serpapi_") and mode in SEARCH_MODES:
            return [serp(mode.split("_", 1)[1])]
        return [tavily]

    async def execute(self, query: str, max_results: int | None = None, **kwargs: Any) -> ToolResult:
        q = normalize_query(query)
        if not q:
            raise GatewayError(ErrorCode.BAD_REQUEST, "query must not be empty")

        runtime = load_runtime_config()
        mode = (runtime.search_provider or "auto").strip().lower()
        timeout_ms = max(1500, min(30000, to_positive_int(runtime.search_timeout_ms, 8000, 1, 10**9)))
        default_max = clamp_max_results(to_positive_int(runtime.search_default_max_results, 5, 1, 10**9), 5)
        limit = clamp_max_results(max_results, default_max)

        errors: list[str] = []
        for backend in self.build_chain(mode, runtime):
            try:
                results = await backend.run(q, limit, timeout_ms / 1000)
            except GatewayError as e:
                log.warning("Search provider failed", provider=backend.name, code=e.code, error=e.message)
                errors.append(f"{backend.name}: {e.message}")
                continue
            if not results:
                errors.append(f"{backend.name}: empty results")
                continue

            lines = [f"Query: {q}", f"Results: {len(results)}", f"Provider: {backend.name}"]
            lines.extend(
                f"{i}. {item['title']}\n{item['url']}\n{item['snippet']}"
                for i, item in enumerate(results, start=1)
            )
            return ToolResult(
                content="\n\n".join(lines),
                data={
                    "provider": backend.name,
                    "query": q,
                    "results": results,
                    "sources": [{"title": item["title"], "url": item["url"]} for item in results],
                },
            )

        raise GatewayError(
            ErrorCode.UPSTREAM_UNAVAILABLE,
            "Web search is temporarily unavailable; check the search provider settings or retry later.",
            {"query": q, "provider": mode, "timeoutMs": timeout_ms, "errors": errors},
        )

    async def close(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()
