"""Weather lookup via Open-Meteo (geocoding + current conditions and daily forecast)."""

import math
import re
from datetime import UTC, datetime
from typing import Any

import httpx
from pydantic import Field

from gateway_assistant.exceptions import ErrorCode, GatewayError
from gateway_assistant.logging import get_logger
from gateway_assistant.tools.registry import Tool, ToolArguments, ToolResult

log = get_logger(__name__)

GEOCODING_URL = "https://geocoding-api.open-meteo.com/v1/search"
FORECAST_URL = "https://api.open-meteo.com/v1/forecast"
CURRENT_FIELDS = (
    "temperature_2m,apparent_temperature,relative_humidity_2m,"
    "precipitation,weather_code,wind_speed_10m"
)
DAILY_FIELDS = "weather_code,temperature_2m_max,temperature_2m_min,precipitation_sum"

# WMO weather interpretation codes
WEATHER_CODE_TEXT = {
    0: "Clear sky",
    1: "Mainly clear",
    2: "Partly cloudy",
    3: "Overcast",
    45: "Fog",
    48: "Depositing rime fog",
    51: "Light drizzle",
    53: "Moderate drizzle",
    55: "Dense drizzle",
    56: "Light freezing drizzle",
    57: "Dense freezing drizzle",
    61: "Slight rain",
    63: "Moderate rain",
    65: "Heavy rain",
    66: "Light freezing rain",
    67: "Heavy freezing rain",
    71: "Slight snow",
    73: "Moderate snow",
    75: "Heavy snow",
    77: "Snow grains",
    80: "Slight rain showers",
    81: "Moderate rain showers",
    82: "Violent rain showers",
    85: "Slight snow showers",
    86: "Heavy snow showers",
    95: "Thunderstorm",
    96: "Thunderstorm with slight hail",
    99: "Thunderstorm with heavy hail",
}

_STOPWORDS = {
    "weather", "forecast", "temperature", "today", "tomorrow",
    "now", "current", "currently", "in", "at", "for", "the",
}
_PLACE_SUFFIXES = (" city", " province", " county", " district")


def weather_text(code: Any) -> str:
    if isinstance(code, bool) or not isinstance(code, (int, float)):
        return "Unknown"
    return WEATHER_CODE_TEXT.get(int(code), "Unknown")


def _number_or_none(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value if math.isfinite(value) else None


def daily_forecast(payload: Any, days: int) -> list[dict[str, Any]]:
    """Zip Open-Meteo's column-wise ``daily`` block into one row per date."""
    if not isinstance(payload, dict) or not isinstance(payload.get("time"), list):
        return []

    def column(name: str, index: int) -> Any:
        values = payload.get(name)
        return values[index] if isinstance(values, list) and index < len(values) else None

    rows = []
    for index, date in enumerate(payload["time"][:days]):
        rows.append(
            {
                "date": str(date),
                "weatherText": weather_text(column("weather_code", index)),
                "maxTemperatureC": _number_or_none(column("temperature_2m_max", index)),
                "minTemperatureC": _number_or_none(column("temperature_2m_min", index)),
                "precipitationMm": _number_or_none(column("precipitation_sum", index)),
            }
        )
    return rows


def sanitize_query(query: str) -> str:
    """Strip punctuation and weather filler words, leaving the place name."""
    cleaned = re.sub(r"[,.!?;:，。！？、]", " ", query or "")
    words = [word for word in cleaned.split() if word.lower() not in _STOPWORDS]
    result = " ".join(words).strip()
    if len(result) <= 1:
        return ""
    return result


def build_query_candidates(raw_query: str) -> list[str]:
    """Place-name variants to try against geocoding, most specific first."""
    query = sanitize_query(raw_query)
    if not query:
        return []

    candidates = [query]
    lowered = query.lower()
    for suffix in _PLACE_SUFFIXES:
        if lowered.endswith(suffix):
            candidates.append(query[: -len(suffix)].strip())
            break
    head = (raw_query or "").split(",", 1)[0].strip()
    if head and head != raw_query.strip():
        candidates.append(sanitize_query(head))

    unique: list[str] = []
    for item in candidates:
        if item and item not in unique:
            unique.append(item)
    return unique


class GetWeatherArgs(ToolArguments):
    query: str = Field(min_length=1, max_length=120, description="City or region name")
    days: int = Field(default=1, ge=1, le=3, description="Forecast days (1 today, 2 tomorrow, 3 day after)")


class GetWeatherTool(Tool):
    """Look up current conditions and the daily forecast for a place."""

    name = "get_weather"
    description = "Get current weather and a daily forecast (up to 3 days) for a city or region."
    args_model = GetWeatherArgs
    timeout_seconds = 30.0

    def __init__(self, language: str = "en") -> None:
        self.language = language
        self.client = httpx.AsyncClient(follow_redirects=True, timeout=15.0)

    async def _get_json(self, url: str, params: dict[str, Any], failure: str) -> dict[str, Any]:
        try:
            response = await self.client.get(url, params=params)
        except httpx.HTTPError as e:
            raise GatewayError(ErrorCode.UPSTREAM_NETWORK_ERROR, failure, {"reason": str(e) or e.__class__.__name__})
        if response.status_code < 200 or response.status_code >= 300:
            raise GatewayError(ErrorCode.UPSTREAM_ERROR, failure, {"status": response.status_code})
        payload = response.json()
        return payload if isinstance(payload, dict) else {}

    async def geocode(self, name: str) -> dict[str, Any] | None:
        payload = await self._get_json(
            GEOCODING_URL,
            {"name": name, "count": 1, "language": self.language, "format": "json"},
            "Failed to resolve the weather location",
        )
        results = payload.get("results") or []
        return results[0] if results and isinstance(results[0], dict) else None

    async def execute(self, query: str, days: int = 1, **kwargs: Any) -> ToolResult:
        candidates = build_query_candidates(query)
        if not candidates:
            raise GatewayError(ErrorCode.BAD_REQUEST, "Weather location is unclear; provide a city or region name")

        geo: dict[str, Any] | None = None
        matched = candidates[0]
        for candidate in candidates:
            geo = await self.geocode(candidate)
            if geo and _number_or_none(geo.get("latitude")) is not None and _number_or_none(geo.get("longitude")) is not None:
                matched = candidate
                break
            geo = None

        if geo is None:
            raise GatewayError(ErrorCode.NOT_FOUND, f"Location not found: {query}")

        forecast = await self._get_json(
            FORECAST_URL,
            {
                "latitude": geo["latitude"],
                "longitude": geo["longitude"],
                "current": CURRENT_FIELDS,
                "daily": DAILY_FIELDS,
                "timezone": "auto",
                "forecast_days": days,
            },
            "Failed to fetch weather data",
        )
        current = forecast.get("current")
        if not isinstance(current, dict):
            raise GatewayError(ErrorCode.UPSTREAM_ERROR, "Weather service response is missing current conditions")

        location = " / ".join(
            str(part).strip()
            for part in (geo.get("country"), geo.get("admin1"), geo.get("name"))
            if part and str(part).strip()
        )
        time_value = current.get("time")
        data = {
            "provider": "open-meteo",
            "query": matched,
            "location": location,
            "latitude": geo["latitude"],
            "longitude": geo["longitude"],
            "timezone": forecast.get("timezone") or "auto",
            "current": {
                "time": time_value if isinstance(time_value, str) else datetime.now(UTC).isoformat(),
                "weatherText": weather_text(current.get("weather_code")),
                "temperatureC": _number_or_none(current.get("temperature_2m")),
                "apparentTemperatureC": _number_or_none(current.get("apparent_temperature")),
                "humidity": _number_or_none(current.get("relative_humidity_2m")),
                "precipitationMm": _number_or_none(current.get("precipitation")),
                "windSpeedKmh": _number_or_none(current.get("wind_speed_10m")),
            },
            "daily": daily_forecast(forecast.get("daily"), days),
        }

        def show(value: Any) -> str:
            return "unknown" if value is None else str(value)

        now = data["current"]
        lines = [
            f"Location: {location}",
            f"Conditions: {now['weatherText']}",
            f"Temperature: {show(now['temperatureC'])}°C",
            f"Feels like: {show(now['apparentTemperatureC'])}°C",
            f"Humidity: {show(now['humidity'])}%",
            f"Precipitation: {show(now['precipitationMm'])} mm",
            f"Wind: {show(now['windSpeedKmh'])} km/h",
            f"Time: {now['time']}",
        ]
        if data["daily"]:
            lines.append("Forecast:")
            lines.extend(
                f"- {day['date']}: {day['weatherText']}, "
                f"{show(day['minTemperatureC'])} to {show(day['maxTemperatureC'])}°C, "
                f"precipitation {show(day['precipitationMm'])} mm"
                for day in data["daily"]
            )
        lines.append("Source: open-meteo")
        return ToolResult(content="\n".join(lines), data=data)

    async def close(self) -> None:
        await self.client.aclose()
