"""Configuration management for Gateway Assistant."""

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from gateway_assistant.exceptions import ErrorCode, GatewayError


# Paths
DEFAULT_CONFIG_PATH = Path("~/.gateway-assistant/config.yaml").expanduser()
LOCAL_CONFIG_FILENAME = "config.yaml"
RUNTIME_CONFIG_FILENAME = ".runtime-config.json"


class GatewayConfig(BaseModel):
    """Tool gateway worker configuration."""

    name: str = "gateway-assistant-worker"
    version: str = "0.1.0"
    health_port: int = 8788
    call_timeout_seconds: float = 60.0
    python_executable: str = ""


class AgentConfig(BaseModel):
    """Agent decision loop configuration."""

    max_tool_steps: int = 3
    temperature: float = 0.2
    stream_chunk_size: int = 48
    summary_chars: int = 180
    max_citations: int = 8


class WebConfig(BaseModel):
    """Web server configuration."""

    host: str = "127.0.0.1"
    port: int = 8787


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for Gateway Assistant."""

    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    web: WebConfig = Field(default_factory=WebConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="ASSISTANT_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def load(cls) -> "Config":
        """Load configuration; env vars apply through BaseSettings."""
        return cls.from_yaml()

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


class RuntimeConfig(BaseSettings):
    """User-editable settings, re-read on every call that needs them.

    Values come from ``.runtime-config.json`` first, then the process
    environment, then the defaults below. Numeric limits stay strings here;
    consumers parse and clamp them.
    """

    openai_api_key: str = ""
    openai_base_url: str = ""
    openai_model: str = "gpt-4o-mini"
    notion_api_key: str = ""
    notion_parent_page_id: str = ""
    local_db_path: str = str(Path("data") / "assistant.db")
    search_provider: str = "auto"
    search_timeout_ms: str = "8000"
    search_default_max_results: str = "5"
    serpapi_api_key: str = ""
    tavily_api_key: str = ""
    local_file_allowed_roots: str = ""
    local_file_max_read_chars: str = "12000"
    local_file_max_list_entries: str = "100"
    local_file_max_pdf_pages: str = "30"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    def to_file_dict(self) -> dict[str, str]:
        """Render with the upper-case keys used by the settings file."""
        return {key.upper(): str(value) for key, value in self.model_dump().items()}


RUNTIME_CONFIG_KEYS: tuple[str, ...] = tuple(name.upper() for name in RuntimeConfig.model_fields)


def runtime_config_candidates(base: Path | None = None) -> list[Path]:
    """Locations searched for the settings file, in order."""
    anchor = (base or Path.cwd()).resolve()
    return [anchor / RUNTIME_CONFIG_FILENAME, anchor.parent / RUNTIME_CONFIG_FILENAME]


def read_runtime_config_file(path: Path | str | None = None) -> dict[str, str]:
    """Read non-empty string values from the settings file.

    A missing or malformed file yields an empty mapping so that the
    environment and defaults apply.
    """
    candidates = [Path(path).expanduser()] if path else runtime_config_candidates()
    for candidate in candidates:
        try:
            raw = json.loads(candidate.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            continue
        if not isinstance(raw, dict):
            continue
        values = {
            str(key).lower(): value.strip()
            for key, value in raw.items()
            if isinstance(value, str) and value.strip() and str(key).upper() in RUNTIME_CONFIG_KEYS
        }
        if values:
            return values
    return {}


def load_runtime_config(path: Path | str | None = None) -> RuntimeConfig:
    """Load runtime settings fresh. Never cached."""
    return RuntimeConfig(**read_runtime_config_file(path))


def save_runtime_config(values: dict[str, Any], path: Path | str | None = None) -> Path:
    """Write trimmed settings to the settings file and return its path."""
    target = Path(path).expanduser() if path else Path.cwd() / RUNTIME_CONFIG_FILENAME
    payload = {
        key: str(values.get(key, "") or "").strip()
        for key in RUNTIME_CONFIG_KEYS
    }
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
    return target


def require_runtime_value(config: RuntimeConfig, key: str) -> str:
    """Return a runtime setting or fail with MISSING_CONFIG when blank."""
    value = str(getattr(config, key.lower(), "") or "").strip()
    if not value:
        raise GatewayError(ErrorCode.MISSING_CONFIG, f"Missing configuration: {key.upper()}")
    return value
