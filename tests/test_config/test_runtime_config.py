import json
from pathlib import Path

import pytest

from gateway_assistant.config import (
    RUNTIME_CONFIG_FILENAME,
    RUNTIME_CONFIG_KEYS,
    Config,
    load_runtime_config,
    require_runtime_value,
    save_runtime_config,
)
from gateway_assistant.exceptions import ErrorCode, GatewayError


@pytest.fixture
def workdir(tmp_path, monkeypatch) -> Path:
    project = tmp_path / "project"
    project.mkdir()
    monkeypatch.chdir(project)
    for key in RUNTIME_CONFIG_KEYS:
        monkeypatch.delenv(key, raising=False)
    return project


def test_defaults_apply_without_file_or_env(workdir):
    runtime = load_runtime_config()

    assert runtime.search_provider == "auto"
    assert runtime.search_timeout_ms == "8000"
    assert runtime.openai_model == "gpt-4o-mini"
    assert runtime.local_file_allowed_roots == ""


def test_environment_overrides_defaults(workdir, monkeypatch):
    monkeypatch.setenv("SEARCH_PROVIDER", "tavily")

    assert load_runtime_config().search_provider == "tavily"


def test_file_overrides_environment(workdir, monkeypatch):
    monkeypatch.setenv("SEARCH_PROVIDER", "tavily")
    monkeypatch.setenv("TAVILY_API_KEY", "from-env")
    (workdir / RUNTIME_CONFIG_FILENAME).write_text(
        json.dumps({"SEARCH_PROVIDER": "bing_rss", "TAVILY_API_KEY": "   ", "UNKNOWN": "x"}),
        encoding="utf-8",
    )

    runtime = load_runtime_config()

    assert runtime.search_provider == "bing_rss"
    assert runtime.tavily_api_key == "from-env"


def test_parent_directory_file_is_used(workdir):
    (workdir.parent / RUNTIME_CONFIG_FILENAME).write_text(
        json.dumps({"OPENAI_MODEL": "gpt-4.1"}), encoding="utf-8"
    )

    assert load_runtime_config().openai_model == "gpt-4.1"


def test_malformed_file_is_ignored(workdir):
    (workdir / RUNTIME_CONFIG_FILENAME).write_text("{broken", encoding="utf-8")

    assert load_runtime_config().search_provider == "auto"


def test_settings_are_reread_on_every_load(workdir):
    path = workdir / RUNTIME_CONFIG_FILENAME
    path.write_text(json.dumps({"SEARCH_DEFAULT_MAX_RESULTS": "3"}), encoding="utf-8")
    assert load_runtime_config().search_default_max_results == "3"

    path.write_text(json.dumps({"SEARCH_DEFAULT_MAX_RESULTS": "7"}), encoding="utf-8")
    assert load_runtime_config().search_default_max_results == "7"


def test_save_writes_every_key_trimmed(workdir):
    target = save_runtime_config({"OPENAI_API_KEY": "  sk-test  ", "NOT_A_KEY": "x"})

    saved = json.loads(target.read_text(encoding="utf-8"))
    assert target == workdir / RUNTIME_CONFIG_FILENAME
    assert set(saved) == set(RUNTIME_CONFIG_KEYS)
    assert saved["OPENAI_API_KEY"] == "sk-test"
    assert saved["NOTION_API_KEY"] == ""
    assert load_runtime_config().openai_api_key == "sk-test"


def test_require_runtime_value(workdir):
    with pytest.raises(GatewayError) as exc:
        require_runtime_value(load_runtime_config(), "NOTION_API_KEY")

    assert exc.value.code == ErrorCode.MISSING_CONFIG
    assert str(exc.value) == "ERROR(MISSING_CONFIG): Missing configuration: NOTION_API_KEY"


def test_to_file_dict_uses_upper_case_keys(workdir):
    data = load_runtime_config().to_file_dict()

    assert set(data) == set(RUNTIME_CONFIG_KEYS)
    assert data["SEARCH_PROVIDER"] == "auto"


def test_config_yaml_roundtrip(tmp_path):
    path = tmp_path / "config.yaml"
    config = Config()
    config.agent.max_tool_steps = 5
    config.web.port = 9000
    config.save(path)

    loaded = Config.from_yaml(path)

    assert loaded.agent.max_tool_steps == 5
    assert loaded.web.port == 9000
    assert Config.from_yaml(tmp_path / "missing.yaml").agent.max_tool_steps == 3


def test_config_env_nested_override(monkeypatch):
    monkeypatch.setenv("ASSISTANT_AGENT__MAX_TOOL_STEPS", "6")

    assert Config().agent.max_tool_steps == 6
