from typer.testing import CliRunner

from gateway_assistant import __version__
from gateway_assistant.main import app

runner = CliRunner()


def test_version_command():
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_call_rejects_invalid_json(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(app, ["call", "ping", "--args", "{oops"])

    assert result.exit_code == 2


def test_call_runs_a_capability(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(app, ["call", "ping", "--args", '{"message": "cli"}'])

    assert result.exit_code == 0
    assert '"echoed": "cli"' in result.stdout
