"""Command-line entry point for Gateway Assistant."""

import asyncio
import json
import os
import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from gateway_assistant.agent import Agent, ProgressEvent, ToolResultEvent, ToolStartEvent
from gateway_assistant.config import Config, set_config
from gateway_assistant.exceptions import AssistantError, GatewayError
from gateway_assistant.gateway import GatewayClient
from gateway_assistant.logging import configure_logging, get_logger

log = get_logger(__name__)
console = Console()
err_console = Console(stderr=True)

app = typer.Typer(help="Gateway Assistant - a tool-calling chat agent with a local capability gateway")


def _setup(config: str = "", verbose: bool = False) -> Config:
    """Load config, install it globally and configure logging."""
    if verbose:
        os.environ["ASSISTANT_LOGGING__LEVEL"] = "DEBUG"

    if config:
        try:
            cfg = Config.from_yaml(Path(config))
        except Exception as e:
            err_console.print(f"[red]Failed to load config:[/red] {e}")
            cfg = Config.load()
    else:
        cfg = Config.load()

    set_config(cfg)
    configure_logging()
    return cfg


def _print_progress(event: ProgressEvent) -> None:
    if isinstance(event, ToolStartEvent):
        args = json.dumps(event.args, ensure_ascii=False)
        err_console.print(f"[cyan]step {event.step}[/cyan] -> [bold]{event.tool_name}[/bold] {args}")
    elif isinstance(event, ToolResultEvent):
        status = "[green]ok[/green]" if event.ok else "[red]failed[/red]"
        first_line = event.summary.splitlines()[0] if event.summary else ""
        err_console.print(f"[cyan]step {event.step}[/cyan] <- {status} ({event.duration_ms} ms) {first_line}")


@app.command()
def serve(
    host: str = typer.Option("", "--host", help="Bind address"),
    port: int = typer.Option(0, "--port", help="Bind port"),
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """Run the web server."""
    from gateway_assistant.web_server import run_web_server

    cfg = _setup(config, verbose)
    run_web_server(cfg, host=host or None, port=port or None)


@app.command()
def worker(
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """Run the stdio tool worker (GATEWAY_HEALTH_PORT=0 disables /health)."""
    from gateway_assistant.gateway import run_worker

    cfg = _setup(config, verbose)
    try:
        asyncio.run(run_worker(cfg))
    except KeyboardInterrupt:
        pass


@app.command()
def chat(
    question: str = typer.Argument(..., help="Question for the assistant"),
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """Ask one question and print the answer."""
    cfg = _setup(config, verbose)
    agent = Agent(config=cfg)
    messages = [{"role": "user", "content": question}]

    async def _run() -> None:
        async for delta in agent.stream(messages, on_progress=_print_progress):
            console.print(delta, end="", markup=False, highlight=False)
        console.print()

    try:
        asyncio.run(_run())
    except AssistantError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


@app.command()
def tools(
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
) -> None:
    """List the capabilities published by the gateway."""
    cfg = _setup(config)
    try:
        definitions = asyncio.run(GatewayClient(config=cfg).list_tools())
    except GatewayError as e:
        err_console.print(f"[red]{e}[/red]")
        sys.exit(1)

    table = Table(title="Capabilities")
    table.add_column("Name", style="bold")
    table.add_column("Parameters")
    table.add_column("Description")
    for item in definitions:
        params = ", ".join((item.get("inputSchema") or {}).get("properties", {}).keys())
        table.add_row(item.get("name", ""), params or "-", item.get("description", ""))
    console.print(table)


@app.command()
def call(
    name: str = typer.Argument(..., help="Capability name"),
    args: str = typer.Option("{}", "--args", help="Arguments as a JSON object"),
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
) -> None:
    """Call one capability and print its structured result as JSON."""
    cfg = _setup(config)
    try:
        arguments = json.loads(args)
    except ValueError as e:
        err_console.print(f"[red]Invalid --args JSON:[/red] {e}")
        raise typer.Exit(code=2)

    try:
        result = asyncio.run(GatewayClient(config=cfg).call_tool(name, arguments))
    except GatewayError as e:
        err_console.print(f"[red]{e}[/red]")
        if e.details:
            err_console.print_json(data=e.details)
        sys.exit(1)
    console.print_json(data=result)


@app.command()
def version() -> None:
    """Show version information."""
    from gateway_assistant import __version__

    console.print(f"Gateway Assistant v{__version__}")


if __name__ == "__main__":
    app()
