"""
toolbridge CLI - manage MCP servers and run tool-assisted completions.

Run `toolbridge --help` for the command list. Configuration is read from
~/.toolbridge/config.yaml and the nearest .toolbridge/config.yaml.
"""

import asyncio
import json
import logging
import signal
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import click
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from toolbridge import __version__
from toolbridge.core.orchestrator import (
    OrchestrationOutcome,
    ToolCallEvent,
    ToolCallingOrchestrator,
)
from toolbridge.mcp import (
    CancelSignal,
    MCPCancelledError,
    ToolExecutor,
    ToolRegistry,
    check_server_connection,
    discover_tool_catalog,
)
from toolbridge.providers.base import ChatCompletionProvider, ProviderError
from toolbridge.validation.config import Config, ConfigError, ToolPolicy, parse_servers_payload

console = Console()
logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _load_config(ctx: click.Context) -> Config:
    try:
        return Config.load(ctx.obj.get("config_path"))
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


def _print_tool_event(event: ToolCallEvent) -> None:
    if event.phase == "start":
        console.print(f"[dim]→ {event.name} {event.args or '{}'}[/dim]")
    else:
        preview = (event.result or "").strip().replace("\n", " ")
        console.print(f"[dim]← {event.name}: {preview[:120]}[/dim]")


@click.group()
@click.version_option(__version__, prog_name="toolbridge")
@click.option("--config", "config_path", type=click.Path(path_type=Path), help="Config file to use")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path], verbose: bool) -> None:
    """
    toolbridge - MCP tools for OpenAI-compatible chat models.

    \b
    Examples:
        toolbridge servers                  # List configured servers
        toolbridge import mcp.json          # Import servers from a file
        toolbridge discover                 # List tools with their call names
        toolbridge ask "what changed?"      # Tool-assisted completion
    """
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@cli.command()
@click.pass_context
def servers(ctx: click.Context) -> None:
    """List configured MCP servers."""
    settings = _load_config(ctx).tool_settings
    if not settings.servers:
        console.print("[dim]No MCP servers configured. Add them to .toolbridge/config.yaml:[/dim]")
        console.print("[dim]  tools:[/dim]")
        console.print("[dim]    servers:[/dim]")
        console.print("[dim]      - id: search[/dim]")
        console.print('[dim]        command: "npx"[/dim]')
        console.print('[dim]        args: "-y @modelcontextprotocol/server-brave-search"[/dim]')
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Command")
    table.add_column("Framing", style="dim")
    table.add_column("Timeout", justify="right")
    table.add_column("Enabled")
    for server in settings.servers:
        table.add_row(
            server.id,
            server.label,
            " ".join([server.command, *server.argv()]),
            server.wire_format.value,
            f"{server.timeout_ms / 1000:g}s",
            "[green]yes[/green]" if server.enabled else "[red]no[/red]",
        )
    console.print(table)
    console.print(f"[dim]Policy: {settings.policy.value} · max {settings.effective_max_tool_calls} tool calls per turn[/dim]")


@cli.command(name="import")
@click.argument("source")
@click.option("--global", "global_", is_flag=True, help="Write to the global config")
@click.pass_context
def import_servers(ctx: click.Context, source: str, global_: bool) -> None:
    """Import servers from a JSON/YAML file or an MCP server URL."""
    path = Path(source)
    if path.exists():
        try:
            payload = yaml.safe_load(path.read_text())
        except (OSError, yaml.YAMLError) as e:
            console.print(f"[red]Failed to read {path}: {e}[/red]")
            sys.exit(1)
    else:
        payload = source

    imported = parse_servers_payload(payload)
    if not imported:
        console.print("[yellow]No usable servers found (missing or disallowed command).[/yellow]")
        sys.exit(1)

    config = _load_config(ctx)
    config.add_servers(imported, global_=global_)
    config.save()
    for server in imported:
        console.print(f"[green]✓[/green] {server.id} ({' '.join([server.command, *server.argv()])})")


@cli.command()
@click.argument("value", type=click.Choice([p.value for p in ToolPolicy]))
@click.option("--global", "global_", is_flag=True, help="Write to the global config")
@click.pass_context
def policy(ctx: click.Context, value: str, global_: bool) -> None:
    """Set the tool-calling policy."""
    config = _load_config(ctx)
    config.set_policy(value, global_=global_)
    config.save()
    console.print(f"[green]Policy set to {value}[/green]")


@cli.command()
@click.argument("server_id")
@click.pass_context
def test(ctx: click.Context, server_id: str) -> None:
    """Start a server, list its tools and shut it down."""
    server = _load_config(ctx).tool_settings.get_server(server_id)
    if server is None:
        console.print(f"[red]Unknown server: {server_id}[/red]")
        sys.exit(1)

    with console.status(f"[bold blue]Connecting to {server.label}...[/bold blue]", spinner="dots"):
        result = asyncio.run(check_server_connection(server))

    if not result.ok:
        console.print(f"[red]✗ {server.label}: {result.error}[/red]")
        sys.exit(1)
    console.print(f"[green]✓ {server.label}: {len(result.tools)} tools[/green]")
    for tool in result.tools:
        console.print(f"  [cyan]{tool.name}[/cyan] {tool.description}")


@cli.command()
@click.pass_context
def discover(ctx: click.Context) -> None:
    """List every tool across enabled servers with its call name."""
    settings = _load_config(ctx).tool_settings
    with console.status("[bold blue]Discovering tools...[/bold blue]", spinner="dots"):
        catalog = asyncio.run(discover_tool_catalog(settings.servers))

    if not catalog:
        console.print("[dim]No tools discovered.[/dim]")
        return

    table = Table(title=f"Tools ({len(catalog)})", show_lines=False, border_style="blue")
    table.add_column("Call name", style="cyan")
    table.add_column("Server")
    table.add_column("State")
    table.add_column("Description", overflow="fold")
    for tool in catalog:
        state = "[red]off[/red]" if settings.tool_states.get(tool.call_name) is False else "on"
        table.add_row(tool.call_name, tool.server_name, state, tool.description)
    console.print(table)


async def _call_tool(servers: List[Any], call_name: str, arguments: str) -> Optional[str]:
    async with await ToolRegistry.prepare(servers) as registry:
        if call_name not in registry:
            return None
        return await ToolExecutor(registry).execute(call_name, arguments)


@cli.command()
@click.argument("call_name")
@click.argument("arguments", required=False, default="")
@click.pass_context
def call(ctx: click.Context, call_name: str, arguments: str) -> None:
    """Invoke one tool by call name with JSON ARGUMENTS."""
    settings = _load_config(ctx).tool_settings
    with console.status(f"[bold blue]Running {call_name}...[/bold blue]", spinner="dots"):
        output = asyncio.run(_call_tool(settings.servers, call_name, arguments))

    if output is None:
        console.print(f"[red]Tool not found: {call_name}[/red]")
        console.print("[dim]Run `toolbridge discover` to list call names.[/dim]")
        sys.exit(1)
    console.print(output)


@contextmanager
def _cancel_on_sigint(cancel_signal: CancelSignal) -> Iterator[None]:
    """Fire *cancel_signal* when Ctrl+C arrives while the turn is running."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_signal.cancel, "Interrupted")
    except (NotImplementedError, RuntimeError, ValueError) as e:
        logger.debug("SIGINT handler unavailable: %s", e)
        yield
        return
    try:
        yield
    finally:
        loop.remove_signal_handler(signal.SIGINT)


async def _answer(config: Config, prompt: str, system: Optional[str], cancel_signal: CancelSignal) -> Dict[str, Any]:
    provider = ChatCompletionProvider(config.provider_settings, api_key=config.get_api_key())
    messages: List[Dict[str, Any]] = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})

    settings = config.tool_settings
    if not settings.enabled:
        return {"content": (await provider.complete(messages)).content, "traces": []}

    orchestrator = ToolCallingOrchestrator(settings, provider, on_tool_event=_print_tool_event)
    with _cancel_on_sigint(cancel_signal):
        result = await orchestrator.run(messages, signal=cancel_signal)

    if result.outcome is OrchestrationOutcome.FINAL_TEXT:
        content = result.content
    elif result.outcome is OrchestrationOutcome.NEEDS_FINAL_PASS:
        content = (await provider.complete(result.messages)).content
    else:
        content = (await provider.complete(messages)).content
    return {"content": content, "traces": result.traces}


@cli.command()
@click.argument("prompt", nargs=-1, required=True)
@click.option("--system", "-s", help="System prompt")
@click.option("--trace", is_flag=True, help="Print tool trace records as JSON")
@click.pass_context
def ask(ctx: click.Context, prompt: tuple, system: Optional[str], trace: bool) -> None:
    """Answer PROMPT, letting the model call configured MCP tools."""
    config = _load_config(ctx)

    try:
        answer = asyncio.run(_answer(config, " ".join(prompt), system, CancelSignal()))
    except (KeyboardInterrupt, MCPCancelledError):
        console.print("\n[yellow]Interrupted.[/yellow]")
        sys.exit(130)
    except ProviderError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    console.print()
    console.print(Markdown(answer["content"] or ""))
    if trace and answer["traces"]:
        console.print()
        console.print(Panel(
            "\n".join(json.dumps(json.loads(t.serialize()), indent=2) for t in answer["traces"]),
            title="Tool trace",
            border_style="dim",
        ))


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
