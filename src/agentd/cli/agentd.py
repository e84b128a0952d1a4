"""agentd - local daemon that runs tool-using LLM agents on demand or on a cron schedule."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .. import __version__
from ..errors import AgentdError

console = Console()


def _daemon(ctx: click.Context):
    from ..core.daemon import build_daemon

    config_path = ctx.obj.get("config_path")
    return build_daemon(Path(config_path) if config_path else None)


def _fail(message: str, code: int = 1) -> None:
    console.print(f"  [red]ERROR[/red] {message}")
    sys.exit(code)


def _fmt_time(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "-"


@click.group()
@click.version_option(__version__, prog_name="agentd")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="Config file path")
@click.pass_context
def agentd_cli(ctx: click.Context, config_path: str | None) -> None:
    """agentd - run tool-using agents locally."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@agentd_cli.command()
@click.pass_context
def serve(ctx: click.Context) -> None:
    """Run the daemon in the foreground until interrupted."""
    try:
        daemon = _daemon(ctx)
    except AgentdError as e:
        _fail(str(e))
        return
    console.print("  [bold cyan]agentd[/bold cyan] serving (Ctrl-C to stop)")
    asyncio.run(daemon.serve_forever())


@agentd_cli.command()
@click.argument("agent_name")
@click.option("--context", "-c", type=str, help="Initial message for the agent")
@click.pass_context
def run(ctx: click.Context, agent_name: str, context: str | None) -> None:
    """Run one agent now and print its output."""
    try:
        daemon = _daemon(ctx)
    except AgentdError as e:
        _fail(str(e))
        return
    exit_code = asyncio.run(_run_once(daemon, agent_name, context))
    sys.exit(exit_code)


async def _run_once(daemon, agent_name: str, context: str | None) -> int:
    from ..providers.base import parse_model_provider

    try:
        agent = daemon.agents.require(agent_name)
        parse_model_provider(agent.model)
    except AgentdError as e:
        daemon.db.close()
        console.print(f"  [red]ERROR[/red] {e}")
        return 1

    await daemon.register_tools()
    run_id = daemon.runs.create_run(agent.name)
    console.print(f"  Run [white]{run_id[:8]}[/white] of [cyan]{agent.name}[/cyan] ({agent.model})")
    try:
        result = await daemon.runner.run_agent(agent.name, run_id, context)
    except Exception as e:
        console.print(f"  [red]FAILED[/red] {daemon.runs.get_run(run_id, with_events=False).error or e}")
        return 1
    finally:
        await daemon.shutdown()

    console.print()
    console.print(result.output, markup=False)
    console.print()
    console.print(
        f"  [green]Done[/green] {result.tool_calls} tool calls, "
        f"{result.duration_ms}ms, ${result.cost_usd:.4f}"
    )
    return 0


@agentd_cli.group()
def agents() -> None:
    """Manage agent definitions."""


@agents.command("add")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def agents_add(ctx: click.Context, path: str) -> None:
    """Add or update an agent from a YAML definition."""
    from ..core.agents import load_agent_file

    daemon = _daemon(ctx)
    try:
        agent = daemon.add_agent(load_agent_file(Path(path)))
    except AgentdError as e:
        _fail(str(e))
        return
    finally:
        daemon.db.close()
    console.print(f"  [green]Saved[/green] agent {agent.name} ({agent.model})")
    if agent.next_run:
        console.print(f"  Next run: {_fmt_time(agent.next_run)}")


@agents.command("list")
@click.pass_context
def agents_list(ctx: click.Context) -> None:
    """List agents."""
    daemon = _daemon(ctx)
    rows = daemon.agents.list_agents()
    daemon.db.close()
    if not rows:
        console.print("  No agents defined. Add one with: agentd agents add <file.yaml>")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Name")
    table.add_column("Model")
    table.add_column("Triggers")
    table.add_column("Tools")
    table.add_column("Next run")
    for agent in rows:
        table.add_row(
            agent.name,
            agent.model,
            ", ".join(agent.triggers) or "-",
            ", ".join(agent.tools) or "-",
            _fmt_time(agent.next_run),
        )
    console.print(table)


@agents.command("remove")
@click.argument("name")
@click.pass_context
def agents_remove(ctx: click.Context, name: str) -> None:
    """Remove an agent definition."""
    daemon = _daemon(ctx)
    removed = daemon.remove_agent(name)
    daemon.db.close()
    if not removed:
        _fail(f'Agent "{name}" not found')
        return
    console.print(f"  [green]Removed[/green] agent {name}")


@agentd_cli.command()
@click.pass_context
def tools(ctx: click.Context) -> None:
    """List the tools available to agents."""
    daemon = _daemon(ctx)
    registered = asyncio.run(_collect_tools(daemon))

    table = Table(show_header=True, header_style="bold")
    table.add_column("Tool")
    table.add_column("Source")
    table.add_column("Description")
    for tool in registered:
        table.add_row(tool.name, tool.source, (tool.description or "").split("\n")[0])
    console.print(table)


async def _collect_tools(daemon):
    await daemon.register_tools()
    try:
        return daemon.registry.list_tools()
    finally:
        await daemon.shutdown()


@agentd_cli.command()
@click.argument("agent_name")
@click.option("--limit", "-n", type=int, default=20, help="Number of runs to show")
@click.pass_context
def logs(ctx: click.Context, agent_name: str, limit: int) -> None:
    """Show recent runs of an agent."""
    daemon = _daemon(ctx)
    runs = daemon.runs.list_runs(agent_name, limit=limit)
    daemon.db.close()
    if not runs:
        console.print(f"  No runs for {agent_name}")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Run")
    table.add_column("Status")
    table.add_column("Started")
    table.add_column("Duration")
    table.add_column("Tools", justify="right")
    table.add_column("Cost", justify="right")
    status_style = {"completed": "green", "error": "red", "running": "yellow"}
    for r in runs:
        style = status_style.get(r.status.value, "white")
        table.add_row(
            r.id[:8],
            f"[{style}]{r.status.value}[/{style}]",
            _fmt_time(r.started_at),
            f"{r.duration_ms}ms" if r.duration_ms is not None else "-",
            str(r.tool_calls),
            f"${r.cost_usd:.4f}",
        )
    console.print(table)


@agentd_cli.command()
@click.argument("run_ref")
@click.pass_context
def trace(ctx: click.Context, run_ref: str) -> None:
    """Show a run and its event timeline (full id or unique prefix)."""
    daemon = _daemon(ctx)
    try:
        run_record = daemon.get_run(run_ref)
    except AgentdError as e:
        _fail(str(e))
        return
    finally:
        daemon.db.close()

    console.print(f"  Run:    [white]{run_record.id}[/white]")
    console.print(f"  Agent:  [cyan]{run_record.agent_name}[/cyan]")
    console.print(f"  Status: {run_record.status.value}")
    console.print(
        f"  Tokens: {run_record.total_input_tokens} in / {run_record.total_output_tokens} out, "
        f"${run_record.cost_usd:.4f}"
    )
    console.print()
    for event in run_record.events:
        console.print(
            f"  {_fmt_time(event.timestamp)} [bold]{event.type.value}[/bold] "
            f"{escape(json.dumps(event.data, default=str)[:200])}",
            highlight=False,
        )
    console.print()
    if run_record.error:
        console.print(f"  [red]Error:[/red] {escape(run_record.error)}")
    elif run_record.output:
        console.print(run_record.output, markup=False)


def main() -> None:
    agentd_cli(obj={})


if __name__ == "__main__":
    main()
