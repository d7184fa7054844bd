"""CLI entry point for agent-handoff-coordinator.

Invoked as::

    handoff-coordinator [OPTIONS] COMMAND [ARGS]...

or, during development::

    python -m agent_handoff_coordinator.cli.main

Commands
--------
- version      — Show detailed version information
- config show  — Print the effective configuration
- session      — Session management command group

Session sub-commands
---------------------
- session start     — Create a session for an uploaded product
- session analyze   — Run the product analysis
- session chat      — Send one user message
- session status    — Show progress, costs and health
- session history   — Show the chat history
- session handoff   — Hand the session to the next agent
- session complete  — Close the session
- session export    — Write the session, messages and audit trail to JSON or YAML
- session demo      — Run a scripted conversation end to end in one process
"""
from __future__ import annotations

import asyncio
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar

import click
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from agent_handoff_coordinator.config import CoordinatorConfig, load_config
from agent_handoff_coordinator.coordinator import SessionCoordinator
from agent_handoff_coordinator.errors import CoordinatorError
from agent_handoff_coordinator.session.state import AgentRole, MessageType
from agent_handoff_coordinator.session.store import SessionStore
from agent_handoff_coordinator.storage.base import AsyncDocumentBackend

console = Console()

_T = TypeVar("_T")

_DEMO_MESSAGES = (
    "The key features are noise cancelling and a long battery life.",
    "Its unique benefit is total focus on long flights.",
    "Our customers are commuters and remote workers.",
    "The audience is mostly professionals between 25 and 40.",
    "Our brand should feel premium next to cheaper competitors.",
    "The competitive advantage is craftsmanship.",
    "Visually we want a minimal style with a calm, dark palette.",
)

# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def _make_backend(storage: str, db_path: str | None) -> AsyncDocumentBackend:
    """Instantiate the requested storage backend.

    Parameters
    ----------
    storage:
        Backend name: ``"memory"``, ``"sqlite"`` or ``"redis"``.
    db_path:
        Path to the SQLite database, or a Redis URL for ``"redis"``.
    """
    from agent_handoff_coordinator.storage.memory import AsyncInMemoryBackend
    from agent_handoff_coordinator.storage.sqlite import AsyncSQLiteBackend

    if storage == "memory":
        return AsyncInMemoryBackend()
    if storage == "sqlite":
        return AsyncSQLiteBackend(db_path=Path(db_path) if db_path else None)
    if storage == "redis":
        from agent_handoff_coordinator.storage.redis import AsyncRedisBackend

        return AsyncRedisBackend(url=db_path or "redis://localhost:6379/0")
    console.print(f"[red]Unknown storage backend: {storage!r}[/red]")
    sys.exit(1)


def _make_coordinator(obj: dict[str, Any]) -> SessionCoordinator:
    from agent_handoff_coordinator.generation.live import LiveGenerationBackend
    from agent_handoff_coordinator.generation.simulated import SimulatedGenerationBackend

    config: CoordinatorConfig = obj["config"]
    if obj["live"]:
        if not obj["api_key"]:
            console.print("[red]--live requires --api-key or GEMINI_API_KEY.[/red]")
            sys.exit(1)
        generator = LiveGenerationBackend(
            obj["api_key"], timeout=config.timeouts.generation_seconds
        )
    else:
        generator = SimulatedGenerationBackend()
    store = SessionStore(_make_backend(obj["storage"], obj["db_path"]), config)
    return SessionCoordinator(store, generator, config)


def _run(
    ctx: click.Context,
    action: Callable[[SessionCoordinator], Awaitable[_T]],
) -> _T:
    """Run ``action`` against a fresh coordinator and exit 1 on coordinator errors."""

    async def runner() -> _T:
        coordinator = _make_coordinator(ctx.obj)
        try:
            return await action(coordinator)
        finally:
            await coordinator.aclose()

    try:
        return asyncio.run(runner())
    except CoordinatorError as exc:
        console.print(f"[red]{exc.error_code}:[/red] {exc}")
        sys.exit(1)


def _print_turn(outcome: Any) -> None:
    console.print(Panel(outcome.agent_message.content, title=outcome.agent_message.agent_name))
    console.print(
        f"[dim]topic={outcome.topic.value} ({outcome.topic_status.value}) "
        f"cost=${outcome.cost:.6f} ready={outcome.ready_for_handoff}[/dim]"
    )
    if outcome.handoff is not None and outcome.handoff.succeeded:
        console.print(
            f"[green]Handed off to[/green] {outcome.handoff.session.current_agent.display_name}"
        )


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="agent-handoff-coordinator")
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="YAML configuration file.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """Multi-agent session and handoff coordination for product commercial planning"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )
    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = load_config(config_path)
    except CoordinatorError as exc:
        console.print(f"[red]{exc.error_code}:[/red] {exc}")
        sys.exit(1)


# ---------------------------------------------------------------------------
# version
# ---------------------------------------------------------------------------


@cli.command(name="version")
def version_command() -> None:
    """Show detailed version information."""
    from agent_handoff_coordinator import __version__

    console.print(f"[bold]agent-handoff-coordinator[/bold] v{__version__}")


# ---------------------------------------------------------------------------
# config
# ---------------------------------------------------------------------------


@cli.group(name="config")
def config_group() -> None:
    """Configuration commands."""


@config_group.command(name="show")
@click.option(
    "--format",
    "output_format",
    default="yaml",
    show_default=True,
    type=click.Choice(["yaml", "json"], case_sensitive=False),
)
@click.pass_context
def config_show(ctx: click.Context, output_format: str) -> None:
    """Print the effective configuration after file and environment overrides."""
    data = ctx.obj["config"].to_dict()
    if output_format == "json":
        click.echo(json.dumps(data, indent=2))
    else:
        click.echo(yaml.safe_dump(data, sort_keys=False))


# ---------------------------------------------------------------------------
# session command group
# ---------------------------------------------------------------------------


@cli.group(name="session")
@click.option(
    "--storage",
    default="sqlite",
    show_default=True,
    type=click.Choice(["memory", "sqlite", "redis"], case_sensitive=False),
    help="Storage backend to use.",
)
@click.option(
    "--db-path",
    default=None,
    help="SQLite database path, or Redis URL for the redis backend.",
)
@click.option("--live", is_flag=True, help="Use the live generation API instead of the simulator.")
@click.option("--api-key", envvar="GEMINI_API_KEY", default=None, help="Generation API key.")
@click.pass_context
def session_group(
    ctx: click.Context,
    storage: str,
    db_path: str | None,
    live: bool,
    api_key: str | None,
) -> None:
    """Session management commands."""
    ctx.ensure_object(dict)
    ctx.obj.setdefault("config", CoordinatorConfig())
    ctx.obj.update(storage=storage.lower(), db_path=db_path, live=live, api_key=api_key)


@session_group.command(name="start")
@click.option("--session-id", default=None, help="Explicit session ID.")
@click.option(
    "--locale",
    default="en",
    show_default=True,
    type=click.Choice(["en", "ja"]),
)
@click.option("--image-url", default="", help="URL of the uploaded product image.")
@click.option("--filename", default="", help="Original filename of the upload.")
@click.option("--mime-type", default="", help="MIME type of the upload.")
@click.option("--description", default=None, help="Initial product description.")
@click.pass_context
def session_start(
    ctx: click.Context,
    session_id: str | None,
    locale: str,
    image_url: str,
    filename: str,
    mime_type: str,
    description: str | None,
) -> None:
    """Create a new session.

    Prints the new session ID on success.
    """
    session = _run(
        ctx,
        lambda c: c.start_session(
            session_id=session_id,
            locale=locale,
            image_url=image_url,
            original_filename=filename,
            mime_type=mime_type,
            description=description,
        ),
    )
    console.print(f"[green]Session started:[/green] {session.session_id}")


@session_group.command(name="analyze")
@click.argument("session_id")
@click.pass_context
def session_analyze(ctx: click.Context, session_id: str) -> None:
    """Run the product analysis for SESSION_ID."""
    session = _run(ctx, lambda c: c.analyze_product(session_id))
    analysis = session.product.analysis
    if analysis is None:
        return
    console.print(
        f"[green]Analyzed:[/green] {analysis.product_name} "
        f"({analysis.category}, confidence {analysis.confidence:.2f})"
    )
    if analysis.summary:
        console.print(analysis.summary)


@session_group.command(name="chat")
@click.argument("session_id")
@click.argument("message")
@click.pass_context
def session_chat(ctx: click.Context, session_id: str, message: str) -> None:
    """Send MESSAGE to the current agent of SESSION_ID."""
    _print_turn(_run(ctx, lambda c: c.handle_turn(session_id, message)))


@session_group.command(name="status")
@click.argument("session_id")
@click.option("--json-output", is_flag=True, help="Output raw JSON instead of a table.")
@click.pass_context
def session_status(ctx: click.Context, session_id: str, json_output: bool) -> None:
    """Show the status of SESSION_ID."""
    status = _run(ctx, lambda c: c.get_status(session_id))
    if json_output:
        console.print_json(status.model_dump_json(by_alias=True))
        return

    table = Table(title=f"Session {status.session_id[:8]}", show_lines=True)
    table.add_column("Field", style="bold cyan")
    table.add_column("Value")

    table.add_row("status", status.status.value)
    table.add_row("current_agent", status.current_agent.display_name)
    table.add_row("next_agent", status.next_agent.display_name if status.next_agent else "-")
    table.add_row("ready_for_handoff", str(status.ready_for_handoff))
    table.add_row(
        "progress",
        f"step {status.progress.step}/{status.progress.total_steps} "
        f"({status.progress.completion_percentage:.1f}%)",
    )
    table.add_row(
        "budget",
        f"${status.costs.current:.6f} of ${status.costs.total:.2f} "
        f"({status.budget_alert_level.value})",
    )
    table.add_row(
        "health",
        f"score {status.health.performance_score:.2f}, error rate {status.health.error_rate:.2f}",
    )
    if status.expires_at:
        table.add_row("expires_at", status.expires_at.isoformat())
    console.print(table)

    if status.progress.next_actions:
        console.print("\n[bold]Next actions:[/bold]")
        for action in status.progress.next_actions:
            console.print(f"  - {action}")


@session_group.command(name="history")
@click.argument("session_id")
@click.option("--limit", default=100, show_default=True, help="Maximum messages to show.")
@click.pass_context
def session_history(ctx: click.Context, session_id: str, limit: int) -> None:
    """Show the chat history of SESSION_ID, oldest first."""
    messages = _run(ctx, lambda c: c.history(session_id, limit))
    if not messages:
        console.print("[yellow]No messages.[/yellow]")
        return
    for message in messages:
        style = "green" if message.type is MessageType.USER else "blue"
        speaker = message.agent_name or message.type.value
        stamp = f"{message.timestamp:%H:%M:%S}"
        console.print(f"[{style}]{speaker}[/{style}] [dim]{stamp}[/dim] {message.content}")


@session_group.command(name="handoff")
@click.argument("session_id")
@click.option(
    "--to",
    "target",
    default=None,
    type=click.Choice([role.value for role in AgentRole]),
    help="Receiving agent.  Defaults to the next agent in the pipeline.",
)
@click.option("--reason", default="requested", show_default=True)
@click.pass_context
def session_handoff(
    ctx: click.Context,
    session_id: str,
    target: str | None,
    reason: str,
) -> None:
    """Hand SESSION_ID to the next agent."""
    role = AgentRole(target) if target else None
    result = _run(ctx, lambda c: c.request_handoff(session_id, role, reason=reason))
    console.print(
        f"[green]Handed off to[/green] {result.session.current_agent.display_name} "
        f"[dim]({result.record.record_id})[/dim]"
    )
    for warning in result.warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")


@session_group.command(name="complete")
@click.argument("session_id")
@click.pass_context
def session_complete(ctx: click.Context, session_id: str) -> None:
    """Mark SESSION_ID as completed."""
    session = _run(ctx, lambda c: c.complete_session(session_id))
    console.print(f"[green]Session completed:[/green] {session.session_id}")


@session_group.command(name="export")
@click.argument("session_id")
@click.option(
    "--format",
    "output_format",
    default="json",
    show_default=True,
    type=click.Choice(["json", "yaml"], case_sensitive=False),
)
@click.option("--output", "-o", default=None, help="Write to this file instead of stdout.")
@click.pass_context
def session_export(
    ctx: click.Context,
    session_id: str,
    output_format: str,
    output: str | None,
) -> None:
    """Export SESSION_ID with its messages and handoff audit trail."""
    data = _run(ctx, lambda c: c.export(session_id))
    if output_format == "yaml":
        text = yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
    else:
        text = json.dumps(data, indent=2, ensure_ascii=False)
    if output:
        Path(output).write_text(text, encoding="utf-8")
        console.print(f"[green]Exported to[/green] {output}")
    else:
        click.echo(text)


@session_group.command(name="demo")
@click.option("--auto-handoff", is_flag=True, help="Hand off as soon as the session is ready.")
@click.pass_context
def session_demo(ctx: click.Context, auto_handoff: bool) -> None:
    """Run analysis, a scripted conversation and a handoff in one process."""
    if auto_handoff:
        config: CoordinatorConfig = ctx.obj["config"]
        ctx.obj["config"] = replace(
            config, handoff=replace(config.handoff, auto_handoff=True)
        )

    async def demo(coordinator: SessionCoordinator) -> None:
        session = await coordinator.start_session(
            image_url="gs://demo/headphones.png",
            original_filename="headphones.png",
            mime_type="image/png",
        )
        console.print(f"[green]Session started:[/green] {session.session_id}")
        session = await coordinator.analyze_product(session.session_id)
        console.print(f"[green]Analyzed:[/green] {session.product.analysis.product_name}")
        handed_off = False
        for message in _DEMO_MESSAGES:
            console.print(f"[bold]user:[/bold] {message}")
            outcome = await coordinator.handle_turn(session.session_id, message)
            _print_turn(outcome)
            handed_off = handed_off or (outcome.handoff is not None and outcome.handoff.succeeded)
        if not handed_off:
            result = await coordinator.request_handoff(session.session_id)
            console.print(
                f"[green]Handed off to[/green] {result.session.current_agent.display_name}"
            )
        status = await coordinator.get_status(session.session_id)
        console.print(
            f"[bold]Final:[/bold] {status.current_agent.display_name}, "
            f"${status.costs.current:.6f} spent"
        )

    _run(ctx, demo)


if __name__ == "__main__":
    cli()
