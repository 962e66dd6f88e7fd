"""Command line interface for Tern."""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer

from tern import __version__
from tern.agent.runtime import AgentRuntime
from tern.cli.render import Renderer
from tern.config import Settings, load_settings
from tern.errors import ConfigurationError
from tern.events import OutboundKind, OutboundMessage
from tern.logging_utils import configure_logging
from tern.memory import LONG_TERM_TEMPLATE
from tern.providers.registry import PROVIDERS, provider_keys, resolve_provider
from tern.session.store import FileSessionStore

EXIT_COMMANDS = frozenset({"exit", "quit", ":q"})

WORKSPACE_TEMPLATES = {
    "AGENTS.md": "# Agent Instructions\n\nYou are a helpful AI assistant. Be concise and accurate.\n",
    "SOUL.md": "# Soul\n\nI am tern, a lightweight AI assistant.\n",
    "USER.md": "# User\n\nRecord user preferences and context here.\n",
}

app = typer.Typer(name="tern", help="A single-agent conversational runtime.", add_completion=False)


def _settings(workspace: Path | None, model: str | None = None) -> Settings:
    return load_settings(workspace, model=model)


@app.command()
def version() -> None:
    """Show the version."""
    typer.echo(f"tern v{__version__}")


@app.command()
def onboard(
    workspace: Path | None = typer.Option(None, "--workspace", "-w", help="Workspace root"),  # noqa: B008
) -> None:
    """Create the workspace and its template files."""
    settings = _settings(workspace)
    root = settings.resolve_workspace()
    root.mkdir(parents=True, exist_ok=True)
    typer.echo(f"Workspace: {root}")

    for name, content in WORKSPACE_TEMPLATES.items():
        path = root / name
        if not path.exists():
            path.write_text(content, encoding="utf-8")
            typer.echo(f"Created {path}")

    memory_file = root / "memory" / "MEMORY.md"
    if not memory_file.exists():
        memory_file.parent.mkdir(parents=True, exist_ok=True)
        memory_file.write_text(LONG_TERM_TEMPLATE, encoding="utf-8")
        typer.echo(f"Created {memory_file}")

    settings.sessions_path.mkdir(parents=True, exist_ok=True)
    typer.echo("tern is ready. Set TERN_API_KEY, then run: tern agent -m \"Hello!\"")


@app.command()
def status(
    workspace: Path | None = typer.Option(None, "--workspace", "-w", help="Workspace root"),  # noqa: B008
) -> None:
    """Show configuration status."""
    settings = _settings(workspace)
    root = settings.resolve_workspace()
    typer.echo(f"Workspace: {root} {'OK' if root.exists() else 'MISSING'}")
    typer.echo(f"Sessions: {settings.sessions_path}")
    typer.echo(f"Model: {settings.model}")
    typer.echo(f"API base: {settings.api_base or '(default)'}")
    typer.echo(f"API key: {'SET' if settings.api_key else 'NOT SET'}")
    try:
        resolved = resolve_provider(settings)
    except ConfigurationError as exc:
        typer.echo(f"Provider: {exc}")
    else:
        typer.echo(f"Provider: {resolved.name} (model {resolved.model})")
    keys = provider_keys(settings)
    for spec in PROVIDERS:
        label = spec.label if spec.is_local else f"{spec.label} API"
        typer.echo(f"{label}: {'SET' if keys[spec.name] else 'NOT SET'}")
    typer.echo(f"Web search key: {'SET' if settings.web_search_api_key else 'NOT SET'}")
    typer.echo(f"Max rounds: {settings.max_rounds if settings.max_rounds is not None else 'unlimited'}")


@app.command()
def sessions(
    workspace: Path | None = typer.Option(None, "--workspace", "-w", help="Workspace root"),  # noqa: B008
) -> None:
    """List stored sessions."""
    settings = _settings(workspace)
    names = asyncio.run(FileSessionStore(settings.sessions_path).list_sessions())
    if not names:
        typer.echo("(no sessions)")
        return
    for name in names:
        typer.echo(name)


@app.command()
def agent(
    message: str | None = typer.Option(None, "--message", "-m", help="Send one message and exit"),
    session_id: str = typer.Option("cli:default", "--session", "-s", help="Session id"),
    workspace: Path | None = typer.Option(None, "--workspace", "-w", help="Workspace root"),  # noqa: B008
    model: str | None = typer.Option(None, "--model", help="Model override"),
) -> None:
    """Chat with the agent, once with --message or interactively."""
    settings = _settings(workspace, model)
    configure_logging(profile="chat", log_file=settings.log_path)
    renderer = Renderer()
    try:
        runtime = AgentRuntime(settings)
    except ConfigurationError as exc:
        renderer.error(str(exc))
        raise typer.Exit(1) from exc

    if message is not None:
        reply = asyncio.run(_run_once(runtime, renderer, session_id, message))
        if reply.kind == OutboundKind.ERROR:
            raise typer.Exit(1)
        return

    renderer.welcome(settings.model, str(runtime.workspace), session_id)
    asyncio.run(_run_interactive(runtime, renderer, session_id))


async def _run_once(runtime: AgentRuntime, renderer: Renderer, session_id: str, text: str) -> OutboundMessage:
    async def _print(outbound: OutboundMessage) -> None:
        renderer.outbound(outbound)

    runtime.subscribe(_print)
    async with runtime:
        return await runtime.submit(session_id, text)


async def _run_interactive(runtime: AgentRuntime, renderer: Renderer, session_id: str) -> None:
    async def _print(outbound: OutboundMessage) -> None:
        renderer.outbound(outbound)

    runtime.subscribe(_print)
    async with runtime:
        while True:
            try:
                text = (await renderer.get_user_input()).strip()
            except (EOFError, KeyboardInterrupt):
                renderer.info("[dim]bye[/dim]")
                return
            if not text:
                continue
            if text.lower() in EXIT_COMMANDS:
                renderer.info("[dim]bye[/dim]")
                return
            await runtime.submit(session_id, text)
