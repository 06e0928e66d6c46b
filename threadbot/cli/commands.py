"""CLI commands for threadbot."""

import asyncio
import os
import sys
from datetime import datetime
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from threadbot import __logo__, __version__
from threadbot.utils.helpers import ensure_dir

app = typer.Typer(
    name="threadbot",
    help=f"{__logo__} threadbot - WhatsApp relay for hosted assistants",
    no_args_is_help=True,
)
sessions_app = typer.Typer(help="Manage user sessions")
app.add_typer(sessions_app, name="sessions")

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} threadbot v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """threadbot - WhatsApp relay for hosted assistants."""
    pass


def _configure_logging(config, verbose: bool = False, level: str | None = None) -> None:
    level = "DEBUG" if verbose else (level or config.logging.level)
    logger.remove()
    logger.add(sys.stderr, level=level)
    if config.logging.file_enabled:
        log_dir = ensure_dir(config.data_path / "logs")
        logger.add(
            log_dir / "threadbot.log",
            level=level,
            rotation=config.logging.rotation,
            retention=config.logging.retention,
            encoding="utf-8",
        )


def _build_orchestrator(config):
    """Wire store, backend, driver and orchestrator from config."""
    from threadbot.agent.knowledge import KnowledgeBase
    from threadbot.agent.orchestrator import ConversationOrchestrator
    from threadbot.agent.run_driver import RunDriver
    from threadbot.audit.logger import ConversationLogger
    from threadbot.providers.assistant import OpenAIAssistantClient
    from threadbot.providers.media import MediaPipeline
    from threadbot.session.store import SessionStore

    api_key = config.assistant.api_key or os.environ.get("OPENAI_API_KEY", "")
    backend = OpenAIAssistantClient(
        api_key=api_key,
        assistant_id=config.assistant.assistant_id or None,
        api_base=config.assistant.api_base,
        timeout_s=config.assistant.request_timeout_s,
    )
    if not backend.is_configured():
        console.print("[red]Error: assistant.apiKey and assistant.assistantId must be configured[/red]")
        console.print(f"Set them in {_config_path()} or via OPENAI_API_KEY / OPENAI_ASSISTANT_ID")
        raise typer.Exit(1)

    store = SessionStore(config.sessions_path)
    driver = RunDriver(
        backend,
        poll_interval_s=config.assistant.poll_interval_s,
        max_attempts=config.assistant.max_attempts,
    )

    knowledge = None
    if config.knowledge.enabled:
        knowledge = KnowledgeBase(max_chars=config.knowledge.max_chars)
        knowledge.load(config.knowledge_path)

    conversation_log = None
    if config.logging.conversation_log:
        conversation_log = ConversationLogger(config.conversation_log_path)

    orchestrator = ConversationOrchestrator(
        store=store,
        driver=driver,
        backend=backend,
        config=config.conversation,
        media=MediaPipeline.from_config(config.media, api_key=api_key, api_base=config.assistant.api_base),
        knowledge=knowledge,
        knowledge_template=config.knowledge.template,
        conversation_log=conversation_log,
    )
    return orchestrator, backend


def _config_path() -> Path:
    from threadbot.config.loader import get_config_path

    return get_config_path()


# ============================================================================
# Setup
# ============================================================================


@app.command()
def onboard():
    """Write a default configuration file."""
    from threadbot.config.loader import save_config
    from threadbot.config.schema import Config

    path = _config_path()
    if path.exists():
        console.print(f"[yellow]Config already exists at {path}[/yellow]")
        if not typer.confirm("Overwrite with defaults?", default=False):
            raise typer.Exit()

    config = Config()
    save_config(config, path)
    ensure_dir(config.data_path)
    console.print(f"[green]✓[/green] Created config at {path}")
    console.print("\nNext steps:")
    console.print("  1. Set [cyan]assistant.apiKey[/cyan] and [cyan]assistant.assistantId[/cyan]")
    console.print("  2. Set [cyan]channels.whatsapp.bridgeAuthToken[/cyan] and [cyan]allowFrom[/cyan]")
    console.print("  3. Run [cyan]threadbot gateway[/cyan]")


# ============================================================================
# Gateway
# ============================================================================


@app.command()
def gateway(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Start the WhatsApp relay."""
    from threadbot.bus.queue import InboundQueue
    from threadbot.channels.whatsapp import WhatsAppChannel
    from threadbot.config.loader import load_config

    config = load_config()
    _configure_logging(config, verbose=verbose)

    if not config.channels.whatsapp.enabled:
        console.print("[red]Error: channels.whatsapp.enabled is false[/red]")
        raise typer.Exit(1)
    if not config.channels.whatsapp.bridge_auth_token.strip():
        console.print("[red]Error: channels.whatsapp.bridgeAuthToken must be set[/red]")
        raise typer.Exit(1)

    console.print(f"{__logo__} Starting threadbot gateway...")
    orchestrator, backend = _build_orchestrator(config)
    console.print(f"[green]✓[/green] Sessions loaded: {len(orchestrator.store)}")

    async def run():
        queue = InboundQueue(
            handler=orchestrator.handle_payload,
            debounce_s=config.queue.debounce_s,
            media_gap_s=config.queue.media_gap_s,
        )
        channel = WhatsAppChannel(config.channels.whatsapp, queue)
        queue.deliver = channel.deliver
        if orchestrator.conversation_log is not None:
            orchestrator.conversation_log.log_event("gateway_started", {"sessions": len(orchestrator.store)})
        try:
            await channel.start()
        finally:
            await channel.stop()
            await queue.close()
            await backend.aclose()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\nShutting down...")


# ============================================================================
# Local chat
# ============================================================================


@app.command()
def chat(
    message: str = typer.Option(None, "--message", "-m", help="Message to send (interactive if omitted)"),
    user: str = typer.Option("cli:local", "--user", "-u", help="User id to chat as"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Talk to the assistant from the terminal, using the same session registry."""
    from threadbot.config.loader import load_config

    config = load_config()
    _configure_logging(config, verbose=verbose, level="WARNING")
    orchestrator, backend = _build_orchestrator(config)

    async def run_once(text: str) -> None:
        reply = await orchestrator.handle_turn(user, text)
        console.print(f"\n{__logo__} {reply}\n")

    async def run_interactive() -> None:
        console.print(f"{__logo__} Interactive mode (Ctrl+C to exit)\n")
        try:
            while True:
                text = await asyncio.to_thread(typer.prompt, "You")
                if text.strip():
                    await run_once(text)
        except (KeyboardInterrupt, EOFError, typer.Abort):
            console.print("\nGoodbye!")

    async def run() -> None:
        try:
            if message:
                await run_once(message)
            else:
                await run_interactive()
        finally:
            await backend.aclose()

    asyncio.run(run())


# ============================================================================
# Status / sessions
# ============================================================================


@app.command()
def status():
    """Show configuration and session status."""
    from threadbot.audit.logger import ConversationLogger
    from threadbot.config.loader import load_config
    from threadbot.session.store import SessionStore

    config = load_config()
    path = _config_path()

    console.print(f"{__logo__} threadbot Status\n")
    console.print(f"Config: {path} {'[green]✓[/green]' if path.exists() else '[red]✗[/red]'}")
    api_key = config.assistant.api_key or os.environ.get("OPENAI_API_KEY", "")
    console.print(f"API key: {'[green]✓[/green]' if api_key else '[dim]not set[/dim]'}")
    console.print(f"Assistant: {config.assistant.assistant_id or '[dim]not set[/dim]'}")
    wa = config.channels.whatsapp
    console.print(
        f"WhatsApp: {'[green]enabled[/green]' if wa.enabled else '[dim]disabled[/dim]'} "
        f"({wa.bridge_url}, token {'configured' if wa.bridge_auth_token else 'missing'})"
    )
    console.print(f"Debounce: {config.queue.debounce_s:.1f}s, poll: {config.assistant.poll_interval_s:.1f}s x {config.assistant.max_attempts}")

    store = SessionStore(config.sessions_path)
    console.print(f"Sessions: {len(store)}")

    recent = ConversationLogger(config.conversation_log_path).load_recent(limit=5)
    if recent:
        table = Table(title="Recent turns")
        table.add_column("When", style="cyan")
        table.add_column("User")
        table.add_column("Type")
        table.add_column("OK")
        table.add_column("ms", justify="right")
        for row in recent:
            when = datetime.fromtimestamp(float(row.get("ts") or 0)).strftime("%Y-%m-%d %H:%M:%S")
            table.add_row(
                when,
                str(row.get("user") or ""),
                str(row.get("media_type") or "text"),
                "✓" if row.get("ok") else "✗",
                str(row.get("ms") or ""),
            )
        console.print(table)


@sessions_app.command("list")
def sessions_list():
    """List stored user sessions."""
    from threadbot.config.loader import load_config
    from threadbot.session.store import SessionStore

    config = load_config()
    store = SessionStore(config.sessions_path)
    rows = store.list_sessions()
    if not rows:
        console.print("No sessions.")
        return

    table = Table(title="Sessions")
    table.add_column("User", style="cyan")
    table.add_column("Thread")
    for row in rows:
        table.add_row(row["user_id"], row["session_id"])
    console.print(table)


@sessions_app.command("reset")
def sessions_reset(
    user: str = typer.Option(None, "--user", "-u", help="Reset only this user"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Forget sessions so users start on a fresh thread."""
    from threadbot.config.loader import load_config
    from threadbot.session.store import SessionStore

    config = load_config()
    store = SessionStore(config.sessions_path)

    if user:
        if user not in store:
            console.print(f"[yellow]No session for {user}[/yellow]")
            return
        store.remove(user)
        console.print(f"[green]✓[/green] Reset session for {user}")
        return

    if not yes and not typer.confirm(f"Reset all {len(store)} session(s)?", default=False):
        raise typer.Exit()
    count = store.reset_all()
    console.print(f"[green]✓[/green] Reset {count} session(s)")


if __name__ == "__main__":
    app()
