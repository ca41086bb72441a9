"""CLI command definitions using Click."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any

import click
from rich.logging import RichHandler

from assistant_core import __version__
from assistant_core.backend import describe_provider
from assistant_core.config import ConfigManager
from assistant_core.credentials import KEY_NAMES, CredentialError, CredentialStore
from assistant_core.display import Display
from assistant_core.engine import AssistantEngine
from assistant_core.indexer import IndexerError
from assistant_core.models import ExchangeOutcome
from assistant_core.providers import PROVIDERS, build_provider
from assistant_core.session import SessionNotFoundError


def setup_logging(verbose: bool = False) -> None:
    """Route log records through rich, WARNING by default and DEBUG when verbose."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=verbose, show_path=verbose)],
        force=True,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def _engine(ctx: click.Context) -> AssistantEngine:
    return AssistantEngine(ctx.obj["config"], credentials=ctx.obj["credentials"])


@click.group(invoke_without_command=True)
@click.option("--provider", "-p", default=None, type=click.Choice(sorted(PROVIDERS)),
              help="Provider for this invocation")
@click.option("--model", "-m", default=None, help="Override model for this invocation")
@click.option("--max-tokens", type=int, default=None, help="Output token cap")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.option("--config", "-c", "config_path", default=None, help="Custom config file")
@click.version_option(__version__, prog_name="assistant-core")
@click.pass_context
def main(
    ctx: click.Context,
    provider: str | None,
    model: str | None,
    max_tokens: int | None,
    verbose: bool,
    config_path: str | None,
) -> None:
    """Assistant Core: chat with a model and let it edit your project."""
    overrides: dict[str, Any] = {}
    if provider:
        overrides["provider"] = provider
    if max_tokens is not None:
        overrides["max_tokens"] = max_tokens
    if verbose:
        overrides["verbose"] = True

    config = ConfigManager(config_path=config_path, cli_overrides=overrides)
    if model:
        active = config.settings.provider
        config.set_override("models", {active: model})

    setup_logging(verbose or bool(config.get("verbose")))

    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["display"] = Display()
    ctx.obj["credentials"] = CredentialStore()

    if ctx.invoked_subcommand is None:
        from assistant_core.repl import ReplSession

        repl = ReplSession(_engine(ctx), ctx.obj["display"])
        asyncio.run(repl.run())


@main.command()
@click.argument("message")
@click.option("--image", "-i", "image_path", default=None,
              type=click.Path(exists=True, dir_okay=False), help="Attach a PNG image")
@click.option("--index", "index_dir", default=None,
              type=click.Path(exists=True, file_okay=False), help="Project directory for context and edits")
@click.option("--no-stream", is_flag=True, help="Disable streaming")
@click.option("--save", "save_title", default=None, help="Archive the exchange under this title")
@click.pass_context
def ask(
    ctx: click.Context,
    message: str,
    image_path: str | None,
    index_dir: str | None,
    no_stream: bool,
    save_title: str | None,
) -> None:
    """Send a one-shot message; edits in the reply are applied."""
    config: ConfigManager = ctx.obj["config"]
    display: Display = ctx.obj["display"]
    if no_stream:
        config.set_override("streaming", False)

    tokens: list[str] = []

    def on_token(token: str) -> None:
        tokens.append(token)
        display.print_token(token)

    async def run() -> ExchangeOutcome:
        engine = _engine(ctx)
        try:
            if index_dir:
                display.print_index_summary(await engine.index_project(index_dir))
            if image_path:
                engine.attach_image(image_path)
            outcome = await engine.submit(message, on_token=on_token)
            if save_title is not None and outcome.status != ExchangeOutcome.REJECTED:
                engine.archive_draft(save_title or None)
            return outcome
        finally:
            await engine.aclose()

    try:
        outcome = asyncio.run(run())
    except IndexerError as e:
        display.print_error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        display.print_info("Cancelled.")
        sys.exit(130)

    streamed = bool(tokens)
    if streamed:
        display.end_stream()
    display.print_outcome(outcome, streamed=streamed)
    if outcome.status in (ExchangeOutcome.ERROR, ExchangeOutcome.REJECTED):
        sys.exit(1)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@main.group("sessions")
@click.pass_context
def sessions_cmd(ctx: click.Context) -> None:
    """Manage saved sessions."""


@sessions_cmd.command("list")
@click.argument("query", required=False, default="")
@click.pass_context
def sessions_list(ctx: click.Context, query: str) -> None:
    """List saved sessions, optionally filtered by QUERY."""
    engine = _engine(ctx)
    ctx.obj["display"].print_sessions(
        engine.search_sessions(query), active_id=engine.draft.active_session_id
    )
    engine.persistence.close()


@sessions_cmd.command("show")
@click.argument("session_id")
@click.pass_context
def sessions_show(ctx: click.Context, session_id: str) -> None:
    """Print the messages of a saved session."""
    display: Display = ctx.obj["display"]
    engine = _engine(ctx)
    try:
        session = engine.archive.get(session_id)
    except SessionNotFoundError as e:
        display.print_error(str(e))
        sys.exit(1)
    finally:
        engine.persistence.close()
    display.print_info(f"[bold]{session.title}[/bold] ({session.id})")
    display.print_conversation(session.messages)


@sessions_cmd.command("delete")
@click.argument("session_id")
@click.pass_context
def sessions_delete(ctx: click.Context, session_id: str) -> None:
    """Delete a saved session."""
    display: Display = ctx.obj["display"]
    engine = _engine(ctx)
    try:
        session = engine.delete_session(session_id)
    except SessionNotFoundError as e:
        display.print_error(str(e))
        sys.exit(1)
    finally:
        engine.persistence.close()
    display.print_success(f"Deleted '{session.title}'")


@sessions_cmd.command("rename")
@click.argument("session_id")
@click.argument("title")
@click.pass_context
def sessions_rename(ctx: click.Context, session_id: str, title: str) -> None:
    """Rename a saved session."""
    display: Display = ctx.obj["display"]
    engine = _engine(ctx)
    try:
        session = engine.rename_session(session_id, title)
    except (SessionNotFoundError, ValueError) as e:
        display.print_error(str(e))
        sys.exit(1)
    finally:
        engine.persistence.close()
    display.print_success(f"Renamed to '{session.title}'")


# ---------------------------------------------------------------------------
# Providers and credentials
# ---------------------------------------------------------------------------


@main.command("providers")
@click.pass_context
def providers_cmd(ctx: click.Context) -> None:
    """List providers, their models and whether they are configured."""
    config: ConfigManager = ctx.obj["config"]
    credentials: CredentialStore = ctx.obj["credentials"]
    settings = config.settings

    rows: list[dict[str, Any]] = []
    for name in sorted(PROVIDERS):
        provider = build_provider(
            name,
            api_key=credentials.get_key(name),
            model=settings.models.get(name),
            local_url=settings.local_url,
        )
        info = describe_provider(provider)
        info["configured"] = provider.missing_configuration() is None
        rows.append(info)
    ctx.obj["display"].print_providers(rows, active=settings.provider)


@main.group()
@click.pass_context
def auth(ctx: click.Context) -> None:
    """Manage provider API keys."""


@auth.command("set")
@click.argument("provider", type=click.Choice(sorted(KEY_NAMES)))
@click.argument("key", required=False)
@click.pass_context
def auth_set(ctx: click.Context, provider: str, key: str | None) -> None:
    """Store the API key for PROVIDER (prompted when omitted)."""
    display: Display = ctx.obj["display"]
    credentials: CredentialStore = ctx.obj["credentials"]
    if not key:
        key = click.prompt(f"{provider} API key", hide_input=True)
    try:
        credentials.save_key(provider, key.strip())
    except CredentialError as e:
        display.print_error(str(e))
        sys.exit(1)
    display.print_success(f"Saved {credentials.key_name(provider)} to ~/.assistant-core/.env")


@auth.command("status")
@click.pass_context
def auth_status(ctx: click.Context) -> None:
    """Show which providers have a key configured."""
    display: Display = ctx.obj["display"]
    credentials: CredentialStore = ctx.obj["credentials"]
    for provider, configured in credentials.status().items():
        if configured:
            display.print_success(f"{provider}: key set")
        else:
            display.print_info(f"{provider}: no key ({credentials.key_name(provider)})")

    perms = credentials.get_permissions()
    if perms is not None and perms != 0o600:
        display.print_warning(f".env permissions are {oct(perms)}; expected 0o600")
