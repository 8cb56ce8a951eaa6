"""Command-line interface for browsing an encrypted WeChat archive."""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Annotated, Any, Optional

import structlog
import typer
from rich.console import Console
from rich.table import Table

from .config import Settings, get_settings
from .enrich import to_transcript
from .session import ArchiveSession

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(help="Read-only browser for encrypted WeChat chat archives.", no_args_is_help=True)

_LOGGING_CONFIGURED = False

KeyOption = Annotated[
    str,
    typer.Option("--key", "-k", envvar="WECHAT_ARCHIVE_KEY", help="Database key (hex, optional 0x prefix)."),
]
RootOption = Annotated[
    Optional[Path],
    typer.Option("--root", help="Archive root directory; defaults to ARCHIVE_ROOT."),
]
JsonOption = Annotated[bool, typer.Option("--json", help="Emit JSON instead of a table.")]


def configure_logging(settings: Settings) -> None:
    """Initialize structlog and stdlib logging formatting."""
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
    ]
    if settings.log_json_enabled:
        processors.append(structlog.processors.JSONRenderer())
    elif settings.log_rich_enabled:
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.KeyValueRenderer(key_order=["event", "level"]))
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(level=level)
    _LOGGING_CONFIGURED = True


def _open_session(key: str, root: Path | None) -> ArchiveSession:
    settings = get_settings()
    if root is not None:
        settings = replace(settings, archive=replace(settings.archive, root=str(root)))
    configure_logging(settings)
    session = ArchiveSession(settings)
    if not session.init_session(key):
        reason = str(session.last_error) if session.last_error else "session could not be initialised"
        err_console.print(f"[bold red]Cannot open archive:[/bold red] {reason}")
        raise typer.Exit(code=1)
    return session


def _print_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, ensure_ascii=False, default=str))


@app.command()
def info(key: KeyOption, root: RootOption = None) -> None:
    """Show the resolved profile and a per-shard summary of the conversation index."""
    with _open_session(key, root) as session:
        profile = session.profile
        index = session.index
        assert profile is not None and index is not None
        console.print(f"[bold]Profile:[/bold] {profile.profile_id}")
        console.print(f"[bold]Root:[/bold] {profile.root}")
        table = Table(title="Message shards")
        table.add_column("Shard")
        table.add_column("Tables", justify="right")
        for shard, tables in index.by_shard().items():
            table.add_row(shard.name, str(len(tables)))
        for shard in index.failed:
            table.add_row(f"[red]{shard.name}[/red]", "unreadable")
        console.print(table)


@app.command()
def tables(key: KeyOption, root: RootOption = None, as_json: JsonOption = False) -> None:
    """List every indexed conversation table and the shard that holds it."""
    with _open_session(key, root) as session:
        entries = session.conversation_tables()
        if as_json:
            _print_json([{"table": entry.name, "shard": entry.shard.name} for entry in entries])
            return
        table = Table(title=f"Conversation tables ({len(entries)})")
        table.add_column("Table")
        table.add_column("Shard")
        for entry in entries:
            table.add_row(entry.name, entry.shard.name)
        console.print(table)


@app.command()
def contacts(
    key: KeyOption,
    root: RootOption = None,
    nickname_filter: Annotated[Optional[str], typer.Option("--filter", "-f", help="Substring of the display name.")] = None,
    as_json: JsonOption = False,
) -> None:
    """List contacts, groups and unresolved conversations."""
    with _open_session(key, root) as session:
        records = session.list_contacts(nickname_filter)
        if as_json:
            _print_json([record.to_dict() for record in records])
            return
        table = Table(title=f"Contacts ({len(records)})")
        table.add_column("Name")
        table.add_column("Kind")
        table.add_column("Identifier")
        table.add_column("Digest", style="dim")
        for record in records:
            table.add_row(record.display_name, record.kind.value, record.identifier, record.digest)
        console.print(table)


@app.command()
def messages(
    digest: Annotated[str, typer.Argument(help="Conversation digest (md5 of the contact identifier).")],
    key: KeyOption,
    root: RootOption = None,
    start: Annotated[Optional[int], typer.Option(help="Earliest unix timestamp (inclusive).")] = None,
    end: Annotated[Optional[int], typer.Option(help="Latest unix timestamp (inclusive).")] = None,
    raw: Annotated[bool, typer.Option("--raw", help="Skip sender resolution and type labels.")] = False,
    transcript: Annotated[bool, typer.Option("--transcript", help="Print a plain-text transcript, one line per message.")] = False,
    as_json: JsonOption = False,
) -> None:
    """Show a conversation in ascending time order."""
    with _open_session(key, root) as session:
        if raw:
            rows = session.list_messages(digest, start, end)
            if as_json:
                _print_json([row.to_dict() for row in rows])
                return
            table = Table(title=f"Messages ({len(rows)})")
            table.add_column("Time", justify="right")
            table.add_column("Self")
            table.add_column("Type", justify="right")
            table.add_column("Content", overflow="fold")
            for row in rows:
                table.add_row(str(row.timestamp), "yes" if row.sender_is_self else "", str(row.type_code), row.content)
            console.print(table)
            return

        enriched = session.list_enriched_messages(digest, start, end)
        if transcript:
            console.print(to_transcript(enriched), markup=False, highlight=False, soft_wrap=True)
            return
        if as_json:
            _print_json([item.to_dict() for item in enriched])
            return
        table = Table(title=f"Messages ({len(enriched)})")
        table.add_column("Time")
        table.add_column("From")
        table.add_column("Type")
        table.add_column("Content", overflow="fold")
        for item in enriched:
            sender = "me" if item.sender_is_self else (item.sender_name or "")
            table.add_row(item.datetime, sender, item.type_label, item.content)
        console.print(table)


@app.command()
def search(
    keyword: Annotated[str, typer.Argument(help="Text to look for in message content.")],
    key: KeyOption,
    root: RootOption = None,
) -> None:
    """Find the first conversation table containing a keyword."""
    with _open_session(key, root) as session:
        table_name = session.search_keyword(keyword)
        if table_name is None:
            console.print("[yellow]No match.[/yellow]")
            raise typer.Exit(code=1)
        console.print(table_name)


@app.command()
def member(
    identifier: Annotated[str, typer.Argument(help="Group member identifier.")],
    key: KeyOption,
    root: RootOption = None,
) -> None:
    """Look up a group member's display name and avatar."""
    with _open_session(key, root) as session:
        found = session.lookup_group_member(identifier)
        if found is None:
            console.print("[yellow]Not found.[/yellow]")
            raise typer.Exit(code=1)
        _print_json(found.to_dict())


@app.command()
def members(
    key: KeyOption,
    root: RootOption = None,
    as_json: JsonOption = False,
) -> None:
    """List every known group member and their nickname."""
    with _open_session(key, root) as session:
        names = session.group_member_names()
        if as_json:
            _print_json(names)
            return
        table = Table(title=f"Group members ({len(names)})")
        table.add_column("Identifier")
        table.add_column("Nickname")
        for identifier, nickname in sorted(names.items()):
            table.add_row(identifier, nickname)
        console.print(table)
