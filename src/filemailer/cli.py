# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Command-line interface for filemailer.

Usage:
    filemailer serve [--host 0.0.0.0] [--port 8080]
    filemailer bot
    filemailer init-db
    filemailer users list [--json]
    filemailer changes list [--all] [--json]

Every command reads ``config.ini`` (or ``--config``) with environment
variable fallbacks, see :mod:`filemailer.config`.

Example:
    $ filemailer --db /tmp/fm.db init-db
    $ filemailer --db /tmp/fm.db changes list --all
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import sys
from typing import Any, Optional

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import Settings, load_settings
from .errors import ConfigurationError
from .logger import configure_logging
from .persistence import Persistence

console = Console()
err_console = Console(stderr=True)


def run_async(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    err_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_json(data: Any) -> None:
    """Print data as formatted JSON."""
    console.print_json(json.dumps(data, indent=2, default=str))


def _settings(ctx: click.Context) -> Settings:
    return ctx.obj["settings"]


def _persistence(ctx: click.Context) -> Persistence:
    return Persistence(_settings(ctx).db_path)


@click.group()
@click.version_option(__version__)
@click.option("--config", "-c", "config_path", default=None, help="Path to config.ini (default: $FM_CONFIG or config.ini).")
@click.option("--db", "db_path", default=None, help="Override the SQLite database path.")
@click.pass_context
def main(ctx: click.Context, config_path: Optional[str], db_path: Optional[str]) -> None:
    """filemailer CLI - Deliver files from links to e-mail."""
    try:
        settings = load_settings(config_path)
    except ConfigurationError as exc:
        print_error(str(exc))
        sys.exit(1)
    if db_path:
        settings = dataclasses.replace(settings, db_path=db_path)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


@main.command("serve")
@click.option("--host", "-h", default=None, help="Host to bind to (default from settings).")
@click.option("--port", "-p", type=int, default=None, help="Port to listen on (default from settings).")
@click.pass_context
def serve(ctx: click.Context, host: Optional[str], port: Optional[int]) -> None:
    """Run the HTTP delivery service."""
    import uvicorn

    from .server import build_app

    settings = _settings(ctx)
    configure_logging(settings.log_level)
    uvicorn.run(
        build_app(settings),
        host=host or settings.http_host,
        port=port or settings.http_port,
        log_level=settings.log_level.lower(),
    )


@main.command("bot")
@click.pass_context
def bot(ctx: click.Context) -> None:
    """Run the Telegram bot (long polling)."""
    from .bot import run_bot

    settings = _settings(ctx)
    configure_logging(settings.log_level)
    try:
        run_async(run_bot(settings))
    except ConfigurationError as exc:
        print_error(str(exc))
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("[dim]Bot stopped.[/dim]")


@main.command("init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create the database schema."""
    persistence = _persistence(ctx)
    run_async(persistence.init_db())
    print_success(f"Database ready at {persistence.db_path}")


@main.group("users", invoke_without_command=True)
@click.pass_context
def users(ctx: click.Context) -> None:
    """Inspect registered users."""
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@users.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def users_list(ctx: click.Context, as_json: bool) -> None:
    """List registered users (access tokens are never shown)."""
    persistence = _persistence(ctx)

    async def _list():
        await persistence.init_db()
        return await persistence.list_users()

    user_list = run_async(_list())

    if as_json:
        print_json(user_list)
        return

    if not user_list:
        console.print("[dim]No users found.[/dim]")
        return

    table = Table(title="Users")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("E-mail")
    table.add_column("Chat ID", justify="right")
    table.add_column("Username")
    table.add_column("Created")

    for u in user_list:
        table.add_row(
            str(u["id"]),
            u["email"],
            str(u.get("telegram_id") or "-"),
            u.get("username") or "-",
            u.get("created_at") or "-",
        )

    console.print(table)


@main.group("changes", invoke_without_command=True)
@click.pass_context
def changes(ctx: click.Context) -> None:
    """Inspect e-mail change requests."""
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@changes.command("list")
@click.option("--all", "-a", "show_all", is_flag=True, help="Include approved and rejected requests.")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def changes_list(ctx: click.Context, show_all: bool, as_json: bool) -> None:
    """List change requests, pending only by default."""
    persistence = _persistence(ctx)

    async def _list():
        await persistence.init_db()
        return await persistence.list_change_requests(None if show_all else "pending")

    request_list = run_async(_list())

    if as_json:
        print_json(request_list)
        return

    if not request_list:
        console.print("[dim]No change requests found.[/dim]")
        return

    status_style = {"pending": "yellow", "approved": "green", "rejected": "red"}
    table = Table(title="Change requests")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("User", justify="right")
    table.add_column("Old e-mail")
    table.add_column("New e-mail")
    table.add_column("Status")
    table.add_column("Created")
    table.add_column("Processed")

    for r in request_list:
        style = status_style.get(r["status"], "white")
        table.add_row(
            str(r["id"]),
            str(r["user_id"]),
            r["old_email"],
            r["new_email"],
            f"[{style}]{r['status']}[/{style}]",
            r["created_at"],
            r.get("processed_at") or "-",
        )

    console.print(table)


if __name__ == "__main__":
    main()
