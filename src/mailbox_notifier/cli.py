# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Command-line interface for the mailbox notifier.

Usage:
    mailbox-notifier serve [--config config.ini] [--host 0.0.0.0] [--port 8000]
    mailbox-notifier check imap.example.com:993 me@example.com [--mailbox INBOX]
    mailbox-notifier config [--config config.ini]

Example:
    $ mailbox-notifier check imap.example.com me@example.com
    Password:
    ✓ INBOX on imap.example.com:993 holds 1234 messages
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import asdict
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from .config_loader import ENV_PREFIX, load_settings
from .errors import MailboxError
from .imap import MailConnection, MailboxStatus
from .models import split_host

console = Console()
err_console = Console(stderr=True)

_SECRET_FIELDS = {"api_token", "telegram_token"}


def run_async(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    err_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    console.print(f"[green]✓[/green] {message}")


@click.group()
@click.version_option(package_name="mailbox-notifier")
def main() -> None:
    """Watch IMAP mailboxes and notify chat users about matching mail."""


@main.command("serve")
@click.option("--config", "-c", "config_path", type=click.Path(dir_okay=False), default=None,
              help="Path to the INI configuration file.")
@click.option("--host", "-h", default=None, help="Host to bind to (overrides config).")
@click.option("--port", "-p", type=int, default=None, help="Port to listen on (overrides config).")
def serve(config_path: Optional[str], host: Optional[str], port: Optional[int]) -> None:
    """Run the HTTP API and the mailbox monitors."""
    import uvicorn

    if config_path:
        os.environ[f"{ENV_PREFIX}CONFIG"] = config_path
    settings = load_settings(config_path)
    host = host or settings.http_host
    port = port or settings.http_port

    console.print("\n[bold cyan]Starting mailbox notifier[/bold cyan]")
    console.print(f"  Config:  {config_path or os.getenv(f'{ENV_PREFIX}CONFIG', 'config.ini')}")
    console.print(f"  Listen:  {host}:{port}")
    console.print(f"  Bot:     {'telegram' if settings.telegram_token else '[yellow]log only[/yellow]'}")
    console.print()

    uvicorn.run(
        "mailbox_notifier.server:app",
        host=host,
        port=port,
        log_level=settings.log_level.lower(),
    )


async def _check_mailbox(host: str, port: int, login: str, password: str, mailbox: str,
                         use_ssl: bool, timeout: float) -> MailboxStatus:
    connection = MailConnection(use_ssl=use_ssl, timeout=timeout)
    async with await connection.connect(host, port) as session:
        await session.authenticate(login, password)
        return await session.select_mailbox(mailbox)


@main.command("check")
@click.argument("host")
@click.argument("login")
@click.option("--password", prompt=True, hide_input=True, help="Account password.")
@click.option("--mailbox", "-m", default="INBOX", show_default=True, help="Mailbox to select.")
@click.option("--no-ssl", is_flag=True, help="Connect without TLS.")
@click.option("--timeout", "-t", type=float, default=30.0, show_default=True, help="Timeout in seconds.")
def check(host: str, login: str, password: str, mailbox: str, no_ssl: bool, timeout: float) -> None:
    """Connect once to HOST[:PORT] as LOGIN and report the mailbox size."""
    try:
        server, port = split_host(host)
    except ValueError as exc:
        print_error(str(exc))
        raise SystemExit(2)

    try:
        status = run_async(_check_mailbox(server, port, login, password, mailbox, not no_ssl, timeout))
    except MailboxError as exc:
        print_error(f"{exc.code}: {exc}")
        raise SystemExit(1)

    print_success(f"{status.name} on {server}:{port} holds {status.message_count} messages")


@main.command("config")
@click.option("--config", "-c", "config_path", type=click.Path(dir_okay=False), default=None,
              help="Path to the INI configuration file.")
def show_config(config_path: Optional[str]) -> None:
    """Show the effective settings, secrets masked."""
    settings = load_settings(config_path)
    table = Table(title="Mailbox notifier settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in asdict(settings).items():
        if key in _SECRET_FIELDS and value:
            value = "********"
        table.add_row(key, "[dim]-[/dim]" if value is None else str(value))
    console.print(table)


if __name__ == "__main__":
    main()
