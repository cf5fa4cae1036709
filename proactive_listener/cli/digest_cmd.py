"""CLI commands for digest scheduling.

Commands:
  digest settings  — Set digest hours and timezone for a user
  digest preview   — Show the look-back / look-ahead window of a slot
"""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from proactive_listener.proactive.digest import (
    SLOTS,
    DigestConfigError,
    compute_window,
    load_timezone,
    parse_digest_hour,
)
from proactive_listener.store.store import ProactiveStore

console = Console()


def _hour_option(value):
    """Normalize "8", "08" or "08:00" to "08:00"; "off" disables the slot."""
    if value is None or value.lower() == "off":
        return None
    return f"{parse_digest_hour(value):02d}:00"


@click.group("digest")
def digest_cli():
    """Morning, day and evening digests."""
    pass


@digest_cli.command("settings")
@click.option("--user", "user_id", type=int, required=True)
@click.option("--morning", default=None, help='Hour like "08:00", or "off"')
@click.option("--day", default=None, help='Hour like "12:00", or "off"')
@click.option("--evening", default=None, help='Hour like "18:00", or "off"')
@click.option("--timezone", "tz_name", default=None, help="IANA timezone, e.g. Europe/Helsinki")
@click.pass_context
def digest_settings(ctx, user_id, morning, day, evening, tz_name):
    """Set digest hours. Omitted slots are disabled.

    \b
    Examples:
        proactive-listener digest settings --user 1 --morning 07:00 --evening 19:00 --timezone Europe/Helsinki
    """
    try:
        hours = [_hour_option(v) for v in (morning, day, evening)]
        if tz_name:
            load_timezone(tz_name)
    except DigestConfigError as e:
        raise click.ClickException(str(e))

    store = ProactiveStore(ctx.obj.db_path)
    if store.get_user(user_id) is None:
        store.close()
        raise click.ClickException(f"Unknown user {user_id}; run init-db --user {user_id} first")

    store.set_digests(user_id, *hours)
    if tz_name:
        store.set_timezone(user_id, tz_name)
    settings = store.get_digest_settings(user_id)
    store.close()

    console.print(f"[green]✓[/green] Digests updated for user {user_id}")
    for slot in SLOTS:
        console.print(f"  {slot:<8} {settings.hour_for(slot) or '[dim]off[/dim]'}")
    console.print(f"  timezone {settings.timezone or '[yellow]unset[/yellow]'}")


@digest_cli.command("preview")
@click.option("--user", "user_id", type=int, required=True)
@click.pass_context
def digest_preview(ctx, user_id):
    """Show each enabled slot's window without sending anything."""
    store = ProactiveStore(ctx.obj.db_path)
    settings = store.get_digest_settings(user_id)
    store.close()

    table = Table(title=f"Digest windows for user {user_id} ({settings.timezone or 'no timezone'})")
    table.add_column("Slot", style="cyan")
    table.add_column("Fires at", justify="center")
    table.add_column("Looks back", justify="right")
    table.add_column("Looks ahead", justify="right")

    for name, slot in SLOTS.items():
        hour_str = settings.hour_for(name)
        if not hour_str:
            table.add_row(name, "[dim]off[/dim]", "", "")
            continue
        try:
            hour = parse_digest_hour(hour_str)
        except DigestConfigError as e:
            table.add_row(name, f"[red]{hour_str}[/red]", str(e), "")
            continue
        hours_to_next, hours_since_prev = compute_window(slot, hour, settings)
        table.add_row(name, f"{hour:02d}:00", f"{hours_since_prev}h", f"{hours_to_next}h")

    console.print(table)
