"""CLI commands for the engine's stored state.

Commands:
  init-db          — Create the SQLite schema
  waiting add      — Add a waiting check
  waiting list     — List waiting checks
  waiting remove   — Delete a waiting check
  priority add     — Add a priority sender
  priority list    — List priority senders
  history          — Show recent notification attempts
"""

from __future__ import annotations

from datetime import datetime, timezone

import click
from rich.console import Console
from rich.table import Table

from proactive_listener.config import DIGEST_PLATFORMS
from proactive_listener.store.models import PrioritySender, UserSettings
from proactive_listener.store.store import ProactiveStore

console = Console()

SERVICE_CHOICES = click.Choice(["whatsapp", "telegram", "signal", "email", "messaging"])
NOTI_TYPES = click.Choice(["sms", "call"])


def _open_store(ctx: click.Context) -> ProactiveStore:
    return ProactiveStore(ctx.obj.db_path)


def _fmt_ts(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


@click.command("init-db")
@click.option("--user", "user_id", type=int, default=None, help="Also create this user if missing")
@click.option("--timezone", "tz_name", default=None, help="IANA timezone for the new user")
@click.pass_context
def init_db_cmd(ctx, user_id, tz_name):
    """Create the database (and optionally a user row)."""
    store = _open_store(ctx)
    store.conn  # creates the schema
    if user_id is not None and store.get_user(user_id) is None:
        store.upsert_user(UserSettings(user_id=user_id, timezone=tz_name))
        console.print(f"[green]✓[/green] Created user {user_id}")
    console.print(f"[green]✓[/green] Database ready at {ctx.obj.db_path}")
    store.close()


# ══════════════════════════════════════════════════════════════
# Waiting checks
# ══════════════════════════════════════════════════════════════


@click.group("waiting")
def waiting_cli():
    """Waiting checks — "tell me when X happens"."""
    pass


@waiting_cli.command("add")
@click.argument("content")
@click.option("--user", "user_id", type=int, required=True)
@click.option("--service", type=SERVICE_CHOICES, default="messaging", show_default=True)
@click.option("--noti-type", type=NOTI_TYPES, default="sms", show_default=True)
@click.pass_context
def waiting_add(ctx, content, user_id, service, noti_type):
    """Add a waiting check.

    \b
    Examples:
        proactive-listener waiting add "package delivered" --user 1
        proactive-listener waiting add "Rasmus replies about the phone" --user 1 --noti-type call
    """
    store = _open_store(ctx)
    check_id = store.create_waiting_check(user_id, content, service, noti_type)
    console.print(f"[green]✓[/green] Waiting check {check_id} added")
    store.close()


@waiting_cli.command("list")
@click.option("--user", "user_id", type=int, required=True)
@click.pass_context
def waiting_list(ctx, user_id):
    """List waiting checks for a user."""
    store = _open_store(ctx)
    checks = store.list_waiting_checks(user_id)
    store.close()
    if not checks:
        console.print("[dim]No waiting checks.[/dim]")
        return

    table = Table(title=f"Waiting checks ({len(checks)})")
    table.add_column("ID", justify="right", style="cyan")
    table.add_column("Content", max_width=60)
    table.add_column("Service", style="dim")
    table.add_column("Via", justify="center")
    for wc in checks:
        table.add_row(str(wc.id), wc.content, wc.service_type, wc.noti_type)
    console.print(table)


@waiting_cli.command("remove")
@click.argument("check_id", type=int)
@click.option("--user", "user_id", type=int, required=True)
@click.pass_context
def waiting_remove(ctx, check_id, user_id):
    """Delete a waiting check."""
    store = _open_store(ctx)
    removed = store.delete_waiting_check(user_id, check_id)
    store.close()
    if removed:
        console.print(f"[green]✓[/green] Waiting check {check_id} removed")
    else:
        console.print(f"[yellow]No waiting check {check_id} for user {user_id}[/yellow]")


# ══════════════════════════════════════════════════════════════
# Priority senders
# ══════════════════════════════════════════════════════════════


@click.group("priority")
def priority_cli():
    """Priority senders — contacts that bypass classification."""
    pass


@priority_cli.command("add")
@click.argument("sender")
@click.option("--user", "user_id", type=int, required=True)
@click.option("--platform", type=click.Choice(list(DIGEST_PLATFORMS)), required=True)
@click.option("--mode", "noti_mode", type=click.Choice(["all", "focus"]), default="all", show_default=True,
              help="all: always notify; focus: only counts for critical messages in notify_family mode")
@click.option("--noti-type", type=NOTI_TYPES, default="sms", show_default=True)
@click.pass_context
def priority_add(ctx, sender, user_id, platform, noti_mode, noti_type):
    """Add a priority sender."""
    store = _open_store(ctx)
    ps_id = store.create_priority_sender(PrioritySender(
        user_id=user_id, platform=platform, sender=sender, noti_mode=noti_mode, noti_type=noti_type,
    ))
    console.print(f"[green]✓[/green] Priority sender {ps_id} added ({platform}: {sender})")
    store.close()


@priority_cli.command("list")
@click.option("--user", "user_id", type=int, required=True)
@click.pass_context
def priority_list(ctx, user_id):
    """List priority senders for a user."""
    store = _open_store(ctx)
    rows = [ps for platform in DIGEST_PLATFORMS for ps in store.get_priority_senders(user_id, platform)]
    store.close()
    if not rows:
        console.print("[dim]No priority senders.[/dim]")
        return

    table = Table(title="Priority senders")
    table.add_column("Platform", style="dim")
    table.add_column("Sender", style="cyan")
    table.add_column("Mode", justify="center")
    table.add_column("Via", justify="center")
    for ps in rows:
        table.add_row(ps.platform, ps.sender, ps.noti_mode, ps.noti_type)
    console.print(table)


# ══════════════════════════════════════════════════════════════
# History
# ══════════════════════════════════════════════════════════════


@click.command("history")
@click.option("--user", "user_id", type=int, default=None)
@click.option("--limit", default=20, show_default=True)
@click.pass_context
def history(ctx, user_id, limit):
    """Show recent notification attempts."""
    store = _open_store(ctx)
    records = store.recent_usage(user_id, limit=limit)
    store.close()
    if not records:
        console.print("[dim]No notifications yet.[/dim]")
        return

    table = Table(title=f"Notifications ({len(records)})")
    table.add_column("When", style="dim")
    table.add_column("User", justify="right")
    table.add_column("Type", style="cyan")
    table.add_column("Status", justify="center")
    table.add_column("Ref / reason", style="dim", max_width=40)
    for r in records:
        status = f"[green]{r.status}[/green]" if r.success else f"[red]{r.status}[/red]"
        table.add_row(_fmt_ts(r.created_at), str(r.user_id), r.activity_type, status, r.external_ref or r.reason or "")
    console.print(table)
