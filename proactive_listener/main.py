"""Proactive Listener CLI — manage triage rules and dry-run the decision engine."""

import logging
import subprocess
from pathlib import Path

import click
from rich.console import Console

from proactive_listener.cli.classify_cmd import classify
from proactive_listener.cli.digest_cmd import digest_cli
from proactive_listener.cli.manage_cmd import history, init_db_cmd, priority_cli, waiting_cli
from proactive_listener.config import ConfigError, load_settings
from proactive_listener.llm.client import KEYCHAIN_SERVICE

console = Console()


@click.group()
@click.option("--verbose", "-v", is_flag=True, default=False, help="Debug logging")
@click.option("--config", "config_path", type=click.Path(path_type=Path), default=None,
              help="Config file (default: ~/.proactive-listener/config.yaml)")
@click.pass_context
def cli(ctx, verbose, config_path):
    """Proactive Listener — decide when incoming messages should interrupt you."""
    try:
        settings = load_settings(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e))

    level = logging.DEBUG if verbose else getattr(logging, settings.log_level, logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    ctx.obj = settings


@cli.command("set-key")
@click.argument("provider", type=click.Choice(["gemini", "claude"]))
@click.option("--key", prompt=True, hide_input=True, help="API key")
def set_key(provider, key):
    """Store an API key in macOS Keychain.

    Examples:

        proactive-listener set-key gemini

        proactive-listener set-key claude
    """
    subprocess.run(
        ["security", "delete-generic-password", "-a", provider, "-s", KEYCHAIN_SERVICE],
        capture_output=True,
    )
    result = subprocess.run(
        ["security", "add-generic-password", "-a", provider, "-s", KEYCHAIN_SERVICE, "-w", key],
        capture_output=True, text=True,
    )
    if result.returncode == 0:
        console.print(f"[green]✓[/green] {provider} API key stored in Keychain")
    else:
        console.print(f"[red]Failed to store key:[/red] {result.stderr}")


cli.add_command(init_db_cmd)
cli.add_command(waiting_cli)
cli.add_command(priority_cli)
cli.add_command(digest_cli)
cli.add_command(classify)
cli.add_command(history)


if __name__ == "__main__":
    cli()
