"""CLI command for dry-running the criticality classifier."""

from __future__ import annotations

import click
from rich.console import Console

from proactive_listener.config import GROUP_ROOM_MEMBER_THRESHOLD
from proactive_listener.llm.client import LLMCallError, LLMClient
from proactive_listener.proactive.criticality import check_message_importance
from proactive_listener.sources.base import InboundMessage
from proactive_listener.sources.matrix import capitalize

console = Console()


@click.command("classify")
@click.argument("text")
@click.option("--service", default="whatsapp", show_default=True)
@click.option("--chat", "chat_name", default="Someone", show_default=True, help="Chat / sender name")
@click.option("--members", type=int, default=2, show_default=True, help="Room member count")
@click.option("--provider", "-p", default=None, help="LLM provider (gemini or claude)")
@click.option("--model", "-m", default=None, help="Model override")
@click.pass_context
def classify(ctx, text, service, chat_name, members, provider, model):
    """Classify TEXT as if it had just arrived. Nothing is sent.

    \b
    Examples:
        proactive-listener classify "Are you coming? We're leaving in 10 min"
        proactive-listener classify "lol" --chat "Family" --members 6
    """
    settings = ctx.obj
    message = InboundMessage(
        service=service,
        chat_name=chat_name,
        sender_name=chat_name,
        content=text,
        member_count=members,
        is_mention=False,
    )
    if message.is_group:
        console.print(
            f"[yellow]Note:[/yellow] rooms with more than {GROUP_ROOM_MEMBER_THRESHOLD} members "
            f"only reach the classifier when the user is mentioned"
        )

    llm = LLMClient(provider=provider or settings.llm_provider, model=model or settings.llm_model)
    console.print(f"[dim]Using {llm.provider} ({llm.model})[/dim]")

    llm_message = f"{capitalize(service)} from {chat_name}: {text}"
    try:
        is_critical, what_to_inform, first_message = check_message_importance(
            llm, llm_message, service, chat_name, text,
        )
    except LLMCallError as e:
        raise click.ClickException(f"LLM call failed: {e}")

    if not is_critical:
        console.print("[green]Not critical[/green], would wait for the next digest")
        return

    console.print("[bold red]Critical[/bold red]")
    console.print(f"  SMS:   {what_to_inform or '[dim](fallback copy)[/dim]'}")
    console.print(f"  Voice: {first_message or '[dim](default opener)[/dim]'}")
