"""Priority sender matching — the deterministic check that runs before any LLM call."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from proactive_listener.config import SMS_MAX_CHARS, SMS_SENDER_MAX_CHARS
from proactive_listener.sources.matrix import capitalize, remove_bridge_suffix
from proactive_listener.store.models import PrioritySender

logger = logging.getLogger(__name__)

ELLIPSIS = "…"


def trim_for_sms(service: str, sender: str, content: str) -> str:
    """`"{Service} from {sender}: {content}"` fitted into SMS_MAX_CHARS.

    The sender is capped at SMS_SENDER_MAX_CHARS and the content gets
    whatever is left. Both gain an ellipsis when cut.
    """
    prefix = f"{capitalize(service)} from "
    separator = ": "
    remaining = SMS_MAX_CHARS - len(prefix) - len(separator)

    sender_trimmed = sender[:SMS_SENDER_MAX_CHARS]
    if len(sender) > len(sender_trimmed):
        sender_trimmed += ELLIPSIS
    remaining = max(remaining - len(sender_trimmed), 0)

    content_trimmed = content[:remaining]
    if len(content) > len(content_trimmed):
        content_trimmed += ELLIPSIS

    return f"{prefix}{sender_trimmed}{separator}{content_trimmed}"


def sender_matches(priority_sender: PrioritySender, chat_name: str, sender_name: str) -> bool:
    """Case-insensitive containment of the stored name in the chat name or sender."""
    needle = remove_bridge_suffix(priority_sender.sender).lower()
    if not needle:
        return False
    return needle in chat_name.lower() or needle in sender_name.lower()


def match_priority(
    platform: str,
    chat_name: str,
    sender_name: str,
    priority_senders: Iterable[PrioritySender],
) -> Optional[PrioritySender]:
    """First `noti_mode == "all"` sender that matches, in stored order."""
    for ps in priority_senders:
        if ps.noti_mode != "all":
            continue
        if ps.platform and ps.platform != platform:
            continue
        if sender_matches(ps, chat_name, sender_name):
            logger.debug("Priority sender %r matched %s chat %r", ps.sender, platform, chat_name)
            return ps
    return None


def is_focus_sender(chat_name: str, sender_name: str, priority_senders: Iterable[PrioritySender]) -> bool:
    """Whether a focus-mode ("family") priority sender matches this message."""
    return any(
        sender_matches(ps, chat_name, sender_name)
        for ps in priority_senders
        if ps.noti_mode == "focus"
    )


def priority_content_type(platform: str, priority_sender: PrioritySender) -> str:
    suffix = "_call" if priority_sender.noti_type == "call" else "_sms"
    return f"{platform}_priority{suffix}"


def priority_first_message(platform: str, priority_sender: PrioritySender) -> str:
    return f"Hello, you have an important {capitalize(platform)} message from {priority_sender.sender}."
