"""Digest composer — one SMS-length, platform-grouped summary from messages and events."""

from __future__ import annotations

import logging
from collections import Counter
from typing import Dict, Iterable, List, Sequence

from proactive_listener.llm.client import LLMClient, LLMError, ToolSpec
from proactive_listener.llm.contracts import DigestResult, parse_tool_arguments
from proactive_listener.sources.base import CalendarEvent, MessageInfo

logger = logging.getLogger(__name__)

DIGEST_MAX_TOKENS = 300
DIGEST_TEMPERATURE = 0.3

DIGEST_PROMPT = """\
You are an assistant that creates concise SMS digests of messages and calendar events. Your goal is to help users stay on top of unread messages and upcoming calendar events without needing to open their apps. Group items by platform (e.g., WHATSAPP:, EMAIL:, CALENDAR:), starting each group on a new line. Within each group, provide clear teasers for critical or prioritized items (e.g., sender, topic hint, timestamp in parentheses), separating them with commas or '+' for brevity. Summarize less urgent or grouped items at the end of the group with '+' (e.g., '+ other routine items from xai, claude, ..'). Adjust detail based on overall content: if low volume or mostly low-criticality, expand critical items with fuller, detailed teasers (e.g., key excerpts or actions) to avoid follow-ups. For high volume or non-critical items, use minimal teasers. Highlight critical/actionable items with more specific hints to reduce follow-ups, but avoid full content. Cover all items concisely without omissions.
Rules
• Absolute length limit: 480 characters.
• Do NOT use markdown (no *, **, _, links, or backticks).
• Do NOT use emojis or emoticons.
• Plain text only.
• Start each platform group on a new line, followed by ': ' and the teasers/summaries.
• Messages marked with [PRIORITY] are from user-defined priority senders. Always put them first in their platform group, highlight them with more detailed teasers (e.g., key excerpts, actions, or urgency hints), and treat them as critical/actionable to minimize user follow-ups.
• Put critical or prioritized items first within each group.
• Include timestamps in parentheses (e.g., '(yesterday 8pm)') for relevance.
• For calendar, include events in the next 24 hours with start time and brief hint.
• Tease naturally, e.g., 'Mom suggested dinner in family chat (yesterday 8pm)'.
Return JSON with a single field:
• `digest` – the plain-text SMS message, with newlines separating groups.
"""

DIGEST_TOOL = ToolSpec(
    name="create_digest",
    description="Creates a concise digest of messages and calendar events",
    parameters={
        "type": "object",
        "properties": {
            "digest": {
                "type": "string",
                "description": "The SMS-friendly digest message",
            },
        },
        "required": ["digest"],
    },
)

PriorityMap = Dict[str, Iterable[str]]


def is_priority(message: MessageInfo, priority_map: PriorityMap) -> bool:
    return message.sender in set(priority_map.get(message.platform, ()))


def format_messages(messages: Sequence[MessageInfo], priority_map: PriorityMap) -> str:
    lines = []
    for msg in messages:
        tag = " [PRIORITY]" if is_priority(msg, priority_map) else ""
        lines.append(f"- [{msg.platform.upper()}] {msg.sender} on {msg.timestamp_rfc}: {msg.content}{tag}")
    return "\n".join(lines)


def format_events(events: Sequence[CalendarEvent]) -> str:
    return "\n".join(
        f"- {e.title} at {e.start_time_rfc} lasting {e.duration_minutes} minutes" for e in events
    )


def build_digest_request(
    messages: Sequence[MessageInfo],
    calendar_events: Sequence[CalendarEvent],
    time_period_hours: int,
    priority_map: PriorityMap,
) -> str:
    content = (
        f"Create a digest covering the last {time_period_hours} hours.\n\n"
        f"Messages:\n{format_messages(messages, priority_map)}"
    )
    if calendar_events:
        content += f"\n\nUpcoming calendar events:\n{format_events(calendar_events)}"
    return content


def fallback_digest(messages: Sequence[MessageInfo], calendar_events: Sequence[CalendarEvent]) -> str:
    """Count-per-platform summary used when the LLM cannot compose one."""
    counts = Counter(m.platform for m in messages)
    lines: List[str] = []
    for platform in sorted(counts):
        n = counts[platform]
        lines.append(f"{platform.upper()}: {n} new message{'s' if n != 1 else ''}")
    if calendar_events:
        n = len(calendar_events)
        lines.append(f"CALENDAR: {n} upcoming event{'s' if n != 1 else ''}")
    return "\n".join(lines) if lines else "No new messages."


def generate_digest(
    llm: LLMClient,
    messages: Sequence[MessageInfo],
    calendar_events: Sequence[CalendarEvent],
    time_period_hours: int,
    priority_map: PriorityMap,
) -> str:
    """Compose the digest text. Never raises; falls back to per-platform counts."""
    user_content = build_digest_request(messages, calendar_events, time_period_hours, priority_map)
    try:
        raw = llm.run_tool(
            DIGEST_PROMPT,
            user_content,
            DIGEST_TOOL,
            temperature=DIGEST_TEMPERATURE,
            max_tokens=DIGEST_MAX_TOKENS,
        )
        result = parse_tool_arguments(raw, DigestResult)
    except LLMError as e:
        logger.error("Failed to generate digest: %s", e)
        return fallback_digest(messages, calendar_events)

    logger.debug("Generated digest: %s", result.digest)
    return result.digest
