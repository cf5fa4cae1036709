"""Criticality classification — must this message reach the user within two hours?"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

from proactive_listener.llm.client import LLMClient, LLMParseError, ToolSpec
from proactive_listener.llm.contracts import CriticalityVerdict, parse_tool_arguments
from proactive_listener.sources.matrix import capitalize

logger = logging.getLogger(__name__)

CRITICAL_TEMPERATURE = 0.2
CRITICAL_MAX_TOKENS = 200

CALL_MARKERS = ("Incoming call", "Missed call")

CRITICAL_PROMPT = """\
You are an AI that decides whether an incoming user message is **critical** — i.e. it must be surfaced within **two hours** and cannot wait for the next scheduled summary.
A message is **critical** if delaying action beyond 2 h risks:
• Direct harm to people
• Severe data loss or major financial loss
• Production system outage or security breach
• Hard legal/compliance deadline expiring in ≤ 2 h
• The sender explicitly says it must be handled immediately (e.g. “ASAP”, “emergency”, “right now”) or gives a ≤ 2 h deadline.
• Time-sensitive personal or social requests/opportunities with an implied or stated window of ≤2 hours (e.g., invitations for immediate events like lunch, or quick decisions needed right now).
Everything else — vague urgency, routine updates, or unclear requests — is **NOT** critical.
If unsure, choose **not critical**.
---
### Process
1. Detect the message language; translate internally to English before reasoning.
2. Identify any explicit or implied time windows (e.g., "now," "soon," "today at noon," or contexts like being at a location requiring immediate input).
3. Apply the criteria **strictly**.
4. Produce JSON with these fields (do **not** add others):
| Field | Required? | Max chars | Content rules |
|-------|-----------|-----------|---------------|
| `is_critical` | always | — | Boolean. |
| `what_to_inform` | *only when* `is_critical==true` | 160 | **One SMS sentence** that:<br> • Briefly summarizes the core problem/ask (who/what/when).<br> • States the single most urgent next action the recipient must take within 2 h. Remember to include the sender or the Chat the message is from. |
| `first_message` | *only when* `is_critical==true` | 100 | **Voice-assistant opener** that grabs attention and repeats the required action in imperative form. |
If `is_critical` is false, leave the other two fields empty strings.
---
#### Examples
**Incoming:**
“I'm at the store should I buy eggs or do we have some still?”
**Output:**
{
  "is_critical": true,
  "what_to_inform": "Rasmus is asking on WhatsApp if he needs to buy eggs as well",
  "first_message": "Hey, Rasmus needs more information about the shopping list"
}

**Incoming**:
"Hey, want to grab lunch? I'm free until 1 PM."
**Output**:
{
  "is_critical": true,
  "what_to_inform": "Alex is inviting you to lunch on WhatsApp",
  "first_message": "Alex is asking if you want to grab lunch!"
}

**Incoming**:
"Weekly team update: Project is on track."
**Output**:
{
  "is_critical": false,
  "what_to_inform": "",
  "first_message": ""
}
"""

CRITICAL_TOOL = ToolSpec(
    name="analyze_message",
    description="Analyzes if a message is critical",
    parameters={
        "type": "object",
        "properties": {
            "is_critical": {
                "type": "boolean",
                "description": "Whether the message is critical and requires immediate attention",
            },
            "what_to_inform": {
                "type": "string",
                "description": "Concise SMS (≤160 chars) to send if the message is critical",
            },
            "first_message": {
                "type": "string",
                "description": "Brief voice-assistant opening line (≤100 chars) if critical",
            },
        },
        "required": ["is_critical"],
    },
)


def is_call_notice(raw_content: str) -> bool:
    return any(marker in raw_content for marker in CALL_MARKERS)


def check_message_importance(
    llm: LLMClient,
    message: str,
    service: str,
    chat_name: str,
    raw_content: str,
    call_notify: bool = True,
) -> Tuple[bool, Optional[str], Optional[str]]:
    """Classify a single message.

    Returns `(is_critical, what_to_inform, first_message)`. Call notices
    skip the LLM and follow the user's `call_notify` preference. A response
    that violates the tool contract reads as not critical; LLMCallError
    propagates to the caller.
    """
    if is_call_notice(raw_content):
        if not call_notify:
            return False, None, None
        return (
            True,
            f"You have an incoming {capitalize(service)} call from {chat_name}",
            f"Hello, you have an incoming WhatsApp call from {chat_name}.",
        )

    user_message = f"Analyze this message and decide if it is critical:\n\n{message}"
    try:
        raw = llm.run_tool(
            CRITICAL_PROMPT,
            user_message,
            CRITICAL_TOOL,
            temperature=CRITICAL_TEMPERATURE,
            max_tokens=CRITICAL_MAX_TOKENS,
        )
        verdict = parse_tool_arguments(raw, CriticalityVerdict)
    except LLMParseError as e:
        logger.error("Failed to parse message analysis response: %s", e)
        return False, None, None

    logger.debug("Criticality for %s/%s: %s", service, chat_name, verdict.is_critical)
    if not verdict.is_critical:
        return False, None, None
    return True, verdict.what_to_inform or None, verdict.first_message or None


def critical_fallback_copy(platform: str) -> Tuple[str, str]:
    """(sms text, voice opener) for a critical verdict whose copy came back empty."""
    cap = capitalize(platform)
    return (
        f"Critical {cap} message found, failed to get content, but you can check your {platform} to see it.",
        f"Hey, I found some critical {cap} message.",
    )
