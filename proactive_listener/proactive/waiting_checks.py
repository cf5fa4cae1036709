"""Waiting-check matching — does an incoming message satisfy a standing condition?"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

from proactive_listener.llm.client import LLMClient, LLMError, ToolSpec
from proactive_listener.llm.contracts import WaitingCheckMatch, parse_tool_arguments
from proactive_listener.sources.matrix import capitalize
from proactive_listener.store.models import WaitingCheck

logger = logging.getLogger(__name__)

WAITING_CHECK_TEMPERATURE = 0.0
WAITING_CHECK_MAX_TOKENS = 200

WAITING_CHECK_PROMPT = """\
You are an AI that determines whether an incoming message *definitively* satisfies **one** of the outstanding waiting checks listed below. Each waiting check's 'Content' describes the condition the message must meet.
    **Match rules**
    • Interpret the waiting check 'Content' as the user's condition or instruction for matching.
    • If the content is descriptive or instructional (e.g., a sentence >5 words), use semantic reasoning (synonyms, paraphrases, context) to evaluate fulfillment. Translate non-English text internally.
    • If the content is short (≤5 words, e.g., keywords), require the message to contain *all* those words (case-insensitive, but exact matches preferred; stems/synonyms only if explicitly related).
    • A match must be *unambiguous*: the message clearly fulfills the condition. Ambiguous, partial, or sender-only matches DO NOT count.
    • Do not match based solely on sender or metadata unless explicitly stated in the content.
    • If multiple checks could match, choose the single *best* match (highest confidence). Return `null` if none match.

    **Edge cases**:
    • If the check mentions a sender (e.g., 'from Rasmus'), require the message metadata to match exactly.
    • For conditions like 'related to [topic]', use broad semantic similarity but ensure at least 70% conceptual overlap.
    • Ignore irrelevant message parts; focus only on fulfilling the core condition.

    If a match is found you MUST additionally craft two short notifications:
    1. `sms_message` (≤160 chars) – a concise SMS describing the event.
    2. `first_message` (≤100 chars) – an attention-grabbing first sentence a voice assistant would speak on a call.

    Return JSON with:
    • `waiting_check_id` – integer ID of the matched check, or null
    • `sms_message` – String (required when matched, else empty string). Ensure `sms_message` is neutral and factual, e.g., 'Matched waiting check: Update from Rasmus on phone received.'
    • `first_message` – String (required when matched, else empty string). `first_message` should be urgent and spoken-friendly, e.g., 'Hey, you have an update from Rasmus about the phone!'
    • `match_explanation` – ≤120 chars explaining why it matched (or empty when null)
"""

WAITING_CHECK_TOOL = ToolSpec(
    name="analyze_waiting_check_match",
    description="Determines whether the message matches a waiting check and drafts notifications",
    parameters={
        "type": "object",
        "properties": {
            "waiting_check_id": {
                "type": ["integer", "null"],
                "description": "ID of the matched waiting check, or null",
            },
            "sms_message": {
                "type": "string",
                "description": "Concise SMS (≤160 chars) when matched, else empty",
            },
            "first_message": {
                "type": "string",
                "description": "Voice-assistant opening line (≤100 chars) when matched, else empty",
            },
            "match_explanation": {
                "type": "string",
                "description": "≤120 chars explaining why it matched, else empty",
            },
        },
        "required": ["waiting_check_id"],
    },
)


def format_waiting_checks(waiting_checks: Sequence[WaitingCheck]) -> str:
    return "\n".join(f"ID: {wc.id}, Content: {wc.content}" for wc in waiting_checks)


def check_waiting_check_match(
    llm: LLMClient,
    message: str,
    waiting_checks: Sequence[WaitingCheck],
) -> Tuple[Optional[int], Optional[str], Optional[str]]:
    """Match `message` against `waiting_checks`.

    Returns `(waiting_check_id, sms_message, first_message)`. Any LLM
    failure, and any id that is not one of the supplied checks, reads as
    no match. Empty copy comes back as None so callers can substitute
    their fallback text.
    """
    if not waiting_checks:
        return None, None, None

    user_message = (
        f"Incoming message:\n\n{message}\n\n"
        f"Waiting checks:\n\n{format_waiting_checks(waiting_checks)}\n\n"
        "Return the best match or null."
    )

    try:
        raw = llm.run_tool(
            WAITING_CHECK_PROMPT,
            user_message,
            WAITING_CHECK_TOOL,
            temperature=WAITING_CHECK_TEMPERATURE,
            max_tokens=WAITING_CHECK_MAX_TOKENS,
        )
        result = parse_tool_arguments(raw, WaitingCheckMatch)
    except LLMError as e:
        logger.warning("Waiting-check match failed, treating as no match: %s", e)
        return None, None, None

    if not result.matched:
        return None, None, None

    known_ids = {wc.id for wc in waiting_checks}
    if result.waiting_check_id not in known_ids:
        logger.warning("LLM returned unknown waiting check id %s", result.waiting_check_id)
        return None, None, None

    if result.match_explanation:
        logger.debug("Waiting-check match explanation: %s", result.match_explanation)

    return result.waiting_check_id, result.sms_message or None, result.first_message or None


def find_waiting_check(waiting_checks: List[WaitingCheck], check_id: int) -> Optional[WaitingCheck]:
    for wc in waiting_checks:
        if wc.id == check_id:
            return wc
    return None


def waiting_check_content_type(platform: str, waiting_check: Optional[WaitingCheck]) -> str:
    suffix = "_call" if waiting_check is not None and waiting_check.noti_type == "call" else "_sms"
    return f"{platform}_waiting_check{suffix}"


def waiting_check_fallback_copy(platform: str) -> Tuple[str, str]:
    """(sms text, voice opener) for a match whose copy came back empty."""
    return (
        f"Waiting check matched in {platform}, but failed to get content",
        f"Hey, I found a match for one of your waiting checks in {capitalize(platform)}.",
    )
