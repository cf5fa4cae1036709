"""Matrix bridge adapter — turns raw room events into InboundMessage.

The Matrix SDK session itself lives outside this package. The engine only
talks to it through ChatTimelineSource, which the sync loop implements and
the tests fake.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Protocol, Sequence, Tuple

from proactive_listener.config import BRIDGE_SERVICES
from proactive_listener.sources.base import BridgeEvent, InboundMessage, MessageInfo, RoomContext

logger = logging.getLogger(__name__)

MEDIA_PLACEHOLDERS = {
    "m.image": "📎 IMAGE",
    "m.video": "📎 VIDEO",
    "m.file": "📎 FILE",
    "m.audio": "📎 AUDIO",
    "m.location": "📍 LOCATION",
}

TEXT_MSGTYPES = ("m.text", "m.notice", "m.emote")

BRIDGE_ERROR_MARKERS = (
    "Failed to bridge media",
    "media no longer available",
    "Decrypting message from WhatsApp failed",
)

BRIDGE_SUFFIXES = ("(WA)", "(Telegram)", "(TG)")

DISCONNECT_PATTERNS = (
    "disconnected",
    "connection lost",
    "logged out",
    "authentication failed",
    "login failed",
    "error",
    "failed",
    "timeout",
    "invalid",
)


class ChatTimelineSource(Protocol):
    """What the engine needs from the user's Matrix session."""

    user_id: str

    async def get_room_messages(
        self, room_id: str, direction: str = "b", limit: int = 100,
    ) -> List[BridgeEvent]:
        """Recent events; direction "b" returns newest first."""
        ...

    async def get_read_receipt(self, room_id: str, user_id: str) -> Optional[Tuple[str, int]]:
        """(event_id, timestamp_ms) of the user's read receipt, if any."""
        ...

    async def get_room_display_name(self, room_id: str) -> str:
        ...

    async def get_joined_member_count(self, room_id: str) -> int:
        ...

    async def is_room_muted(self, room_id: str) -> bool:
        ...


class BridgeHistorySource(Protocol):
    """Unread history per bridged platform, used by the digest scheduler."""

    async def fetch_bridge_messages(
        self, service: str, user_id: int, since_ts: int, unread_only: bool = True,
    ) -> List[MessageInfo]:
        ...


# ══════════════════════════════════════════════════════════════
# Naming helpers
# ══════════════════════════════════════════════════════════════


def remove_bridge_suffix(name: str) -> str:
    """Strip the "(WA)" / "(Telegram)" markers bridges append to room names."""
    cleaned = name
    for suffix in BRIDGE_SUFFIXES:
        cleaned = cleaned.replace(suffix, "")
    return cleaned.strip()


def capitalize(service: str) -> str:
    return service[:1].upper() + service[1:]


def sender_prefix(service: str) -> str:
    """Localpart prefix the bridge gives puppeted users, e.g. `whatsapp_`."""
    return f"{service}_"


def infer_service(room_name: str, sender_localpart: str) -> Optional[str]:
    """Guess the bridged platform from the room name, then the sender."""
    lowered = room_name.lower()
    if "(wa)" in lowered:
        return "whatsapp"
    if "(tg)" in lowered or "(telegram)" in lowered:
        return "telegram"
    if "signal" in lowered:
        return "signal"
    for service in BRIDGE_SERVICES:
        if sender_localpart.startswith(sender_prefix(service)):
            return service
    return None


# ══════════════════════════════════════════════════════════════
# Event content
# ══════════════════════════════════════════════════════════════


def message_body(event: BridgeEvent) -> Optional[str]:
    """Text content of an event, with media collapsed to a placeholder.

    Returns None for message types the engine does not understand.
    """
    if event.msgtype in TEXT_MSGTYPES:
        return event.body
    return MEDIA_PLACEHOLDERS.get(event.msgtype)


def is_bridge_error(content: str) -> bool:
    if content.startswith("* Failed to"):
        return True
    return any(marker in content for marker in BRIDGE_ERROR_MARKERS)


def is_disconnect_notice(content: str) -> bool:
    lowered = content.lower()
    return any(pattern in lowered for pattern in DISCONNECT_PATTERNS)


def is_mentioned(event: BridgeEvent, user_id: str) -> bool:
    return user_id in event.mentions


async def load_room_context(source: ChatTimelineSource, room_id: str) -> RoomContext:
    display_name = await source.get_room_display_name(room_id)
    member_count = await source.get_joined_member_count(room_id)
    is_muted = await source.is_room_muted(room_id)
    return RoomContext(
        room_id=room_id,
        display_name=display_name,
        member_count=member_count,
        is_muted=is_muted,
    )


def normalize_event(
    event: BridgeEvent,
    room: RoomContext,
    user_id: str,
) -> Optional[InboundMessage]:
    """Build the canonical tuple for a bridged event.

    Returns None when the platform cannot be inferred or the message type
    carries no content we can classify.
    """
    service = room.service or infer_service(room.display_name, event.sender_localpart)
    if not service:
        logger.debug("No service inferred for room %s (%s)", room.room_id, room.display_name)
        return None

    content = message_body(event)
    if content is None:
        logger.debug("Ignoring msgtype %s in %s", event.msgtype, room.room_id)
        return None

    return InboundMessage(
        service=service,
        chat_name=remove_bridge_suffix(room.display_name),
        sender_name=event.sender_localpart.removeprefix(sender_prefix(service)),
        content=content,
        member_count=room.member_count,
        is_mention=is_mentioned(event, user_id),
        room_id=room.room_id,
        event_id=event.event_id,
        timestamp_ms=event.timestamp_ms,
    )


# ══════════════════════════════════════════════════════════════
# Timeline scans
# ══════════════════════════════════════════════════════════════


def get_latest_sent_message(events: Sequence[BridgeEvent], user_id: str) -> Optional[BridgeEvent]:
    """Newest event the user sent. `events` must be newest first."""
    for event in events:
        if event.sender == user_id:
            return event
    return None


def get_triggering_message(
    events: Sequence[BridgeEvent],
    user_id: str,
    prompt_text: str,
) -> Optional[BridgeEvent]:
    """The incoming message the assistant's prompt was asking about.

    Walks newest first to the user's message carrying `prompt_text`, then
    returns the first older event from somebody else.
    """
    seen_prompt = False
    for event in events:
        if not seen_prompt:
            if event.sender == user_id and prompt_text in event.body:
                seen_prompt = True
            continue
        if event.sender != user_id and message_body(event):
            return event
    return None
