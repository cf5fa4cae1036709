"""Canonical dataclasses shared by every source adapter and the decision core."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from proactive_listener.config import GROUP_ROOM_MEMBER_THRESHOLD


@dataclass
class BridgeEvent:
    """One Matrix timeline event as seen by the engine.

    `timestamp_ms` is the homeserver's origin_server_ts in milliseconds.
    """

    event_id: str
    sender: str
    timestamp_ms: int
    body: str = ""
    msgtype: str = "m.text"
    mentions: List[str] = field(default_factory=list)

    @property
    def timestamp(self) -> int:
        return self.timestamp_ms // 1000

    @property
    def sender_localpart(self) -> str:
        """`@whatsapp_123:server` -> `whatsapp_123`."""
        return self.sender.lstrip("@").split(":", 1)[0]


@dataclass
class InboundMessage:
    """Normalized `(service, chat_name, sender_name, content, member_count, is_mention)`."""

    service: str
    chat_name: str
    sender_name: str
    content: str
    member_count: int
    is_mention: bool
    room_id: str = ""
    event_id: str = ""
    timestamp_ms: int = 0

    @property
    def is_group(self) -> bool:
        return self.member_count > GROUP_ROOM_MEMBER_THRESHOLD


@dataclass
class MessageInfo:
    """Unified message shape for digest aggregation."""

    sender: str
    content: str
    timestamp_rfc: str
    platform: str
    timestamp: int = 0  # unix seconds, sort key


@dataclass
class CalendarEvent:
    title: str
    start_time_rfc: str
    duration_minutes: int


@dataclass
class RoomContext:
    """Room-level facts gathered once per event."""

    room_id: str
    display_name: str
    member_count: int
    is_muted: bool = False
    service: Optional[str] = None
