"""Row types returned by ProactiveStore."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

DIGEST_SLOTS = ("morning", "day", "evening")


@dataclass
class UserSettings:
    """Per-user preferences the engine reads.

    `critical_enabled` is the delivery channel for critical alerts ("sms" or
    "call"); None disables criticality checking altogether.
    """

    user_id: int
    phone_number: str = ""
    matrix_username: Optional[str] = None
    timezone: Optional[str] = None
    notification_type: Optional[str] = None
    critical_enabled: Optional[str] = None
    action_on_critical_message: Optional[str] = None
    call_notify: bool = True
    proactive_agent_on: bool = True
    has_monitoring_subscription: bool = True


@dataclass
class DigestSettings:
    morning_digest: Optional[str] = None
    day_digest: Optional[str] = None
    evening_digest: Optional[str] = None
    timezone: Optional[str] = None

    def hour_for(self, slot: str) -> Optional[str]:
        return getattr(self, f"{slot}_digest")


@dataclass
class WaitingCheck:
    id: int
    user_id: int
    content: str
    service_type: str
    noti_type: str = "sms"


@dataclass
class PrioritySender:
    user_id: int
    platform: str
    sender: str
    noti_mode: str = "all"
    noti_type: str = "sms"
    id: Optional[int] = None


@dataclass
class BridgeConnection:
    user_id: int
    bridge_type: str
    status: str
    room_id: Optional[str] = None
    last_seen_online: Optional[int] = None
    created_at: Optional[int] = None


@dataclass
class NotificationRecord:
    id: int
    user_id: int
    activity_type: str
    success: bool
    status: str
    external_ref: Optional[str] = None
    reason: Optional[str] = None
    created_at: int = 0
