from proactive_listener.store.models import (
    BridgeConnection,
    DigestSettings,
    NotificationRecord,
    PrioritySender,
    UserSettings,
    WaitingCheck,
)
from proactive_listener.store.store import ProactiveStore

__all__ = [
    "ProactiveStore",
    "BridgeConnection",
    "DigestSettings",
    "NotificationRecord",
    "PrioritySender",
    "UserSettings",
    "WaitingCheck",
]
