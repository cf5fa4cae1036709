from proactive_listener.proactive.dispatcher import (
    CreditGate,
    InsufficientCreditsError,
    NotificationDispatcher,
    NotificationSender,
    SendError,
    UnmeteredCredits,
)
from proactive_listener.proactive.digest import DigestConfigError, DigestScheduler
from proactive_listener.proactive.pipeline import BridgeMessagePipeline, Decision

__all__ = [
    "BridgeMessagePipeline",
    "Decision",
    "DigestScheduler",
    "DigestConfigError",
    "NotificationDispatcher",
    "NotificationSender",
    "CreditGate",
    "UnmeteredCredits",
    "InsufficientCreditsError",
    "SendError",
]
