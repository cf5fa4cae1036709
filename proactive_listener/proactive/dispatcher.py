"""Notification dispatch — picks SMS or voice call, gates credits, sends, records."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from proactive_listener.store.models import UserSettings
from proactive_listener.store.store import ProactiveStore

logger = logging.getLogger(__name__)

DEFAULT_CALL_OPENER = "Hello, I have a critical notification to tell you about"

CREDIT_SMS = "noti_msg"
CREDIT_CALL = "noti_call"


class InsufficientCreditsError(Exception):
    """The user cannot pay for this notification."""


class SendError(Exception):
    """The SMS or call provider rejected the request."""


class NotificationSender(Protocol):
    """Outbound SMS and voice providers."""

    async def send_sms(self, user: UserSettings, text: str, media: Optional[str] = None) -> str:
        """Send an SMS and return the provider's message id."""
        ...

    async def send_voice_notification(
        self,
        user: UserSettings,
        first_message: str,
        body_text: str,
        content_type: str,
        timezone: Optional[str],
    ) -> str:
        """Place a notification call and return the provider's call id."""
        ...


class CreditGate(Protocol):
    def check(self, user: UserSettings, event_type: str) -> None:
        """Raise InsufficientCreditsError if `event_type` is not affordable."""
        ...

    def deduct(self, user: UserSettings, event_type: str) -> None:
        ...


class UnmeteredCredits:
    """Credit gate that allows everything."""

    def check(self, user: UserSettings, event_type: str) -> None:
        return None

    def deduct(self, user: UserSettings, event_type: str) -> None:
        return None


def resolve_channel(content_type: str, settings: UserSettings) -> str:
    """Delivery channel ("sms" or "call") for a content-type tag.

    Critical alerts follow `critical_enabled`, explicit `_call` / `_sms`
    suffixes win next, and everything else uses the user's default.
    """
    if "critical" in content_type:
        return settings.critical_enabled or "sms"
    if content_type.endswith("_call"):
        return "call"
    if content_type.endswith("_sms"):
        return "sms"
    return settings.notification_type or "sms"


class NotificationDispatcher:
    """Sends one notification per call and never raises."""

    def __init__(
        self,
        store: ProactiveStore,
        sender: NotificationSender,
        credits: CreditGate | None = None,
    ):
        self.store = store
        self.sender = sender
        self.credits = credits or UnmeteredCredits()

    async def send_notification(
        self,
        user_id: int,
        text: str,
        content_type: str,
        first_message: Optional[str] = None,
    ) -> bool:
        """Deliver `text` to the user. Returns True when the provider accepted it."""
        try:
            user = self.store.get_user(user_id)
        except Exception:
            logger.exception("Failed to load user %s for notification", user_id)
            return False
        if user is None:
            logger.error("User %s not found for notification", user_id)
            return False

        channel = resolve_channel(content_type, user)
        if channel == "call":
            return await self._send_call(user, text, content_type, first_message)
        return await self._send_sms(user, text, content_type)

    async def _send_call(
        self,
        user: UserSettings,
        text: str,
        content_type: str,
        first_message: Optional[str],
    ) -> bool:
        try:
            self.credits.check(user, CREDIT_CALL)
        except InsufficientCreditsError as e:
            logger.warning("User %s has insufficient credits for a call: %s", user.user_id, e)
            return False

        try:
            call_ref = await self.sender.send_voice_notification(
                user,
                first_message or DEFAULT_CALL_OPENER,
                text,
                content_type,
                user.timezone,
            )
        except Exception as e:
            logger.error("Failed to initiate call notification for user %s: %s", user.user_id, e)
            self._record_failure(user.user_id, content_type, f"Failed to initiate call: {e}")
            return False

        logger.info("Call notification %s placed for user %s", content_type, user.user_id)
        self._record_success(user, text, content_type, call_ref, "completed", CREDIT_CALL)
        return True

    async def _send_sms(self, user: UserSettings, text: str, content_type: str) -> bool:
        try:
            self.credits.check(user, CREDIT_SMS)
        except InsufficientCreditsError as e:
            logger.warning("User %s has insufficient credits for an SMS: %s", user.user_id, e)
            return False

        try:
            sid = await self.sender.send_sms(user, text)
        except Exception as e:
            logger.error("Failed to send SMS notification for user %s: %s", user.user_id, e)
            self._record_failure(user.user_id, content_type, f"Failed to send SMS: {e}")
            return False

        logger.info("SMS notification %s sent to user %s", content_type, user.user_id)
        self._record_success(user, text, content_type, sid, "delivered", CREDIT_SMS)
        return True

    def _record_success(
        self,
        user: UserSettings,
        text: str,
        content_type: str,
        external_ref: Optional[str],
        status: str,
        credit_type: str,
    ):
        # The send already happened; bookkeeping failures are logged only
        try:
            self.store.create_message_history(user.user_id, text)
        except Exception as e:
            logger.error("Failed to store notification in history: %s", e)
        try:
            self.store.log_usage(user.user_id, content_type, True, status, external_ref=external_ref)
        except Exception as e:
            logger.error("Failed to log notification usage: %s", e)
        try:
            self.credits.deduct(user, credit_type)
        except Exception as e:
            logger.error("Failed to deduct %s credits for user %s: %s", credit_type, user.user_id, e)

    def _record_failure(self, user_id: int, content_type: str, reason: str):
        try:
            self.store.log_usage(user_id, content_type, False, "failed", reason=reason)
        except Exception as e:
            logger.error("Failed to log failed notification: %s", e)
