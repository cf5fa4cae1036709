"""Best-effort operator alerts over a webhook, rate limited per subject."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import requests

from proactive_listener.config import ADMIN_ALERT_COOLDOWN_SECONDS
from proactive_listener.store.store import ProactiveStore

logger = logging.getLogger(__name__)


class AdminAlerter:
    """POSTs `{"subject", "message"}` to the configured webhook.

    The same subject is sent at most once per ADMIN_ALERT_COOLDOWN_SECONDS;
    sends are recorded as usage rows of the admin user. Store access stays
    on the calling thread, only the HTTP request moves off the event loop.
    """

    def __init__(self, store: ProactiveStore, webhook_url: str = "", admin_user_id: int = 1, timeout: float = 10):
        self.store = store
        self.webhook_url = webhook_url
        self.admin_user_id = admin_user_id
        self.timeout = timeout

    def _activity_type(self, subject: str) -> str:
        return f"admin_alert:{subject}"

    def _should_send(self, subject: str) -> bool:
        if not self.webhook_url:
            logger.warning("Admin alert '%s' not sent: no webhook configured", subject)
            return False
        activity = self._activity_type(subject)
        if self.store.has_recent_notification(self.admin_user_id, activity, ADMIN_ALERT_COOLDOWN_SECONDS):
            logger.info("Admin alert '%s' suppressed by cooldown", subject)
            return False
        return True

    def _post(self, subject: str, message: str) -> Optional[str]:
        """Returns None on success, otherwise the failure reason."""
        try:
            resp = requests.post(
                self.webhook_url,
                json={"subject": subject, "message": message},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            return str(e)
        if not resp.ok:
            return f"HTTP {resp.status_code}: {resp.text[:200]}"
        return None

    def _record(self, subject: str, error: Optional[str]) -> bool:
        activity = self._activity_type(subject)
        if error:
            logger.error("Failed to send admin alert '%s': %s", subject, error)
            self.store.log_usage(self.admin_user_id, activity, False, "failed", reason=error)
            return False
        self.store.log_usage(self.admin_user_id, activity, True, "delivered")
        logger.info("Admin alert '%s' sent", subject)
        return True

    def send_alert(self, subject: str, message: str) -> bool:
        if not self._should_send(subject):
            return False
        return self._record(subject, self._post(subject, message))

    async def send_alert_async(self, subject: str, message: str) -> bool:
        """Async variant for background tasks; never raises."""
        try:
            if not self._should_send(subject):
                return False
            error = await asyncio.to_thread(self._post, subject, message)
            return self._record(subject, error)
        except Exception:
            logger.exception("Admin alert '%s' failed", subject)
            return False
