"""Email collaborator and its conversion into digest MessageInfo rows."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional, Protocol

from proactive_listener.sources.base import MessageInfo

logger = logging.getLogger(__name__)

EMAIL_FETCH_LIMIT = 50


class EmailProvider(Protocol):
    """IMAP-backed mailbox. Each email is `{"from", "snippet", "date"}`."""

    async def has_imap_credentials(self, user_id: int) -> bool:
        ...

    async def fetch_recent(
        self, user_id: int, unread_only: bool = False, limit: int = EMAIL_FETCH_LIMIT,
    ) -> List[Dict[str, Any]]:
        ...


def parse_email_date(value: Any) -> Optional[datetime]:
    """Accept a datetime, an RFC 2822 header value or an ISO-8601 string."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        try:
            dt = parsedate_to_datetime(text)
        except (TypeError, ValueError):
            try:
                dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def emails_to_message_info(emails: List[Dict[str, Any]], cutoff: datetime) -> List[MessageInfo]:
    """Keep emails dated at or after `cutoff`. Undated emails are dropped."""
    messages: List[MessageInfo] = []
    for email in emails:
        dt = parse_email_date(email.get("date"))
        if dt is None:
            logger.debug("Skipping undated email from %s", email.get("from"))
            continue
        if dt < cutoff:
            continue
        messages.append(MessageInfo(
            sender=str(email.get("from") or "Unknown"),
            content=str(email.get("snippet") or email.get("subject") or ""),
            timestamp_rfc=dt.isoformat(),
            platform="email",
            timestamp=int(dt.timestamp()),
        ))
    return messages
