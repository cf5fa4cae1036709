"""Calendar collaborator and event parsing for digests."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Protocol

from proactive_listener.sources.base import CalendarEvent

logger = logging.getLogger(__name__)


class CalendarProvider(Protocol):
    """Connected calendar. Each event is `{"summary", "start", "duration_minutes"}`."""

    async def has_active_calendar(self, user_id: int) -> bool:
        ...

    async def fetch_events(self, user_id: int, start_rfc3339: str, end_rfc3339: str) -> List[Dict[str, Any]]:
        ...


def parse_calendar_events(raw_events: List[Dict[str, Any]]) -> List[CalendarEvent]:
    events: List[CalendarEvent] = []
    for raw in raw_events:
        start = raw.get("start")
        if not start:
            logger.debug("Skipping calendar event without start: %s", raw.get("summary"))
            continue
        try:
            duration = int(raw.get("duration_minutes") or 0)
        except (TypeError, ValueError):
            duration = 0
        events.append(CalendarEvent(
            title=str(raw.get("summary") or "Untitled event"),
            start_time_rfc=str(start),
            duration_minutes=duration,
        ))
    return events
