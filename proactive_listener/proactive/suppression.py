"""Read/reply suppression — skip messages the user has already seen or answered.

Each event waits before classification: 10 minutes when the user was
active on the bridge in the last 5 minutes (so bursts collapse), 2 minutes
otherwise. After the wait the user's read receipt and then their own
replies are checked. Either one suppresses the event and moves the
bridge's last_seen_online watermark forward.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from proactive_listener.config import (
    ACTIVITY_THRESHOLD_SECONDS,
    LONG_WAIT_SECONDS,
    SHORT_WAIT_SECONDS,
    STALE_EVENT_SECONDS,
    TIMELINE_SCAN_LIMIT,
)
from proactive_listener.sources.base import BridgeEvent
from proactive_listener.sources.matrix import ChatTimelineSource
from proactive_listener.store.store import ProactiveStore

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class SuppressionFilter:
    def __init__(
        self,
        store: ProactiveStore,
        clock: Callable[[], float] = time.time,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.store = store
        self._clock = clock
        self._sleep = sleep

    def is_stale(self, event: BridgeEvent) -> bool:
        age_ms = max(int(self._clock() * 1000) - event.timestamp_ms, 0)
        return age_ms > STALE_EVENT_SECONDS * 1000

    def processing_delay(self, last_seen_online: Optional[int]) -> int:
        if last_seen_online is None:
            return SHORT_WAIT_SECONDS
        if int(self._clock()) - last_seen_online > ACTIVITY_THRESHOLD_SECONDS:
            return SHORT_WAIT_SECONDS
        return LONG_WAIT_SECONDS

    async def should_proceed(
        self,
        source: ChatTimelineSource,
        user_id: int,
        service: str,
        room_id: str,
        event: BridgeEvent,
        last_seen_online: Optional[int],
    ) -> bool:
        """Wait out the processing delay, then look for evidence the user saw `event`."""
        delay = self.processing_delay(last_seen_online)
        logger.info(
            "Waiting %ss before processing %s (user %s)",
            delay, event.event_id, "active" if delay == LONG_WAIT_SECONDS else "inactive",
        )
        await self._sleep(delay)

        if await self._read_past(source, user_id, service, room_id, event):
            return False
        if await self._replied_after(source, user_id, service, room_id, event):
            return False
        logger.debug("No read receipt or reply for %s; proceeding", event.event_id)
        return True

    async def _read_past(
        self,
        source: ChatTimelineSource,
        user_id: int,
        service: str,
        room_id: str,
        event: BridgeEvent,
    ) -> bool:
        try:
            receipt = await source.get_read_receipt(room_id, source.user_id)
        except Exception as e:
            logger.warning("Read receipt lookup failed for %s: %s", room_id, e)
            return False
        if receipt is None:
            return False

        receipt_event_id, receipt_ts_ms = receipt
        if receipt_ts_ms < event.timestamp_ms:
            return False

        logger.info("User already read %s (receipt on %s)", event.event_id, receipt_event_id)
        self._advance_watermark(user_id, service, receipt_ts_ms)
        return True

    async def _replied_after(
        self,
        source: ChatTimelineSource,
        user_id: int,
        service: str,
        room_id: str,
        event: BridgeEvent,
    ) -> bool:
        try:
            recent = await source.get_room_messages(room_id, direction="b", limit=TIMELINE_SCAN_LIMIT)
        except Exception as e:
            logger.warning("Timeline lookup failed for %s: %s", room_id, e)
            return False

        for candidate in recent:
            if candidate.sender == source.user_id and candidate.timestamp_ms > event.timestamp_ms:
                logger.info("User replied after %s; skipping notification", event.event_id)
                self._advance_watermark(user_id, service, candidate.timestamp_ms)
                return True
        return False

    def _advance_watermark(self, user_id: int, service: str, timestamp_ms: int):
        seen_at = timestamp_ms // 1000
        try:
            rows = self.store.update_bridge_last_seen_online(user_id, service, seen_at)
        except Exception as e:
            logger.error("Failed to update last_seen_online for user %s/%s: %s", user_id, service, e)
            return
        if rows == 0:
            logger.warning("No bridge row matched last_seen_online update (user %s, %s)", user_id, service)
        else:
            logger.debug("last_seen_online for user %s/%s set to %s", user_id, service, seen_at)
