"""Digest scheduler — morning, day and evening digests on the user's local clock.

A slot fires when the user's local hour equals its configured "HH:00". The
window looks back to the previous enabled slot and forward to the next
one; disabled neighbours fall back to fixed hours:

    slot      next (fallback)             previous (fallback)
    morning   day, else evening, else 0   evening, else 0
    day       evening, else 0             morning, else 6
    evening   morning, else 8             day, else 12

A neighbour whose configured value cannot be parsed falls back to an hour
fixed per slot pair (`DigestSlot.malformed_hours`).
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from proactive_listener.config import BRIDGE_SERVICES
from proactive_listener.llm.client import LLMClient
from proactive_listener.proactive.alerts import AdminAlerter
from proactive_listener.proactive.composer import generate_digest, is_priority
from proactive_listener.proactive.dispatcher import NotificationDispatcher
from proactive_listener.sources.base import CalendarEvent, MessageInfo
from proactive_listener.sources.calendar import CalendarProvider, parse_calendar_events
from proactive_listener.sources.mail import EMAIL_FETCH_LIMIT, EmailProvider, emails_to_message_info
from proactive_listener.sources.matrix import BridgeHistorySource, capitalize
from proactive_listener.store.models import DIGEST_SLOTS, DigestSettings
from proactive_listener.store.store import ProactiveStore

logger = logging.getLogger(__name__)


class DigestConfigError(Exception):
    """A digest hour or timezone that cannot be used."""


@dataclass(frozen=True)
class DigestSlot:
    name: str
    next_slots: Tuple[str, ...]
    next_fallback: int
    prev_slot: str
    prev_fallback: int
    greeting: str
    first_message: str
    # neighbour -> hour assumed when that neighbour's configured value is unparseable
    malformed_hours: Tuple[Tuple[str, int], ...] = ()

    @property
    def content_type(self) -> str:
        return f"{self.name}_digest"

    def malformed_fallback(self, neighbour: str) -> int:
        return dict(self.malformed_hours)[neighbour]


SLOTS: Dict[str, DigestSlot] = {
    "morning": DigestSlot(
        "morning", ("day", "evening"), 0, "evening", 0,
        "Good morning!", "Good morning! Want to hear your morning digest?",
        (("day", 12), ("evening", 18)),
    ),
    "day": DigestSlot(
        "day", ("evening",), 0, "morning", 6,
        "Hello!", "Hello! Want to hear your daily digest?",
        (("evening", 0), ("morning", 6)),
    ),
    "evening": DigestSlot(
        "evening", ("morning",), 8, "day", 12,
        "Good evening!", "Good evening! Want to hear your evening digest?",
        (("morning", 8), ("day", 12)),
    ),
}


# ══════════════════════════════════════════════════════════════
# Hour arithmetic
# ══════════════════════════════════════════════════════════════


def parse_digest_hour(value: str) -> int:
    """Hour of an "HH:00" string. Raises DigestConfigError outside 0-23 or on junk."""
    head = (value or "").split(":", 1)[0].strip()
    try:
        hour = int(head)
    except ValueError:
        raise DigestConfigError(f"Invalid hour in digest time: {value!r}")
    if not 0 <= hour <= 23:
        raise DigestConfigError(f"Invalid hour value (must be 0-23): {value!r}")
    return hour


def _neighbour_hour(slot: DigestSlot, neighbour: str, value: str) -> int:
    try:
        return parse_digest_hour(value)
    except DigestConfigError:
        return slot.malformed_fallback(neighbour)


def hours_until(current_hour: int, target_hour: int) -> int:
    if current_hour <= target_hour:
        return target_hour - current_hour
    return 24 - (current_hour - target_hour)


def hours_since(current_hour: int, previous_hour: int) -> int:
    if current_hour >= previous_hour:
        return current_hour - previous_hour
    return current_hour + 24 - previous_hour


def compute_window(slot: DigestSlot, digest_hour: int, settings: DigestSettings) -> Tuple[int, int]:
    """(hours_to_next, hours_since_prev) for `slot` firing at `digest_hour`."""
    next_hour = slot.next_fallback
    for name in slot.next_slots:
        configured = settings.hour_for(name)
        if configured:
            next_hour = _neighbour_hour(slot, name, configured)
            break

    prev_configured = settings.hour_for(slot.prev_slot)
    prev_hour = (
        _neighbour_hour(slot, slot.prev_slot, prev_configured) if prev_configured else slot.prev_fallback
    )

    return hours_until(digest_hour, next_hour), hours_since(digest_hour, prev_hour)


def load_timezone(name: Optional[str]) -> ZoneInfo:
    if not name:
        raise DigestConfigError("No timezone set")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise DigestConfigError(f"Invalid timezone: {name}") from e


def sort_messages(messages: List[MessageInfo], priority_map: Dict[str, Iterable[str]]) -> List[MessageInfo]:
    """Platform name, then priority senders first, then newest first."""
    return sorted(
        messages,
        key=lambda m: (m.platform, not is_priority(m, priority_map), -m.timestamp),
    )


# ══════════════════════════════════════════════════════════════
# Scheduler
# ══════════════════════════════════════════════════════════════

ComposeFn = Callable[..., str]
SleepFn = Callable[[float], Awaitable[None]]


class DigestScheduler:
    def __init__(
        self,
        store: ProactiveStore,
        dispatcher: NotificationDispatcher,
        llm: LLMClient,
        calendar: CalendarProvider | None = None,
        email: EmailProvider | None = None,
        bridges: BridgeHistorySource | None = None,
        alerter: AdminAlerter | None = None,
        compose: ComposeFn = generate_digest,
        clock: Callable[[], float] = time.time,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.llm = llm
        self.calendar = calendar
        self.email = email
        self.bridges = bridges
        self.alerter = alerter
        self._compose = compose
        self._clock = clock
        self._sleep = sleep
        self._background: set = set()

    async def check_morning_digest(self, user_id: int) -> Optional[str]:
        return await self.check_digest("morning", user_id)

    async def check_day_digest(self, user_id: int) -> Optional[str]:
        return await self.check_digest("day", user_id)

    async def check_evening_digest(self, user_id: int) -> Optional[str]:
        return await self.check_digest("evening", user_id)

    async def check_digest(self, slot_name: str, user_id: int) -> Optional[str]:
        """Send the slot's digest if it is due. Returns the text that was dispatched."""
        slot = SLOTS[slot_name]
        settings = self.store.get_digest_settings(user_id)
        hour_str = settings.hour_for(slot.name)
        if not hour_str or not settings.timezone:
            return None

        try:
            digest_hour = parse_digest_hour(hour_str)
            tz = load_timezone(settings.timezone)
        except DigestConfigError as e:
            logger.error("Skipping %s digest for user %s: %s", slot.name, user_id, e)
            return None

        now_utc = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        if now_utc.astimezone(tz).hour != digest_hour:
            return None

        hours_to_next, hours_since_prev = compute_window(slot, digest_hour, settings)

        calendar_events = await self._fetch_calendar(
            user_id, now_utc, now_utc + timedelta(hours=hours_to_next),
        )
        cutoff = now_utc - timedelta(hours=hours_since_prev)
        messages = await self._fetch_email(user_id, cutoff)
        for service in BRIDGE_SERVICES:
            messages.extend(await self._fetch_bridge(user_id, service, cutoff, hours_since_prev))

        logger.debug("Total %d messages collected for %s digest", len(messages), slot.name)
        if not messages and not calendar_events:
            logger.debug("Nothing new for user %s; skipping %s digest", user_id, slot.name)
            return None

        try:
            priority_map = self.store.get_priority_map(user_id)
        except Exception as e:
            logger.error("Failed to load priority senders for user %s: %s", user_id, e)
            priority_map = {}
        messages = sort_messages(messages, priority_map)

        try:
            digest = await asyncio.to_thread(
                self._compose, self.llm, messages, calendar_events, hours_to_next, priority_map,
            )
            text = f"{slot.greeting} {digest}"
        except Exception as e:
            logger.error("Digest composition failed for user %s: %s", user_id, e)
            text = (
                f"{slot.greeting} Here's your {slot.name} digest covering the last "
                f"{hours_since_prev} hours. Next digest in {hours_to_next} hours."
            )

        logger.info(
            "Sending %s digest for user %s at %d:00 in timezone %s",
            slot.name, user_id, digest_hour, settings.timezone,
        )
        await self.dispatcher.send_notification(user_id, text, slot.content_type, slot.first_message)
        return text

    # ══════════════════════════════════════════════════════════════
    # Sources
    # ══════════════════════════════════════════════════════════════

    async def _fetch_calendar(self, user_id: int, start: datetime, end: datetime) -> List[CalendarEvent]:
        if self.calendar is None:
            return []
        try:
            if not await self.calendar.has_active_calendar(user_id):
                logger.debug("User %s has no active calendar", user_id)
                return []
            raw = await self.calendar.fetch_events(user_id, start.isoformat(), end.isoformat())
        except Exception as e:
            logger.error("Failed to fetch calendar events for user %s: %s", user_id, e)
            return []
        return parse_calendar_events(raw)

    async def _fetch_email(self, user_id: int, cutoff: datetime) -> List[MessageInfo]:
        if self.email is None:
            return []
        try:
            if not await self.email.has_imap_credentials(user_id):
                logger.debug("Skipping email fetch - user %s has no IMAP credentials configured", user_id)
                return []
            emails = await self.email.fetch_recent(user_id, unread_only=False, limit=EMAIL_FETCH_LIMIT)
        except Exception as e:
            logger.error("Failed to fetch emails for digest: %s", e)
            return []
        messages = emails_to_message_info(emails, cutoff)
        logger.debug("Filtered %d email messages for digest", len(messages))
        return messages

    async def _fetch_bridge(
        self,
        user_id: int,
        service: str,
        cutoff: datetime,
        hours_since_prev: int,
    ) -> List[MessageInfo]:
        if self.bridges is None:
            return []
        try:
            bridge = self.store.get_bridge(user_id, service)
        except Exception as e:
            logger.error("Failed to check %s connection for user %s: %s", capitalize(service), user_id, e)
            self._alert_bridge_check_failed(user_id, service, e)
            return []
        if bridge is None or bridge.status != "connected":
            logger.debug("%s not connected for user %s", capitalize(service), user_id)
            return []

        try:
            fetched = await self.bridges.fetch_bridge_messages(
                service, user_id, int(cutoff.timestamp()), unread_only=True,
            )
        except Exception as e:
            logger.error("Failed to fetch %s messages for digest: %s", capitalize(service), e)
            return []

        logger.debug(
            "Fetched %d %s messages from the last %d hours for digest",
            len(fetched), capitalize(service), hours_since_prev,
        )
        for m in fetched:
            m.platform = service
        return list(fetched)

    def _alert_bridge_check_failed(self, user_id: int, service: str, error: Exception):
        if self.alerter is None:
            return
        cap = capitalize(service)
        stamp = datetime.fromtimestamp(self._clock(), tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
        message = (
            f"Failed to check {cap} bridge connection during digest generation.\n\n"
            f"User ID: {user_id}\nError: {error}\nTimestamp: {stamp}"
        )
        task = asyncio.create_task(self.alerter.send_alert_async(f"Bridge Check Failed - {cap}", message))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ══════════════════════════════════════════════════════════════
    # Driver
    # ══════════════════════════════════════════════════════════════

    async def tick(self, user_ids: Sequence[int] | None = None) -> int:
        """Run every slot check for every user concurrently. Returns digests sent."""
        if user_ids is None:
            user_ids = self.store.get_users_with_digests()

        checks = [self.check_digest(slot, uid) for uid in user_ids for slot in DIGEST_SLOTS]
        results = await asyncio.gather(*checks, return_exceptions=True)

        sent = 0
        for result in results:
            if isinstance(result, Exception):
                logger.error("Digest check failed: %s", result)
            elif result:
                sent += 1
        return sent

    async def run_forever(self, stop: asyncio.Event | None = None):
        """Tick now and then at every UTC hour boundary until `stop` is set."""
        while stop is None or not stop.is_set():
            sent = await self.tick()
            if sent:
                logger.info("Sent %d digests", sent)
            now = self._clock()
            await self._sleep(3600 - (now % 3600) + 1)
