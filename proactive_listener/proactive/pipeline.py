"""Bridge message pipeline: decide whether one incoming chat message interrupts the user.

Order of work for a single event:

  1. room-level skips: muted room, stale event, bridge management room
  2. normalization into an InboundMessage
  3. eligibility gates (bridged sender, subscription, group mention, bridge errors)
  4. read/reply suppression after the processing delay
  5. policy stages in order, first decision wins:
       confirmation relay -> priority sender -> waiting check -> criticality
  6. at most one dispatch

Every event is handled in its own task; handle_event never raises.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from proactive_listener.config import CONFIRMATION_PROMPT, CRITICAL_COOLDOWN_SECONDS, TIMELINE_SCAN_LIMIT, Settings
from proactive_listener.llm.client import LLMCallError, LLMClient
from proactive_listener.proactive.criticality import check_message_importance, critical_fallback_copy
from proactive_listener.proactive.dispatcher import NotificationDispatcher
from proactive_listener.proactive.priority import (
    is_focus_sender,
    match_priority,
    priority_content_type,
    priority_first_message,
    trim_for_sms,
)
from proactive_listener.proactive.registry import SessionRegistry, TaskRegistry
from proactive_listener.proactive.suppression import SuppressionFilter
from proactive_listener.proactive.waiting_checks import (
    check_waiting_check_match,
    find_waiting_check,
    waiting_check_content_type,
    waiting_check_fallback_copy,
)
from proactive_listener.sources.base import BridgeEvent, InboundMessage
from proactive_listener.sources.matrix import (
    ChatTimelineSource,
    capitalize,
    get_latest_sent_message,
    get_triggering_message,
    is_bridge_error,
    is_disconnect_notice,
    load_room_context,
    normalize_event,
    sender_prefix,
)
from proactive_listener.store.models import BridgeConnection, PrioritySender, UserSettings, WaitingCheck
from proactive_listener.store.store import ProactiveStore

logger = logging.getLogger(__name__)

CONFIRMATION_WORDS = ("yes", "y")


@dataclass
class Decision:
    """Outcome of one event.

    kind is "notify" (a notification was chosen), "skip" (nothing to send),
    "suppressed" (the user already saw it) or "error".
    """

    kind: str
    reason: str = ""
    content_type: Optional[str] = None
    text: Optional[str] = None
    first_message: Optional[str] = None
    delivered: bool = False

    @classmethod
    def notify(cls, content_type: str, text: str, first_message: Optional[str], reason: str) -> "Decision":
        return cls("notify", reason, content_type, text, first_message)

    @classmethod
    def skip(cls, reason: str) -> "Decision":
        return cls("skip", reason)


@dataclass
class StageContext:
    """Everything a policy stage may look at for one message."""

    user: UserSettings
    message: InboundMessage
    source: ChatTimelineSource
    priority_senders: List[PrioritySender] = field(default_factory=list)
    waiting_checks: List[WaitingCheck] = field(default_factory=list)

    @property
    def user_id(self) -> int:
        return self.user.user_id

    @property
    def llm_message(self) -> str:
        m = self.message
        return f"{capitalize(m.service)} from {m.chat_name}: {m.content}"


# ══════════════════════════════════════════════════════════════
# Policy stages
# ══════════════════════════════════════════════════════════════


class ConfirmationRelayStage:
    """Relay a message the other party confirmed as time-sensitive.

    Only a bare "yes"/"y" in a one-to-one room counts, and only when the
    user's latest message in the room is the auto-responder's prompt.
    """

    name = "confirmation"

    def __init__(self, prompt_text: str = CONFIRMATION_PROMPT):
        self.prompt_text = prompt_text

    async def evaluate(self, ctx: StageContext) -> Optional[Decision]:
        m = ctx.message
        if m.is_group or m.content.strip().lower() not in CONFIRMATION_WORDS:
            return None

        try:
            events = await ctx.source.get_room_messages(m.room_id, direction="b", limit=TIMELINE_SCAN_LIMIT)
        except Exception as e:
            logger.error("Failed to fetch latest sent message in %s: %s", m.room_id, e)
            return None

        latest = get_latest_sent_message(events, ctx.source.user_id)
        if latest is None:
            return Decision.skip("confirmation without a sent message")
        if self.prompt_text not in latest.body:
            return Decision.skip("confirmation without the assistant prompt")

        trigger = get_triggering_message(events, ctx.source.user_id, self.prompt_text)
        if trigger is None:
            logger.info("No triggering message found for confirmation in %s", m.room_id)
            return Decision.skip("confirmation without a triggering message")

        cap = capitalize(m.service)
        return Decision.notify(
            f"{m.service}_critical",
            f"{cap} from {m.chat_name}: {trigger.body}",
            f"Hey, someone confirmed a time-sensitive {cap} message.",
            "confirmed by sender",
        )


class PriorityStage:
    name = "priority"

    async def evaluate(self, ctx: StageContext) -> Optional[Decision]:
        m = ctx.message
        ps = match_priority(m.service, m.chat_name, m.sender_name, ctx.priority_senders)
        if ps is None:
            return None
        return Decision.notify(
            priority_content_type(m.service, ps),
            trim_for_sms(m.service, ps.sender, m.content),
            priority_first_message(m.service, ps),
            f"priority sender {ps.sender}",
        )


class WaitingCheckStage:
    """LLM waiting-check match. The delete doubles as the consumption claim."""

    name = "waiting_check"

    def __init__(self, llm: LLMClient, store: ProactiveStore):
        self.llm = llm
        self.store = store

    async def evaluate(self, ctx: StageContext) -> Optional[Decision]:
        if not ctx.waiting_checks:
            return None

        check_id, sms, first = await asyncio.to_thread(
            check_waiting_check_match, self.llm, ctx.llm_message, ctx.waiting_checks,
        )
        if check_id is None:
            return None

        if not self.store.delete_waiting_check(ctx.user_id, check_id):
            logger.info("Waiting check %s already consumed; not notifying again", check_id)
            return Decision.skip(f"waiting check {check_id} already consumed")

        platform = ctx.message.service
        fallback_text, fallback_first = waiting_check_fallback_copy(platform)
        matched = find_waiting_check(ctx.waiting_checks, check_id)
        return Decision.notify(
            waiting_check_content_type(platform, matched),
            sms or fallback_text,
            first or fallback_first,
            f"waiting check {check_id}",
        )


class CriticalityStage:
    name = "criticality"

    def __init__(self, llm: LLMClient, store: ProactiveStore):
        self.llm = llm
        self.store = store

    async def evaluate(self, ctx: StageContext) -> Optional[Decision]:
        if ctx.user.critical_enabled is None:
            logger.debug("Critical message checking disabled for user %s", ctx.user_id)
            return Decision.skip("critical checking disabled")

        m = ctx.message
        try:
            is_critical, text, first = await asyncio.to_thread(
                check_message_importance,
                self.llm,
                ctx.llm_message,
                m.service,
                m.chat_name,
                m.content,
                ctx.user.call_notify,
            )
        except LLMCallError as e:
            logger.error("Criticality check failed for user %s: %s", ctx.user_id, e)
            return Decision("error", f"criticality check failed: {e}")

        if not is_critical:
            return Decision.skip("not critical")

        if ctx.user.action_on_critical_message == "notify_family":
            if not is_focus_sender(m.chat_name, m.sender_name, ctx.priority_senders):
                logger.info("Critical message from non-focus sender skipped for user %s", ctx.user_id)
                return Decision.skip("not a focus sender")

        content_type = f"{m.service}_critical"
        if self.store.has_recent_notification(ctx.user_id, content_type, CRITICAL_COOLDOWN_SECONDS):
            logger.info(
                "Skipping notification - already sent %s notification within last %s seconds",
                content_type, CRITICAL_COOLDOWN_SECONDS,
            )
            return Decision.skip("critical cooldown")

        fallback_text, fallback_first = critical_fallback_copy(m.service)
        return Decision.notify(content_type, text or fallback_text, first or fallback_first, "critical")


# ══════════════════════════════════════════════════════════════
# Pipeline
# ══════════════════════════════════════════════════════════════


class BridgeMessagePipeline:
    def __init__(
        self,
        store: ProactiveStore,
        dispatcher: NotificationDispatcher,
        llm: LLMClient,
        settings: Settings | None = None,
        suppression: SuppressionFilter | None = None,
        sessions: SessionRegistry | None = None,
        tasks: TaskRegistry | None = None,
        stages: Sequence | None = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.settings = settings or Settings()
        self.suppression = suppression or SuppressionFilter(store)
        self.sessions = sessions or SessionRegistry()
        self.tasks = tasks or TaskRegistry()
        self._cooldown_locks: Dict[tuple, asyncio.Lock] = {}
        self.stages = list(stages) if stages is not None else [
            ConfirmationRelayStage(),
            PriorityStage(),
            WaitingCheckStage(llm, store),
            CriticalityStage(llm, store),
        ]

    async def spawn(
        self,
        source: ChatTimelineSource,
        user_id: int,
        room_id: str,
        event: BridgeEvent,
    ) -> asyncio.Task:
        """Handle `event` in its own task so delays never block the sync loop."""
        key = (user_id, event.event_id)
        task = asyncio.create_task(self._run_tracked(key, source, user_id, room_id, event))
        await self.tasks.register(key, task)
        return task

    async def _run_tracked(self, key, source, user_id, room_id, event) -> Decision:
        try:
            return await self.handle_event(source, user_id, room_id, event)
        finally:
            await self.tasks.release(key)

    async def handle_event(
        self,
        source: ChatTimelineSource,
        user_id: int,
        room_id: str,
        event: BridgeEvent,
    ) -> Decision:
        try:
            decision = await self._process(source, user_id, room_id, event)
        except Exception as e:
            logger.exception("Bridge message handling failed for user %s event %s", user_id, event.event_id)
            return Decision("error", str(e))
        logger.debug("Event %s for user %s: %s (%s)", event.event_id, user_id, decision.kind, decision.reason)
        return decision

    async def _process(
        self,
        source: ChatTimelineSource,
        user_id: int,
        room_id: str,
        event: BridgeEvent,
    ) -> Decision:
        room = await load_room_context(source, room_id)
        if room.is_muted:
            logger.info("Skipping message from a muted room")
            return Decision.skip("muted room")

        if self.suppression.is_stale(event):
            logger.info("Skipping old message %s", event.event_id)
            return Decision.skip("stale event")

        management = self._management_bridge(user_id, room_id)
        if management is not None:
            await self._handle_management_message(user_id, management, event)
            return Decision.skip("bridge management room")

        message = normalize_event(event, room, source.user_id)
        if message is None:
            return Decision.skip("unsupported event")

        bridge = self.store.get_bridge(user_id, message.service)
        if bridge is None:
            logger.error("No bridge found for service %s", message.service)
            return Decision.skip("no bridge")

        user = self.store.get_user(user_id)
        if user is None:
            return Decision.skip("unknown user")

        reason = self._ineligible(user, event, message)
        if reason:
            logger.debug("Skipping %s: %s", event.event_id, reason)
            return Decision.skip(reason)

        proceed = await self.suppression.should_proceed(
            source, user_id, message.service, room_id, event, bridge.last_seen_online,
        )
        if not proceed:
            return Decision("suppressed", "user already saw the message")

        ctx = StageContext(
            user=user,
            message=message,
            source=source,
            priority_senders=self.store.get_priority_senders(user_id, message.service),
            waiting_checks=self.store.get_waiting_checks(user_id, message.service),
        )

        decision = None
        for stage in self.stages:
            decision = await stage.evaluate(ctx)
            if decision is not None:
                logger.debug("Stage %s decided %s for %s", stage.name, decision.kind, event.event_id)
                break
        if decision is None:
            return Decision.skip("no stage matched")

        if decision.kind == "notify":
            return await self._dispatch(user_id, decision)
        return decision

    async def _dispatch(self, user_id: int, decision: Decision) -> Decision:
        """Send a notify decision, holding the cooldown lock for critical content types.

        The cooldown is re-checked under the lock so two events racing through
        the stages cannot both deliver inside the same window.
        """
        if not decision.content_type.endswith("_critical"):
            decision.delivered = await self.dispatcher.send_notification(
                user_id, decision.text, decision.content_type, decision.first_message,
            )
            return decision

        lock = self._cooldown_locks.setdefault((user_id, decision.content_type), asyncio.Lock())
        async with lock:
            if self.store.has_recent_notification(user_id, decision.content_type, CRITICAL_COOLDOWN_SECONDS):
                logger.info(
                    "Skipping %s notification for user %s - sent within last %s seconds",
                    decision.content_type, user_id, CRITICAL_COOLDOWN_SECONDS,
                )
                return Decision.skip("critical cooldown")
            decision.delivered = await self.dispatcher.send_notification(
                user_id, decision.text, decision.content_type, decision.first_message,
            )
        return decision

    def _ineligible(self, user: UserSettings, event: BridgeEvent, message: InboundMessage) -> Optional[str]:
        if not event.sender_localpart.startswith(sender_prefix(message.service)):
            return f"non-{message.service} sender"
        if not user.has_monitoring_subscription:
            return "no monitoring subscription"
        if not user.proactive_agent_on:
            return "proactive agent off"
        if message.is_group and not message.is_mention:
            return "group message without mention"
        if is_bridge_error(message.content):
            return "bridge error notice"
        return None

    # ══════════════════════════════════════════════════════════════
    # Bridge management rooms
    # ══════════════════════════════════════════════════════════════

    def _management_bridge(self, user_id: int, room_id: str) -> Optional[BridgeConnection]:
        for bridge in self.store.get_bridges(user_id):
            if bridge.room_id == room_id:
                return bridge
        return None

    async def _handle_management_message(self, user_id: int, bridge: BridgeConnection, event: BridgeEvent):
        if bridge.status == "connecting":
            logger.debug("Skipping disconnection check during initial connection for %s", bridge.bridge_type)
            return

        bot = self.settings.bridge_bot(bridge.bridge_type)
        if not bot:
            logger.error("%s_BRIDGE_BOT not set", bridge.bridge_type.upper())
            return
        if event.sender != bot:
            logger.debug("Message not from bridge bot, skipping")
            return
        if event.msgtype not in ("m.text", "m.notice"):
            return

        if not is_disconnect_notice(event.body):
            logger.debug("No disconnection detected in management room message")
            return

        logger.info("Detected disconnection in %s bridge for user %s: %s", bridge.bridge_type, user_id, event.body)
        self.store.delete_bridge(user_id, bridge.bridge_type)
        if not self.store.has_active_bridges(user_id):
            await self.sessions.release(user_id)
