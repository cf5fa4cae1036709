"""In-memory stand-ins for the engine's collaborators."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from proactive_listener.llm.client import LLMCallError
from proactive_listener.proactive.dispatcher import SendError
from proactive_listener.sources.base import BridgeEvent, MessageInfo

USER_MXID = "@alice:localhost"
HOUR = 3600


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds

    @property
    def now_ms(self) -> int:
        return int(self.now * 1000)


class FakeSleep:
    """Records requested delays and optionally runs a hook (e.g. the user reads the room)."""

    def __init__(self, clock: FakeClock | None = None, on_sleep=None):
        self.delays: List[float] = []
        self.clock = clock
        self.on_sleep = on_sleep

    async def __call__(self, seconds: float):
        self.delays.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)
        if self.on_sleep is not None:
            self.on_sleep()


class FakeTimelineSource:
    def __init__(
        self,
        user_id: str = USER_MXID,
        display_name: str = "Bob (WA)",
        member_count: int = 2,
        muted: bool = False,
    ):
        self.user_id = user_id
        self.display_name = display_name
        self.member_count = member_count
        self.muted = muted
        self.events: List[BridgeEvent] = []  # newest first
        self.receipt: Optional[Tuple[str, int]] = None
        self.fail_timeline = False
        self.fail_receipt = False

    def push(self, event: BridgeEvent):
        self.events.insert(0, event)

    async def get_room_messages(self, room_id: str, direction: str = "b", limit: int = 100) -> List[BridgeEvent]:
        if self.fail_timeline:
            raise RuntimeError("timeline unavailable")
        events = self.events[:limit]
        return events if direction == "b" else list(reversed(events))

    async def get_read_receipt(self, room_id: str, user_id: str) -> Optional[Tuple[str, int]]:
        if self.fail_receipt:
            raise RuntimeError("receipt unavailable")
        return self.receipt

    async def get_room_display_name(self, room_id: str) -> str:
        return self.display_name

    async def get_joined_member_count(self, room_id: str) -> int:
        return self.member_count

    async def is_room_muted(self, room_id: str) -> bool:
        return self.muted


class FakeLLM:
    """Scripted run_tool: responses keyed by tool name, consumed in order."""

    provider = "fake"
    model = "fake-model"

    def __init__(self, responses: Dict[str, List[Any]] | None = None):
        self.responses = {k: list(v) for k, v in (responses or {}).items()}
        self.calls: List[Tuple[str, str]] = []

    def script(self, tool_name: str, *responses: Any):
        self.responses.setdefault(tool_name, []).extend(responses)

    def calls_for(self, tool_name: str) -> List[str]:
        return [msg for name, msg in self.calls if name == tool_name]

    def run_tool(self, system_prompt, user_message, tool, temperature=0.0, max_tokens=200):
        self.calls.append((tool.name, user_message))
        queue = self.responses.get(tool.name)
        if not queue:
            raise AssertionError(f"Unexpected {tool.name} call")
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        return response


class FakeSender:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sms: List[Tuple[int, str]] = []
        self.calls: List[Dict[str, Any]] = []

    async def send_sms(self, user, text, media=None) -> str:
        if self.fail:
            raise SendError("provider down")
        self.sms.append((user.user_id, text))
        return f"SM{len(self.sms)}"

    async def send_voice_notification(self, user, first_message, body_text, content_type, timezone) -> str:
        if self.fail:
            raise SendError("provider down")
        self.calls.append({
            "user_id": user.user_id,
            "first_message": first_message,
            "body": body_text,
            "content_type": content_type,
            "timezone": timezone,
        })
        return f"CA{len(self.calls)}"

    @property
    def total(self) -> int:
        return len(self.sms) + len(self.calls)


class FakeCalendar:
    def __init__(self, events: List[Dict[str, Any]] | None = None, active: bool = True, fail: bool = False):
        self.events = events or []
        self.active = active
        self.fail = fail
        self.windows: List[Tuple[str, str]] = []

    async def has_active_calendar(self, user_id: int) -> bool:
        return self.active

    async def fetch_events(self, user_id, start_rfc3339, end_rfc3339):
        if self.fail:
            raise RuntimeError("calendar down")
        self.windows.append((start_rfc3339, end_rfc3339))
        return list(self.events)


class FakeEmail:
    def __init__(self, emails: List[Dict[str, Any]] | None = None, configured: bool = True, fail: bool = False):
        self.emails = emails or []
        self.configured = configured
        self.fail = fail

    async def has_imap_credentials(self, user_id: int) -> bool:
        return self.configured

    async def fetch_recent(self, user_id, unread_only=False, limit=50):
        if self.fail:
            raise RuntimeError("imap down")
        return list(self.emails)[:limit]


class FakeBridgeHistory:
    def __init__(self, messages: Dict[str, List[MessageInfo]] | None = None, failing: tuple = ()):
        self.messages = messages or {}
        self.failing = failing
        self.requests: List[Tuple[str, int]] = []

    async def fetch_bridge_messages(self, service, user_id, since_ts, unread_only=True):
        self.requests.append((service, since_ts))
        if service in self.failing:
            raise RuntimeError(f"{service} bridge down")
        return list(self.messages.get(service, []))


def call_failure() -> LLMCallError:
    return LLMCallError("quota exceeded")
