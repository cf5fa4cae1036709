from proactive_listener.sources.base import BridgeEvent, CalendarEvent, InboundMessage, MessageInfo, RoomContext
from proactive_listener.sources.matrix import BridgeHistorySource, ChatTimelineSource, normalize_event
from proactive_listener.sources.mail import EmailProvider, emails_to_message_info
from proactive_listener.sources.calendar import CalendarProvider, parse_calendar_events

__all__ = [
    "BridgeEvent",
    "CalendarEvent",
    "InboundMessage",
    "MessageInfo",
    "RoomContext",
    "BridgeHistorySource",
    "ChatTimelineSource",
    "normalize_event",
    "EmailProvider",
    "emails_to_message_info",
    "CalendarProvider",
    "parse_calendar_events",
]
