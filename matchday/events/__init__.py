"""
In-process domain events.

Usage:
    from matchday.events import EventBus, MATCH_EVENT_RECORDED

    bus = EventBus()
    bus.subscribe(MATCH_EVENT_RECORDED, handler)
    await bus.start()
    await bus.emit(MATCH_EVENT_RECORDED, {"match_id": "1035037"})
"""

from matchday.events.bus import MATCH_EVENT_RECORDED, MATCH_STATUS_CHANGED, Event, EventBus
from matchday.events.handlers import NotificationHandlers

__all__ = [
    "Event",
    "EventBus",
    "MATCH_EVENT_RECORDED",
    "MATCH_STATUS_CHANGED",
    "NotificationHandlers",
]
