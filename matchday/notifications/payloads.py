"""Notification types and per-platform push payload construction."""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from matchday.models import DevicePlatform, utc_now


class NotificationType(str, Enum):
    MATCH_REMINDER = "match_reminder"
    MATCH_START = "match_start"
    GOAL_SCORED = "goal_scored"
    HALF_TIME = "half_time"
    MATCH_END = "match_end"
    RED_CARD = "red_card"
    TEAM_NEWS = "team_news"
    STADIUM_GUIDE = "stadium_guide"
    TEST = "test"


class NotificationPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


ANDROID_CHANNELS = {
    NotificationType.MATCH_REMINDER: "match_updates",
    NotificationType.MATCH_START: "match_updates",
    NotificationType.HALF_TIME: "match_updates",
    NotificationType.MATCH_END: "match_updates",
    NotificationType.GOAL_SCORED: "important_events",
    NotificationType.RED_CARD: "important_events",
    NotificationType.STADIUM_GUIDE: "stadium_guides",
}

ANDROID_ICON = "ic_notification"
ANDROID_COLOR = "#3740FF"
WEB_ICON = "/images/notifications/icon.png"
WEB_BADGE = "/images/notifications/badge.png"


@dataclass
class Notification:
    """Platform-neutral notification content."""

    type: NotificationType
    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)
    image_url: Optional[str] = None
    priority: NotificationPriority = NotificationPriority.NORMAL


@dataclass
class PlatformPayload:
    """One multicast payload, shaped for a single platform."""

    platform: DevicePlatform
    title: str
    body: str
    data: dict[str, str]
    image_url: Optional[str] = None
    android: Optional[dict] = None
    apns: Optional[dict] = None
    webpush: Optional[dict] = None

    @property
    def notification_id(self) -> str:
        return self.data["notification_id"]


def generate_notification_id() -> str:
    return f"notif_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


def android_channel_for(notification_type: NotificationType) -> str:
    return ANDROID_CHANNELS.get(notification_type, "general")


def build_platform_payload(
    platform: DevicePlatform,
    notification: Notification,
    notification_id: Optional[str] = None,
) -> PlatformPayload:
    """Shape a notification for one platform.

    The data map always carries notification_id, type and timestamp, and
    every value is a string (push providers reject other types).
    """
    data = {key: str(value) for key, value in notification.data.items() if value is not None}
    data["type"] = notification.type.value
    data["notification_id"] = notification_id or generate_notification_id()
    data["timestamp"] = utc_now().isoformat() + "Z"

    high = notification.priority == NotificationPriority.HIGH
    payload = PlatformPayload(
        platform=platform,
        title=notification.title,
        body=notification.body,
        data=data,
        image_url=notification.image_url,
    )

    if platform == DevicePlatform.ANDROID:
        payload.android = {
            "priority": "high" if high else "normal",
            "channel_id": android_channel_for(notification.type),
            "icon": ANDROID_ICON,
            "color": ANDROID_COLOR,
        }
    elif platform == DevicePlatform.IOS:
        payload.apns = {
            "headers": {"apns-priority": "10" if high else "5"},
            "badge": 1,
            "sound": "default",
            "category": notification.type.value,
            "content_available": True,
        }
    else:
        payload.webpush = {"icon": WEB_ICON, "badge": WEB_BADGE}

    return payload


# ── Event notifications ──────────────────────────────────────────────────────
def _scoreline(event_data: dict) -> str:
    home = event_data.get("home_team_name") or "Home"
    away = event_data.get("away_team_name") or "Away"
    if event_data.get("home_score") is None:
        return f"{home} vs {away}"
    return f"{home} {event_data.get('home_score', 0)}-{event_data.get('away_score', 0)} {away}"


def build_event_notification(event_type: str, event_data: dict) -> Notification:
    """Notification content for a follower-facing event ("goals", "cards", ...)."""
    minute = event_data.get("minute")
    minute_text = f" ({minute}')" if minute is not None else ""
    player = event_data.get("player_name") or "Unknown player"
    data = {
        "match_id": event_data.get("match_id"),
        "team_id": event_data.get("team_id"),
        "event_type": event_type,
    }

    if event_type == "goals":
        return Notification(
            type=NotificationType.GOAL_SCORED,
            title="GOAL!",
            body=f"{player} scores{minute_text}",
            data=data,
            priority=NotificationPriority.HIGH,
        )
    if event_type == "cards":
        detail = event_data.get("detail") or "Card"
        red = "red" in detail.lower()
        return Notification(
            type=NotificationType.RED_CARD if red else NotificationType.TEAM_NEWS,
            title=detail,
            body=f"{player}{minute_text}",
            data=data,
            priority=NotificationPriority.HIGH if red else NotificationPriority.NORMAL,
        )
    if event_type == "substitutions":
        return Notification(
            type=NotificationType.TEAM_NEWS,
            title="Substitution",
            body=f"{player}{minute_text}",
            data=data,
            priority=NotificationPriority.LOW,
        )
    if event_type == "match_start":
        return Notification(
            type=NotificationType.MATCH_START,
            title="Kick-off!",
            body=_scoreline(event_data),
            data=data,
            priority=NotificationPriority.HIGH,
        )
    if event_type == "match_end":
        return Notification(
            type=NotificationType.MATCH_END,
            title="Full time",
            body=_scoreline(event_data),
            data=data,
            priority=NotificationPriority.NORMAL,
        )
    return Notification(
        type=NotificationType.TEAM_NEWS,
        title=event_data.get("title") or "Match update",
        body=event_data.get("body") or _scoreline(event_data),
        data=data,
    )
