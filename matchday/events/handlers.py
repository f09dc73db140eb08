"""
Notification handlers for MATCH_EVENT_RECORDED and MATCH_STATUS_CHANGED.

Flow:
1. Map the domain event to a follower preference key (goals, cards, ...)
2. Fan out to followers of the match, then both teams, then the league
3. A user reached at one level is excluded from the next, so each
   follower gets at most one push per event

Handlers never raise: the bus logs failures, and the follows service
already swallows dispatch errors.
"""

import logging
from typing import Optional

from matchday.events.bus import MATCH_EVENT_RECORDED, MATCH_STATUS_CHANGED, Event, EventBus
from matchday.models import FINISHED_STATUSES, EntityType

logger = logging.getLogger(__name__)

EVENT_PREFERENCE_KEYS = {
    "GOAL": "goals",
    "CARD": "cards",
    "SUBST": "substitutions",
}

PRE_MATCH_STATUSES = (None, "NS", "TBD")


def preference_for_match_event(event_type: Optional[str], detail: Optional[str] = None) -> Optional[str]:
    """Preference key for a provider event type, or None if followers are never notified."""
    if not event_type:
        return None
    key = EVENT_PREFERENCE_KEYS.get(event_type.upper())
    if key == "goals" and detail == "Missed Penalty":
        return None
    return key


def preference_for_status_change(old_status: Optional[str], new_status: Optional[str]) -> Optional[str]:
    if new_status == "1H" and old_status in PRE_MATCH_STATUSES:
        return "match_start"
    if new_status in FINISHED_STATUSES and old_status not in FINISHED_STATUSES:
        return "match_end"
    return None


class NotificationHandlers:
    """Bridges bus events to FollowsService.process_notification_event."""

    def __init__(self, follows_service):
        self.follows_service = follows_service

    def subscribe(self, bus: EventBus) -> None:
        bus.subscribe(MATCH_EVENT_RECORDED, self.on_match_event)
        bus.subscribe(MATCH_STATUS_CHANGED, self.on_status_changed)

    async def on_match_event(self, event: Event) -> None:
        payload = event.payload
        preference = preference_for_match_event(payload.get("type"), payload.get("detail"))
        if preference is None:
            logger.debug(f"[NOTIFY] {payload.get('type')} events are not pushed, skipping")
            return

        notified = await self._fanout(payload, preference)
        logger.info(
            f"[NOTIFY] {payload.get('type')} in match {payload.get('match_id')}: "
            f"{len(notified)} followers notified"
        )

    async def on_status_changed(self, event: Event) -> None:
        payload = event.payload
        preference = preference_for_status_change(payload.get("old_status"), payload.get("new_status"))
        if preference is None:
            return

        notified = await self._fanout(payload, preference)
        logger.info(
            f"[NOTIFY] {preference} for match {payload.get('match_id')} "
            f"({payload.get('old_status')} -> {payload.get('new_status')}): {len(notified)} followers notified"
        )

    async def _fanout(self, payload: dict, preference: str) -> set:
        targets = [(EntityType.MATCH, payload.get("match_id"))]
        targets += [(EntityType.TEAM, payload.get(key)) for key in ("home_team_id", "away_team_id")]
        targets.append((EntityType.LEAGUE, payload.get("league_id")))

        notified: set = set()
        for entity_type, entity_id in targets:
            if not entity_id:
                continue
            user_ids = await self.follows_service.process_notification_event(
                entity_type,
                entity_id,
                preference,
                payload,
                exclude_user_ids=notified,
            )
            notified.update(user_ids)
        return notified
