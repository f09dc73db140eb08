"""Event bus and notification handler tests."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from matchday.events.bus import MATCH_EVENT_RECORDED, MATCH_STATUS_CHANGED, Event, EventBus
from matchday.events.handlers import (
    NotificationHandlers,
    preference_for_match_event,
    preference_for_status_change,
)
from matchday.models import EntityType

GOAL_PAYLOAD = {
    "match_id": "1035037",
    "league_id": "league-pk",
    "home_team_id": "50",
    "away_team_id": "33",
    "type": "GOAL",
    "detail": "Normal Goal",
    "minute": 23,
    "player_name": "Erling Haaland",
}


def _follows_service(followers_by_entity: dict):
    """Stub whose fanout returns followers per (entity_type, entity_id), honoring exclusions."""
    service = MagicMock()

    async def process(entity_type, entity_id, event_type, event_data=None, exclude_user_ids=None):
        exclude = set(exclude_user_ids or ())
        return [u for u in followers_by_entity.get((entity_type, entity_id), []) if u not in exclude]

    service.process_notification_event = AsyncMock(side_effect=process)
    return service


class TestPreferenceMapping:
    @pytest.mark.parametrize("event_type,detail,expected", [
        ("GOAL", "Normal Goal", "goals"),
        ("Goal", "Penalty", "goals"),
        ("GOAL", "Missed Penalty", None),
        ("CARD", "Yellow Card", "cards"),
        ("SUBST", "Substitution 1", "substitutions"),
        ("VAR", "Goal cancelled", None),
        (None, None, None),
    ])
    def test_match_events(self, event_type, detail, expected):
        """Event type and detail should map to a preference key, missed penalties to none."""
        assert preference_for_match_event(event_type, detail) == expected

    @pytest.mark.parametrize("old,new,expected", [
        ("NS", "1H", "match_start"),
        (None, "1H", "match_start"),
        ("2H", "FT", "match_end"),
        ("ET", "AET", "match_end"),
        ("P", "PEN", "match_end"),
        ("1H", "HT", None),
        ("HT", "2H", None),
        ("FT", "FT", None),
        ("NS", "PST", None),
    ])
    def test_status_changes(self, old, new, expected):
        """Kickoff and full-time transitions should map to match_start/match_end."""
        assert preference_for_status_change(old, new) == expected


class TestNotificationHandlers:
    @pytest.mark.asyncio
    async def test_goal_fans_out_without_duplicates(self):
        """A goal should reach match, team and league followers once each."""
        service = _follows_service({
            (EntityType.MATCH, "1035037"): ["user-1"],
            (EntityType.TEAM, "50"): ["user-1", "user-2"],
            (EntityType.TEAM, "33"): ["user-3"],
            (EntityType.LEAGUE, "league-pk"): ["user-2", "user-4"],
        })
        handlers = NotificationHandlers(service)

        notified = await handlers._fanout(GOAL_PAYLOAD, "goals")

        assert notified == {"user-1", "user-2", "user-3", "user-4"}
        targets = [(c.args[0], c.args[1]) for c in service.process_notification_event.call_args_list]
        assert targets == [
            (EntityType.MATCH, "1035037"),
            (EntityType.TEAM, "50"),
            (EntityType.TEAM, "33"),
            (EntityType.LEAGUE, "league-pk"),
        ]

    @pytest.mark.asyncio
    async def test_unmapped_event_is_ignored(self):
        """Events with no preference key should not fan out."""
        service = _follows_service({})
        handlers = NotificationHandlers(service)

        await handlers.on_match_event(Event(MATCH_EVENT_RECORDED, {**GOAL_PAYLOAD, "type": "VAR"}))

        service.process_notification_event.assert_not_called()

    @pytest.mark.asyncio
    async def test_kickoff_uses_match_start(self):
        """NS -> 1H should notify with match_start."""
        service = _follows_service({(EntityType.MATCH, "1035037"): ["user-1"]})
        handlers = NotificationHandlers(service)

        await handlers.on_status_changed(Event(MATCH_STATUS_CHANGED, {
            "match_id": "1035037", "home_team_id": "50", "away_team_id": "33",
            "old_status": "NS", "new_status": "1H",
        }))

        assert service.process_notification_event.call_args_list[0].args[2] == "match_start"

    @pytest.mark.asyncio
    async def test_subscribed_through_the_bus(self):
        """Handlers should receive events emitted on the bus."""
        service = _follows_service({(EntityType.TEAM, "50"): ["user-1"]})
        bus = EventBus()
        NotificationHandlers(service).subscribe(bus)

        await bus.emit(MATCH_EVENT_RECORDED, GOAL_PAYLOAD)
        await bus.emit(MATCH_STATUS_CHANGED, {"match_id": "1035037", "old_status": "1H", "new_status": "HT"})
        await bus.drain()

        assert service.process_notification_event.call_count == 4
        assert bus.pending_count == 0


class TestEventBus:
    @pytest.mark.asyncio
    async def test_failing_handler_does_not_block_others(self):
        """A raising handler should not stop later handlers."""
        bus = EventBus()
        seen = []

        async def broken(event):
            raise RuntimeError("boom")

        async def recorder(event):
            seen.append(event.payload["match_id"])

        bus.subscribe(MATCH_EVENT_RECORDED, broken)
        bus.subscribe(MATCH_EVENT_RECORDED, recorder)

        await bus.emit(MATCH_EVENT_RECORDED, {"match_id": "1"})
        await bus.drain()

        assert seen == ["1"]

    @pytest.mark.asyncio
    async def test_consumer_loop_drains_on_stop(self):
        """stop should process queued events in order before returning."""
        bus = EventBus()
        seen = []

        async def recorder(event):
            await asyncio.sleep(0)
            seen.append(event.payload["match_id"])

        bus.subscribe(MATCH_STATUS_CHANGED, recorder)
        await bus.start()
        for match_id in ("1", "2", "3"):
            await bus.emit(MATCH_STATUS_CHANGED, {"match_id": match_id})
        await bus.stop(timeout=1)

        assert seen == ["1", "2", "3"]

    @pytest.mark.asyncio
    async def test_full_queue_drops_events(self):
        """Emitting into a full queue should drop the event."""
        bus = EventBus(max_queue_size=1)

        await bus.emit(MATCH_EVENT_RECORDED, {"match_id": "1"})
        await bus.emit(MATCH_EVENT_RECORDED, {"match_id": "2"})

        assert bus.pending_count == 1

    @pytest.mark.asyncio
    async def test_no_handlers_is_fine(self):
        """Events nobody subscribes to should be consumed silently."""
        bus = EventBus()
        await bus.emit("UNKNOWN", {"match_id": "1"})
        await bus.drain()
        assert bus.pending_count == 0
