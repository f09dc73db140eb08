"""
Push dispatcher tests against an in-memory store and a recording provider.
"""

from datetime import timedelta

import pytest

from factories import FakePushProvider
from matchday.models import DevicePlatform, EntityType, Follow, Match, StadiumGuide, Venue, utc_now
from matchday.notifications.dispatcher import NotificationDispatcher
from matchday.notifications.payloads import (
    Notification,
    NotificationPriority,
    NotificationType,
    build_event_notification,
    build_platform_payload,
)
from matchday.notifications.providers import is_permanent_token_error

GOAL = Notification(
    type=NotificationType.GOAL_SCORED,
    title="GOAL!",
    body="Erling Haaland scores (23')",
    data={"match_id": "1035037", "minute": 23, "assist": None},
    priority=NotificationPriority.HIGH,
)


async def _register(dispatcher, *devices):
    for user_id, token, platform in devices:
        await dispatcher.register_device_token(user_id, token, platform)


class TestPayloads:
    def test_android_payload(self):
        """Android payload should use the event channel and a string-only data map."""
        payload = build_platform_payload(DevicePlatform.ANDROID, GOAL, "notif_1")

        assert payload.android["priority"] == "high"
        assert payload.android["channel_id"] == "important_events"
        assert payload.data["notification_id"] == "notif_1"
        assert payload.data["type"] == "goal_scored"
        assert payload.data["minute"] == "23"
        assert "assist" not in payload.data
        assert payload.apns is None

    def test_ios_and_web_payloads(self):
        """iOS should get APNs priority 10 and web a default icon."""
        ios = build_platform_payload(DevicePlatform.IOS, GOAL)
        web = build_platform_payload(DevicePlatform.WEB, GOAL)

        assert ios.apns["headers"]["apns-priority"] == "10"
        assert ios.apns["category"] == "goal_scored"
        assert web.webpush["icon"].endswith("icon.png")
        assert ios.notification_id.startswith("notif_")

    def test_event_notifications(self):
        """Red cards should be high priority; kickoff body names both teams."""
        red = build_event_notification("cards", {"detail": "Red Card", "player_name": "Casemiro", "minute": 70})
        start = build_event_notification("match_start", {"home_team_name": "Arsenal", "away_team_name": "Chelsea"})

        assert red.type == NotificationType.RED_CARD
        assert red.priority == NotificationPriority.HIGH
        assert start.body == "Arsenal vs Chelsea"

    @pytest.mark.parametrize("code,permanent", [
        ("messaging/registration-token-not-registered", True),
        ("INVALID_REGISTRATION_TOKEN", True),
        ("messaging/internal-error", False),
        (None, False),
    ])
    def test_permanent_token_errors(self, code, permanent):
        """Only unregistered/invalid-token codes should be permanent."""
        assert is_permanent_token_error(code) is permanent


class TestDeviceRegistration:
    @pytest.mark.asyncio
    async def test_register_is_an_upsert(self, session_factory, users):
        """Re-registering a token should move it, not duplicate it."""
        dispatcher = NotificationDispatcher(session_factory, FakePushProvider())

        first = await dispatcher.register_device_token("user-1", "tok-a", "ios", device_model="iPhone 15")
        second = await dispatcher.register_device_token("user-2", "tok-a", DevicePlatform.IOS, app_version="2.1")

        assert first.id == second.id
        assert second.user_id == "user-2"
        assert second.device_model == "iPhone 15"
        assert second.app_version == "2.1"
        assert await dispatcher.list_user_devices("user-1") == []

    @pytest.mark.asyncio
    async def test_unregister_and_reactivate(self, session_factory, users):
        """Unregister should deactivate; registering again should reactivate."""
        dispatcher = NotificationDispatcher(session_factory, FakePushProvider())
        await dispatcher.register_device_token("user-1", "tok-a", "android")

        assert await dispatcher.unregister_device_token("tok-a", user_id="user-1") is True
        assert await dispatcher.unregister_device_token("missing") is False
        assert await dispatcher.list_user_devices("user-1") == []
        assert len(await dispatcher.list_user_devices("user-1", include_inactive=True)) == 1

        device = await dispatcher.register_device_token("user-1", "tok-a", "android")
        assert device.is_active is True

    @pytest.mark.asyncio
    async def test_invalid_platform(self, session_factory, users):
        """Unknown platforms should be rejected."""
        dispatcher = NotificationDispatcher(session_factory, FakePushProvider())
        with pytest.raises(ValueError):
            await dispatcher.register_device_token("user-1", "tok-a", "blackberry")


class TestDispatch:
    """send_to_users / send_to_tokens delivery and token hygiene."""

    @pytest.mark.asyncio
    async def test_one_invalid_token_is_deactivated(self, session_factory, users):
        """Exactly the unregistered token should be deactivated."""
        provider = FakePushProvider(errors={"tok-dead": "messaging/registration-token-not-registered"})
        dispatcher = NotificationDispatcher(session_factory, provider)
        await _register(
            dispatcher,
            ("user-1", "tok-ios", "ios"),
            ("user-1", "tok-dead", "android"),
            ("user-2", "tok-web", "web"),
        )

        metrics = await dispatcher.send_to_users(["user-1", "user-2"], GOAL)

        assert metrics.total_sent == 3
        assert metrics.delivered == 2
        assert metrics.failed == 1
        assert metrics.deactivated == 1
        assert metrics.by_platform == {"ios": 1, "android": 1, "web": 1}
        assert [d.token for d in await dispatcher.list_user_devices("user-1")] == ["tok-ios"]

        again = await dispatcher.send_to_users(["user-1", "user-2"], GOAL)
        assert again.total_sent == 2
        assert "tok-dead" not in provider.sent_tokens[3:]

    @pytest.mark.asyncio
    async def test_transient_failure_keeps_token(self, session_factory, users):
        """Transient failures should leave the token active."""
        provider = FakePushProvider(errors={"tok-a": "messaging/internal-error"})
        dispatcher = NotificationDispatcher(session_factory, provider)
        await _register(dispatcher, ("user-1", "tok-a", "android"))

        metrics = await dispatcher.send_to_user("user-1", GOAL)

        assert metrics.failed == 1
        assert metrics.deactivated == 0
        assert len(await dispatcher.list_user_devices("user-1")) == 1

    @pytest.mark.asyncio
    async def test_one_payload_per_platform(self, session_factory, users):
        """Tokens should be grouped into one call per platform."""
        provider = FakePushProvider()
        dispatcher = NotificationDispatcher(session_factory, provider)
        await _register(
            dispatcher,
            ("user-1", "tok-1", "ios"),
            ("user-2", "tok-2", "ios"),
            ("user-3", "tok-3", "android"),
        )

        await dispatcher.send_to_users(["user-1", "user-2", "user-3"], GOAL)

        platforms = sorted((payload.platform.value, len(tokens)) for tokens, payload in provider.calls)
        assert platforms == [("android", 1), ("ios", 2)]
        ids = {payload.notification_id for _, payload in provider.calls}
        assert len(ids) == 1

    @pytest.mark.asyncio
    async def test_chunks_by_provider_limit(self, session_factory, users):
        """Groups larger than the provider limit should be chunked."""
        provider = FakePushProvider(max_tokens_per_call=2)
        dispatcher = NotificationDispatcher(session_factory, provider)
        await _register(dispatcher, *[("user-1", f"tok-{i}", "android") for i in range(5)])

        metrics = await dispatcher.send_to_user("user-1", GOAL)

        assert [len(tokens) for tokens, _ in provider.calls] == [2, 2, 1]
        assert metrics.delivered == 5

    @pytest.mark.asyncio
    async def test_provider_exception_counts_as_failure(self, session_factory, users):
        """A provider exception should count every token as failed."""
        class BrokenProvider(FakePushProvider):
            async def send_multicast(self, tokens, payload):
                raise ConnectionError("push backend unreachable")

        dispatcher = NotificationDispatcher(session_factory, BrokenProvider())
        await _register(dispatcher, ("user-1", "tok-a", "ios"))

        metrics = await dispatcher.send_to_user("user-1", GOAL)

        assert metrics.failed == 1
        assert metrics.delivered == 0

    @pytest.mark.asyncio
    async def test_no_devices(self, session_factory, users):
        """A user without devices should trigger no provider call."""
        provider = FakePushProvider()
        dispatcher = NotificationDispatcher(session_factory, provider)

        metrics = await dispatcher.send_test_notification("user-1")

        assert metrics.total_sent == 0
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_send_to_tokens_skips_unknown(self, session_factory, users):
        """Tokens not in the store should not be sent to."""
        provider = FakePushProvider()
        dispatcher = NotificationDispatcher(session_factory, provider)
        await _register(dispatcher, ("user-1", "tok-a", "web"))

        metrics = await dispatcher.send_to_tokens(["tok-a", "tok-unknown"], GOAL)

        assert metrics.total_sent == 1
        assert provider.sent_tokens == ["tok-a"]


class TestFollowerSends:
    @pytest.mark.asyncio
    async def test_team_followers(self, session_factory, users, teams):
        """Only active followers of the team should be targeted."""
        provider = FakePushProvider()
        dispatcher = NotificationDispatcher(session_factory, provider)
        await _register(dispatcher, ("user-1", "tok-1", "ios"), ("user-2", "tok-2", "ios"))
        async with session_factory() as session:
            session.add(Follow(user_id="user-1", entity_type=EntityType.TEAM, entity_id="50"))
            await session.commit()

        metrics = await dispatcher.send_to_team_followers("50", GOAL)

        assert metrics.users_targeted == 1
        assert provider.sent_tokens == ["tok-1"]

    @pytest.mark.asyncio
    async def test_stadium_guide_announcement(self, session_factory, users, teams, premier_league):
        """Followers of teams playing at the venue should get the guide."""
        provider = FakePushProvider()
        dispatcher = NotificationDispatcher(session_factory, provider)
        await _register(dispatcher, ("user-2", "tok-2", "android"))
        async with session_factory() as session:
            session.add(Venue(id="555", external_id=555, name="Etihad Stadium", city="Manchester"))
            session.add(StadiumGuide(venue_id="555", title="Guide to Etihad Stadium"))
            session.add(Match(
                id="2000", external_id=2000, league_id=premier_league.id, season=2025,
                home_team_id="50", away_team_id="40", venue_id="555",
                start_time=utc_now() + timedelta(days=3), status="NS",
            ))
            session.add(Follow(user_id="user-2", entity_type=EntityType.TEAM, entity_id="40"))
            await session.commit()

        metrics = await dispatcher.send_stadium_guide_notification("555")

        assert metrics.delivered == 1
        _, payload = provider.calls[0]
        assert payload.data["type"] == "stadium_guide"
        assert payload.data["venue_id"] == "555"

    @pytest.mark.asyncio
    async def test_stadium_guide_without_guide(self, session_factory):
        """A venue with no guide should send nothing."""
        dispatcher = NotificationDispatcher(session_factory, FakePushProvider())
        metrics = await dispatcher.send_stadium_guide_notification("missing")
        assert metrics.total_sent == 0
