"""
Notification dispatcher: device tokens -> per-platform multicast sends.

Flow for every send:
1. Resolve the active DeviceTokens of the target users (or of an explicit token list)
2. Group tokens by platform and build one payload per platform
3. Send each group in provider-sized chunks
4. Deactivate tokens the provider reports as permanently invalid;
   transient failures leave the token active for the next event

Users are processed in sequential batches (NOTIFICATION_BATCH_SIZE).
Send failures are logged and counted, never raised to the caller.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Iterable, Optional, Union

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from matchday.database import SessionFactory
from matchday.models import (
    TERMINAL_STATUSES,
    DevicePlatform,
    DeviceToken,
    EntityType,
    Follow,
    FollowStatus,
    Match,
    StadiumGuide,
    Venue,
    utc_now,
)
from matchday.notifications.payloads import (
    Notification,
    NotificationPriority,
    NotificationType,
    build_platform_payload,
    generate_notification_id,
)
from matchday.notifications.providers import PushProvider
from matchday.telemetry import record_push_results, record_token_deactivated
from matchday.utils import chunked

logger = logging.getLogger(__name__)


@dataclass
class DispatchMetrics:
    """Delivery counts for one dispatch call."""

    notification_id: Optional[str] = None
    users_targeted: int = 0
    total_sent: int = 0
    delivered: int = 0
    failed: int = 0
    deactivated: int = 0
    by_platform: dict[str, int] = field(default_factory=lambda: {p.value: 0 for p in DevicePlatform})
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "notification_id": self.notification_id,
            "users_targeted": self.users_targeted,
            "total_sent": self.total_sent,
            "delivered": self.delivered,
            "failed": self.failed,
            "deactivated": self.deactivated,
            "by_platform": dict(self.by_platform),
            "duration_ms": self.duration_ms,
        }


class NotificationDispatcher:
    """Batched multi-platform push delivery with token hygiene."""

    def __init__(
        self,
        session_factory: SessionFactory,
        provider: PushProvider,
        batch_size: int = 500,
    ):
        self.session_factory = session_factory
        self.provider = provider
        self.batch_size = batch_size

    # ── Sends ────────────────────────────────────────────────────────────────
    async def send_to_users(self, user_ids: Iterable[str], notification: Notification) -> DispatchMetrics:
        """Send to every active device of each user, batch by batch."""
        started = time.monotonic()
        unique_ids = list(dict.fromkeys(user_ids))
        metrics = DispatchMetrics(notification_id=generate_notification_id(), users_targeted=len(unique_ids))

        for batch in chunked(unique_ids, self.batch_size):
            try:
                tokens = await self._active_tokens_for_users(batch)
                await self._send(tokens, notification, metrics)
            except Exception as e:
                logger.error(f"[PUSH] Batch of {len(batch)} users failed: {e}", exc_info=True)

        return self._finish(metrics, started, notification)

    async def send_to_user(self, user_id: str, notification: Notification) -> DispatchMetrics:
        return await self.send_to_users([user_id], notification)

    async def send_to_tokens(self, tokens: list[str], notification: Notification) -> DispatchMetrics:
        """Send to an explicit token list (only tokens that are registered and active)."""
        started = time.monotonic()
        metrics = DispatchMetrics(notification_id=generate_notification_id())

        for batch in chunked(list(dict.fromkeys(tokens)), self.batch_size):
            try:
                async with self.session_factory() as session:
                    result = await session.execute(
                        select(DeviceToken).where(
                            DeviceToken.token.in_(batch),
                            DeviceToken.is_active.is_(True),
                        )
                    )
                    rows = list(result.scalars().all())
                await self._send(rows, notification, metrics)
            except Exception as e:
                logger.error(f"[PUSH] Token batch failed: {e}", exc_info=True)

        return self._finish(metrics, started, notification)

    async def send_to_team_followers(self, team_id: str, notification: Notification) -> DispatchMetrics:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Follow.user_id).where(
                    Follow.entity_type == EntityType.TEAM,
                    Follow.entity_id == team_id,
                    Follow.is_active.is_(True),
                    Follow.status == FollowStatus.ACTIVE,
                )
            )
            user_ids = list(result.scalars().all())

        logger.info(f"[PUSH] Team {team_id}: {len(user_ids)} followers")
        return await self.send_to_users(user_ids, notification)

    async def send_stadium_guide_notification(self, venue_id: str) -> DispatchMetrics:
        """Announce a venue's guide to followers of teams with an upcoming match there."""
        async with self.session_factory() as session:
            venue = await session.get(Venue, venue_id)
            guide = (
                await session.execute(select(StadiumGuide).where(StadiumGuide.venue_id == venue_id))
            ).scalar_one_or_none()
            if venue is None or guide is None:
                logger.warning(f"[PUSH] No guide for venue {venue_id}, nothing to announce")
                return DispatchMetrics()

            matches = (
                await session.execute(
                    select(Match).where(
                        Match.venue_id == venue_id,
                        Match.start_time >= utc_now(),
                        Match.status.not_in(TERMINAL_STATUSES),
                    )
                )
            ).scalars().all()
            team_ids = {m.home_team_id for m in matches} | {m.away_team_id for m in matches}
            if not team_ids:
                return DispatchMetrics()

            result = await session.execute(
                select(Follow.user_id).where(
                    Follow.entity_type == EntityType.TEAM,
                    Follow.entity_id.in_(team_ids),
                    Follow.is_active.is_(True),
                    Follow.status == FollowStatus.ACTIVE,
                )
            )
            user_ids = list(result.scalars().all())

        notification = Notification(
            type=NotificationType.STADIUM_GUIDE,
            title=guide.title,
            body=f"Heading to {venue.name}? Check out the stadium guide.",
            data={"venue_id": venue.id},
            image_url=(guide.image_urls or [None])[0],
            priority=NotificationPriority.LOW,
        )
        return await self.send_to_users(user_ids, notification)

    async def send_test_notification(self, user_id: str) -> DispatchMetrics:
        notification = Notification(
            type=NotificationType.TEST,
            title="Test notification",
            body="Push notifications are working.",
        )
        return await self.send_to_user(user_id, notification)

    # ── Device registration ──────────────────────────────────────────────────
    async def register_device_token(
        self,
        user_id: str,
        token: str,
        platform: Union[DevicePlatform, str],
        device_model: Optional[str] = None,
        app_version: Optional[str] = None,
    ) -> DeviceToken:
        """Register a token, or re-assign and reactivate it if it already exists."""
        platform = DevicePlatform(platform)
        for attempt in range(2):
            try:
                async with self.session_factory() as session:
                    async with session.begin():
                        result = await session.execute(select(DeviceToken).where(DeviceToken.token == token))
                        device = result.scalar_one_or_none()
                        now = utc_now()
                        if device is None:
                            device = DeviceToken(
                                user_id=user_id,
                                token=token,
                                platform=platform,
                                device_model=device_model,
                                app_version=app_version,
                            )
                            session.add(device)
                        else:
                            device.user_id = user_id
                            device.platform = platform
                            device.device_model = device_model or device.device_model
                            device.app_version = app_version or device.app_version
                            device.is_active = True
                            device.last_used_at = now
                            device.updated_at = now
                return device
            except IntegrityError:
                # Concurrent registration of the same token: the second pass updates it
                if attempt == 1:
                    raise
                logger.debug("[PUSH] Token registered concurrently, retrying as update")

    async def unregister_device_token(self, token: str, user_id: Optional[str] = None) -> bool:
        """Deactivate a token; False when no matching token exists."""
        async with self.session_factory() as session:
            async with session.begin():
                query = update(DeviceToken).where(DeviceToken.token == token)
                if user_id is not None:
                    query = query.where(DeviceToken.user_id == user_id)
                result = await session.execute(query.values(is_active=False, updated_at=utc_now()))
        return result.rowcount > 0

    async def list_user_devices(self, user_id: str, include_inactive: bool = False) -> list[DeviceToken]:
        async with self.session_factory() as session:
            query = select(DeviceToken).where(DeviceToken.user_id == user_id)
            if not include_inactive:
                query = query.where(DeviceToken.is_active.is_(True))
            result = await session.execute(query.order_by(DeviceToken.created_at))
            return list(result.scalars().all())

    # ── Internals ────────────────────────────────────────────────────────────
    async def _active_tokens_for_users(self, user_ids: list[str]) -> list[DeviceToken]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(DeviceToken).where(
                    DeviceToken.user_id.in_(user_ids),
                    DeviceToken.is_active.is_(True),
                )
            )
            return list(result.scalars().all())

    async def _send(self, devices: list[DeviceToken], notification: Notification, metrics: DispatchMetrics) -> None:
        by_platform: dict[DevicePlatform, list[str]] = {}
        for device in devices:
            by_platform.setdefault(DevicePlatform(device.platform), []).append(device.token)

        for platform, tokens in by_platform.items():
            payload = build_platform_payload(platform, notification, metrics.notification_id)
            invalid: list[str] = []
            delivered = failed = 0

            for chunk in chunked(tokens, self.provider.max_tokens_per_call):
                chunk = list(chunk)
                metrics.total_sent += len(chunk)
                metrics.by_platform[platform.value] = metrics.by_platform.get(platform.value, 0) + len(chunk)
                try:
                    response = await self.provider.send_multicast(chunk, payload)
                except Exception as e:
                    failed += len(chunk)
                    logger.error(f"[PUSH] {platform.value} multicast of {len(chunk)} failed: {e}")
                    continue

                delivered += response.success_count
                failed += response.failure_count
                for token_result in response.results:
                    if token_result.permanent_failure:
                        invalid.append(token_result.token)
                    elif not token_result.success:
                        logger.debug(f"[PUSH] Transient failure ({token_result.error_code}), token kept")

            metrics.delivered += delivered
            metrics.failed += failed
            record_push_results(platform.value, delivered, failed)

            if invalid:
                deactivated = await self._deactivate_tokens(invalid)
                metrics.deactivated += deactivated
                record_token_deactivated(platform.value, deactivated)

    async def _deactivate_tokens(self, tokens: list[str]) -> int:
        """Returns the number of rows deactivated."""
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        update(DeviceToken)
                        .where(DeviceToken.token.in_(tokens))
                        .values(is_active=False, updated_at=utc_now())
                    )
            logger.info(f"[PUSH] Deactivated {result.rowcount} invalid device tokens")
            return result.rowcount
        except Exception as e:
            logger.warning(f"[PUSH] Failed to deactivate {len(tokens)} tokens: {e}")
            return 0

    def _finish(self, metrics: DispatchMetrics, started: float, notification: Notification) -> DispatchMetrics:
        metrics.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"[PUSH] {notification.type.value}: sent={metrics.total_sent} delivered={metrics.delivered} "
            f"failed={metrics.failed} deactivated={metrics.deactivated} ({metrics.duration_ms}ms)"
        )
        return metrics
