"""
Follow graph: user -> team/league/match follows and follower notification fanout.

Every rejected operation raises a distinct FollowError subclass so callers
can tell a conflict from a missing entity from an exceeded cap.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Iterable, Optional, Union

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError

from matchday.database import SessionFactory
from matchday.errors import (
    AlreadyFollowingError,
    EntityNotFoundError,
    FollowError,
    FollowLimitExceededError,
    FollowNotFoundError,
    InactiveUserError,
    InvalidEntityTypeError,
)
from matchday.models import EntityType, Follow, FollowStatus, League, Match, Team, User, utc_now
from matchday.notifications.payloads import build_event_notification

logger = logging.getLogger(__name__)

DEFAULT_PREFERENCES = {
    "goals": True,
    "cards": False,
    "substitutions": False,
    "match_start": True,
    "match_end": True,
    "lineups": False,
}

DEFAULT_FOLLOW_LIMITS = {
    EntityType.TEAM: 50,
    EntityType.LEAGUE: 20,
    EntityType.MATCH: 100,
}

_ENTITY_MODELS = {
    EntityType.TEAM: Team,
    EntityType.LEAGUE: League,
    EntityType.MATCH: Match,
}


def coerce_entity_type(value: Union[EntityType, str]) -> EntityType:
    if isinstance(value, EntityType):
        return value
    try:
        return EntityType(str(value).strip().lower())
    except ValueError:
        raise InvalidEntityTypeError(value) from None


def merge_preferences(base: Optional[dict], overrides: Optional[dict]) -> dict:
    """Overlay known preference flags; unknown keys are dropped."""
    merged = dict(DEFAULT_PREFERENCES)
    merged.update({k: bool(v) for k, v in (base or {}).items() if k in DEFAULT_PREFERENCES})
    for key, value in (overrides or {}).items():
        if key in DEFAULT_PREFERENCES:
            merged[key] = bool(value)
        else:
            logger.debug(f"[FOLLOWS] Ignoring unknown preference {key!r}")
    return merged


@dataclass
class FollowPage:
    items: list[Follow]
    total: int
    page: int
    per_page: int

    @property
    def pages(self) -> int:
        return (self.total + self.per_page - 1) // self.per_page if self.per_page else 0


@dataclass
class BulkFollowResult:
    followed: list[Follow] = field(default_factory=list)
    skipped: list[dict] = field(default_factory=list)

    @property
    def followed_count(self) -> int:
        return len(self.followed)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)


class FollowsService:
    """Follow CRUD plus resolution of followers for domain events."""

    def __init__(
        self,
        session_factory: SessionFactory,
        dispatcher=None,
        limits: Optional[dict] = None,
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.limits = dict(DEFAULT_FOLLOW_LIMITS)
        for key, value in (limits or {}).items():
            self.limits[coerce_entity_type(key)] = value

    # ── Follow / unfollow ────────────────────────────────────────────────────
    async def follow_entity(
        self,
        user_id: str,
        entity_type: Union[EntityType, str],
        entity_id: str,
        preferences: Optional[dict] = None,
    ) -> Follow:
        """
        Create a follow with default preferences overlaid by `preferences`.

        Raises:
            InvalidEntityTypeError, InactiveUserError, EntityNotFoundError,
            AlreadyFollowingError, FollowLimitExceededError
        """
        entity_type = coerce_entity_type(entity_type)
        entity_id = str(entity_id)

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    user = await session.get(User, user_id)
                    if user is None or not user.is_active:
                        raise InactiveUserError(user_id)

                    resolved_id = await self._resolve_entity_id(session, entity_type, entity_id)
                    if resolved_id is None:
                        raise EntityNotFoundError(entity_type.value, entity_id)
                    entity_id = resolved_id

                    existing = await self._get_follow(session, user_id, entity_type, entity_id)
                    if existing is not None and existing.is_active:
                        raise AlreadyFollowingError(user_id, entity_type.value, entity_id)

                    count = await session.scalar(
                        select(func.count()).select_from(Follow).where(
                            Follow.user_id == user_id,
                            Follow.entity_type == entity_type,
                            Follow.is_active.is_(True),
                        )
                    )
                    limit = self.limits[entity_type]
                    if count >= limit:
                        raise FollowLimitExceededError(entity_type.value, limit)

                    now = utc_now()
                    if existing is not None:
                        # Inactive follow left behind: bring it back
                        existing.is_active = True
                        existing.status = FollowStatus.ACTIVE
                        existing.notification_preferences = merge_preferences(None, preferences)
                        existing.updated_at = now
                        follow = existing
                    else:
                        follow = Follow(
                            user_id=user_id,
                            entity_type=entity_type,
                            entity_id=entity_id,
                            notification_preferences=merge_preferences(None, preferences),
                            is_active=True,
                            status=FollowStatus.ACTIVE,
                            created_at=now,
                            updated_at=now,
                        )
                        session.add(follow)
        except IntegrityError:
            raise AlreadyFollowingError(user_id, entity_type.value, entity_id) from None

        logger.info(f"[FOLLOWS] {user_id} followed {entity_type.value} {entity_id}")
        return follow

    async def follow_team(self, user_id: str, team_id: str, preferences: Optional[dict] = None) -> Follow:
        return await self.follow_entity(user_id, EntityType.TEAM, team_id, preferences)

    async def follow_league(self, user_id: str, league_id: str, preferences: Optional[dict] = None) -> Follow:
        return await self.follow_entity(user_id, EntityType.LEAGUE, league_id, preferences)

    async def follow_match(self, user_id: str, match_id: str, preferences: Optional[dict] = None) -> Follow:
        return await self.follow_entity(user_id, EntityType.MATCH, match_id, preferences)

    async def unfollow_entity(self, user_id: str, entity_type: Union[EntityType, str], entity_id: str) -> None:
        entity_type = coerce_entity_type(entity_type)
        entity_id = str(entity_id)
        async with self.session_factory() as session:
            async with session.begin():
                follow = await self._get_follow(session, user_id, entity_type, entity_id)
                if follow is None:
                    raise FollowNotFoundError(user_id, entity_type.value, entity_id)
                await session.delete(follow)
        logger.info(f"[FOLLOWS] {user_id} unfollowed {entity_type.value} {entity_id}")

    async def update_notification_preferences(
        self,
        user_id: str,
        entity_type: Union[EntityType, str],
        entity_id: str,
        preferences: dict,
    ) -> Follow:
        """Merge partial flags into the follow's current preferences."""
        entity_type = coerce_entity_type(entity_type)
        entity_id = str(entity_id)
        async with self.session_factory() as session:
            async with session.begin():
                follow = await self._get_follow(session, user_id, entity_type, entity_id)
                if follow is None:
                    raise FollowNotFoundError(user_id, entity_type.value, entity_id)
                follow.notification_preferences = merge_preferences(follow.notification_preferences, preferences)
                follow.updated_at = utc_now()
        return follow

    async def set_follow_status(
        self,
        user_id: str,
        entity_type: Union[EntityType, str],
        entity_id: str,
        status: Union[FollowStatus, str],
    ) -> Follow:
        """Mute or pause a follow without removing it."""
        entity_type = coerce_entity_type(entity_type)
        status = FollowStatus(status)
        async with self.session_factory() as session:
            async with session.begin():
                follow = await self._get_follow(session, user_id, entity_type, str(entity_id))
                if follow is None:
                    raise FollowNotFoundError(user_id, entity_type.value, str(entity_id))
                follow.status = status
                follow.updated_at = utc_now()
        return follow

    async def bulk_follow(self, user_id: str, entities: Iterable[Any]) -> BulkFollowResult:
        """Best-effort follow of each entity; individual rejections are collected, not raised.

        Each entity is a dict with entity_type, entity_id and optional
        preferences, or an (entity_type, entity_id) tuple.
        """
        result = BulkFollowResult()
        for entity in entities:
            if isinstance(entity, dict):
                entity_type = entity.get("entity_type")
                entity_id = entity.get("entity_id")
                preferences = entity.get("preferences")
            else:
                entity_type, entity_id = entity
                preferences = None

            try:
                follow = await self.follow_entity(user_id, entity_type, entity_id, preferences)
                result.followed.append(follow)
            except FollowError as e:
                result.skipped.append({
                    "entity_type": getattr(entity_type, "value", entity_type),
                    "entity_id": entity_id,
                    "reason": type(e).__name__,
                    "message": str(e),
                })

        logger.info(
            f"[FOLLOWS] Bulk follow for {user_id}: followed={result.followed_count} skipped={result.skipped_count}"
        )
        return result

    async def bulk_follow_teams(self, user_id: str, team_ids: list[str]) -> BulkFollowResult:
        return await self.bulk_follow(user_id, [(EntityType.TEAM, team_id) for team_id in team_ids])

    # ── Queries ──────────────────────────────────────────────────────────────
    async def get_user_follows(
        self,
        user_id: str,
        entity_type: Optional[Union[EntityType, str]] = None,
        include_inactive: bool = False,
        page: int = 1,
        per_page: int = 20,
    ) -> FollowPage:
        page = max(1, page)
        per_page = max(1, min(per_page, 100))
        conditions = [Follow.user_id == user_id]
        if entity_type is not None:
            conditions.append(Follow.entity_type == coerce_entity_type(entity_type))
        if not include_inactive:
            conditions.append(Follow.is_active.is_(True))

        async with self.session_factory() as session:
            total = await session.scalar(select(func.count()).select_from(Follow).where(*conditions))
            result = await session.execute(
                select(Follow)
                .where(*conditions)
                .order_by(Follow.created_at.desc(), Follow.id.desc())
                .offset((page - 1) * per_page)
                .limit(per_page)
            )
            items = list(result.scalars().all())
        return FollowPage(items=items, total=total or 0, page=page, per_page=per_page)

    async def get_user_follow_stats(self, user_id: str) -> dict:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Follow.entity_type, func.count())
                .where(Follow.user_id == user_id, Follow.is_active.is_(True))
                .group_by(Follow.entity_type)
            )
            counts = {EntityType(row[0]): row[1] for row in result.all()}

        team = counts.get(EntityType.TEAM, 0)
        league = counts.get(EntityType.LEAGUE, 0)
        match = counts.get(EntityType.MATCH, 0)
        return {
            "total_follows": team + league + match,
            "team_follows": team,
            "league_follows": league,
            "match_follows": match,
            "limits": {et.value: limit for et, limit in self.limits.items()},
        }

    async def get_entity_followers(
        self,
        entity_type: Union[EntityType, str],
        entity_id: str,
        include_muted: bool = False,
    ) -> list[Follow]:
        """Active follows of an entity (muted and paused follows only on request)."""
        conditions = [
            Follow.entity_type == coerce_entity_type(entity_type),
            Follow.entity_id == str(entity_id),
            Follow.is_active.is_(True),
        ]
        if not include_muted:
            conditions.append(Follow.status == FollowStatus.ACTIVE)
        async with self.session_factory() as session:
            result = await session.execute(select(Follow).where(*conditions).order_by(Follow.id))
            return list(result.scalars().all())

    async def is_following(self, user_id: str, entity_type: Union[EntityType, str], entity_id: str) -> bool:
        async with self.session_factory() as session:
            follow = await self._get_follow(session, user_id, coerce_entity_type(entity_type), str(entity_id))
        return follow is not None and follow.is_active

    async def get_follow_recommendations(self, user_id: str, limit: int = 10) -> list[Team]:
        """Teams from the user's followed leagues that the user does not follow yet, most followed first."""
        async with self.session_factory() as session:
            league_ids = (await session.execute(
                select(Follow.entity_id).where(
                    Follow.user_id == user_id,
                    Follow.entity_type == EntityType.LEAGUE,
                    Follow.is_active.is_(True),
                )
            )).scalars().all()
            if not league_ids:
                return []

            followed_team_ids = select(Follow.entity_id).where(
                Follow.user_id == user_id,
                Follow.entity_type == EntityType.TEAM,
            )
            follower_counts = (
                select(Follow.entity_id, func.count().label("followers"))
                .where(Follow.entity_type == EntityType.TEAM, Follow.is_active.is_(True))
                .group_by(Follow.entity_id)
                .subquery()
            )
            result = await session.execute(
                select(Team)
                .outerjoin(follower_counts, follower_counts.c.entity_id == Team.id)
                .where(Team.league_id.in_(league_ids), Team.id.not_in(followed_team_ids))
                .order_by(func.coalesce(follower_counts.c.followers, 0).desc(), Team.name)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def get_trending_teams(self, days: int = 7, limit: int = 10) -> list[dict]:
        """Teams with the most new follows over the last `days` days."""
        since = utc_now() - timedelta(days=days)
        async with self.session_factory() as session:
            result = await session.execute(
                select(Team.id, Team.name, func.count(Follow.id).label("new_followers"))
                .join(Follow, Follow.entity_id == Team.id)
                .where(
                    Follow.entity_type == EntityType.TEAM,
                    Follow.is_active.is_(True),
                    Follow.created_at >= since,
                )
                .group_by(Team.id, Team.name)
                .order_by(func.count(Follow.id).desc(), Team.name)
                .limit(limit)
            )
            return [
                {"team_id": row.id, "name": row.name, "new_followers": row.new_followers}
                for row in result.all()
            ]

    async def export_user_follows(self, user_id: str) -> dict:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Follow).where(Follow.user_id == user_id).order_by(Follow.created_at)
            )
            follows = list(result.scalars().all())

        return {
            "user_id": user_id,
            "exported_at": utc_now().isoformat(),
            "total": len(follows),
            "follows": [
                {
                    "entity_type": EntityType(f.entity_type).value,
                    "entity_id": f.entity_id,
                    "status": FollowStatus(f.status).value,
                    "is_active": f.is_active,
                    "notification_preferences": merge_preferences(f.notification_preferences, None),
                    "created_at": f.created_at.isoformat(),
                }
                for f in follows
            ],
        }

    async def cleanup_inactive_follows(self, days: int = 30) -> int:
        """Delete follows that have been inactive for more than `days` days."""
        cutoff = utc_now() - timedelta(days=days)
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(Follow).where(Follow.is_active.is_(False), Follow.updated_at < cutoff)
                )
        logger.info(f"[CLEANUP] Removed {result.rowcount} inactive follows older than {days} days")
        return result.rowcount

    # ── Fanout ───────────────────────────────────────────────────────────────
    async def process_notification_event(
        self,
        entity_type: Union[EntityType, str],
        entity_id: str,
        event_type: str,
        event_data: Optional[dict] = None,
        exclude_user_ids: Optional[set] = None,
    ) -> list[str]:
        """
        Notify followers of an entity whose `event_type` preference is on.

        Returns the user ids that were dispatched to. Dispatch failures are
        logged and never raised.
        """
        entity_type = coerce_entity_type(entity_type)
        if event_type not in DEFAULT_PREFERENCES:
            logger.debug(f"[FOLLOWS] No preference flag for event type {event_type!r}")
            return []

        follows = await self.get_entity_followers(entity_type, entity_id)
        exclude = exclude_user_ids or set()
        user_ids = [
            follow.user_id
            for follow in follows
            if follow.user_id not in exclude
            and merge_preferences(follow.notification_preferences, None).get(event_type, False)
        ]
        user_ids = list(dict.fromkeys(user_ids))

        if not user_ids:
            return []
        if self.dispatcher is None:
            logger.debug(f"[FOLLOWS] No dispatcher, skipping {len(user_ids)} {event_type} notifications")
            return user_ids

        try:
            notification = build_event_notification(event_type, event_data or {})
            await self.dispatcher.send_to_users(user_ids, notification)
        except Exception as e:
            logger.error(
                f"[FOLLOWS] Fanout of {event_type} for {entity_type.value} {entity_id} failed: {e}",
                exc_info=True,
            )
        return user_ids

    async def _resolve_entity_id(self, session, entity_type: EntityType, entity_id: str) -> Optional[str]:
        """Primary key of the entity, looking up the provider id when the key misses."""
        model = _ENTITY_MODELS[entity_type]
        entity = await session.get(model, entity_id)
        if entity is not None:
            return entity.id
        if not entity_id.isdigit():
            return None
        result = await session.execute(select(model.id).where(model.external_id == int(entity_id)))
        return result.scalar_one_or_none()

    async def _get_follow(
        self,
        session,
        user_id: str,
        entity_type: EntityType,
        entity_id: str,
    ) -> Optional[Follow]:
        result = await session.execute(
            select(Follow).where(
                Follow.user_id == user_id,
                Follow.entity_type == entity_type,
                Follow.entity_id == entity_id,
            )
        )
        return result.scalar_one_or_none()
