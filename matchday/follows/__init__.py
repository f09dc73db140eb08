"""Follow graph and follower notification fanout."""

from matchday.follows.service import DEFAULT_PREFERENCES, BulkFollowResult, FollowPage, FollowsService

__all__ = [
    "DEFAULT_PREFERENCES",
    "BulkFollowResult",
    "FollowPage",
    "FollowsService",
]
