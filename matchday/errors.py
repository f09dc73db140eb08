"""Domain and setup exceptions raised by matchday services."""

from typing import Optional


class MatchdayError(Exception):
    """Base class for all matchday errors."""


class ConfigurationError(MatchdayError):
    """Fatal setup problem detected at startup."""


class ProviderError(MatchdayError):
    """Football data provider call failed after retries."""

    def __init__(self, endpoint: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{endpoint}: {message}")
        self.endpoint = endpoint
        self.status_code = status_code


# ── Follow graph ─────────────────────────────────────────────────────────────
class FollowError(MatchdayError):
    """Rejected follow operation."""


class InvalidEntityTypeError(FollowError):
    def __init__(self, entity_type):
        super().__init__(f"Invalid entity type: {entity_type!r}")
        self.entity_type = entity_type


class EntityNotFoundError(FollowError):
    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(f"{entity_type} {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class InactiveUserError(FollowError):
    def __init__(self, user_id: str):
        super().__init__(f"User {user_id} not found or inactive")
        self.user_id = user_id


class AlreadyFollowingError(FollowError):
    def __init__(self, user_id: str, entity_type: str, entity_id: str):
        super().__init__(f"User {user_id} already follows {entity_type} {entity_id}")
        self.user_id = user_id
        self.entity_type = entity_type
        self.entity_id = entity_id


class FollowNotFoundError(FollowError):
    def __init__(self, user_id: str, entity_type: str, entity_id: str):
        super().__init__(f"User {user_id} does not follow {entity_type} {entity_id}")
        self.user_id = user_id
        self.entity_type = entity_type
        self.entity_id = entity_id


class FollowLimitExceededError(FollowError):
    def __init__(self, entity_type: str, limit: int):
        super().__init__(f"Maximum {limit} {entity_type} follows allowed")
        self.entity_type = entity_type
        self.limit = limit


# ── Scheduler ────────────────────────────────────────────────────────────────
class SchedulerError(MatchdayError):
    """Rejected scheduler operation."""


class InvalidScheduleError(SchedulerError):
    def __init__(self, schedule: str, reason: str):
        super().__init__(f"Invalid cron expression {schedule!r}: {reason}")
        self.schedule = schedule


class JobNotFoundError(SchedulerError):
    def __init__(self, name: str):
        super().__init__(f"Job {name} not found")
        self.name = name


class JobAlreadyRunningError(SchedulerError):
    def __init__(self, name: str):
        super().__init__(f"Job {name} is already running")
        self.name = name


class DuplicateJobError(SchedulerError):
    def __init__(self, name: str):
        super().__init__(f"Job {name} is already registered")
        self.name = name
