"""
Job scheduler: named cron jobs with at-most-one concurrent run per name.

Firing model:
- APScheduler owns the cron timing; each fire only spawns a task and returns
- A per-job running flag is checked and set before any await, so a cron
  fire and a manual trigger can never both start the same job
- Overlapping fires are dropped (logged and counted), never queued
- Shutdown stops new fires, then waits up to a timeout for in-flight runs;
  runs still going after that are abandoned, not cancelled
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Union

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from matchday.database import SessionFactory
from matchday.errors import (
    DuplicateJobError,
    InvalidScheduleError,
    JobAlreadyRunningError,
    JobNotFoundError,
    SchedulerError,
)
from matchday.jobs import tracking
from matchday.models import utc_now
from matchday.telemetry import record_job_run, record_job_skipped, sentry_job_context

logger = logging.getLogger(__name__)

JobTask = Callable[[], Awaitable[Any]]

# crontab numbers Sunday as 0 (and 7); APScheduler numbers Monday as 0
_CRONTAB_WEEKDAYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun")
_WEEKDAY_PART = re.compile(r"^(\*|\d+)(?:-(\d+))?(?:/(\d+))?$")


def _crontab_day_of_week(expr: str) -> str:
    """
    Rewrite a crontab day-of-week field as APScheduler weekday names.

    Numeric parts are expanded to explicit day lists so ranges through
    Sunday ("0-6", "5-0") and steps ("*/2") keep crontab meaning.
    Name parts pass through unchanged.
    """
    if expr == "*":
        return expr

    names = []
    for part in expr.split(","):
        match = _WEEKDAY_PART.match(part)
        if match is None:
            names.append(part)
            continue

        start, end, step = match.groups()
        if start == "*":
            if end is not None:
                raise ValueError(f"invalid day of week {part!r}")
            first, last = 0, 6
        else:
            first = int(start)
            last = int(end) if end is not None else (6 if step else first)
        for number in (first, last):
            if number > 7:
                raise ValueError(f"day of week {number} out of range")
        stride = int(step) if step else 1
        if stride < 1:
            raise ValueError(f"invalid step in day of week {part!r}")

        if last < first:
            days = list(range(first, 7)) + list(range(0, last + 1))
        else:
            days = list(range(first, last + 1))
        names.extend(_CRONTAB_WEEKDAYS[day] for day in days[::stride])

    return ",".join(dict.fromkeys(names))


def parse_cron(expression: str, tz: Union[str, Any] = "UTC") -> CronTrigger:
    """
    Build a CronTrigger from a crontab expression.

    Five fields are minute hour day month day-of-week. Six fields prepend
    seconds ("*/30 * * * * *" fires every 30 seconds).

    Raises:
        InvalidScheduleError: wrong field count or an unparseable field
    """
    fields = (expression or "").split()
    if len(fields) == 5:
        fields = ["0"] + fields
    elif len(fields) != 6:
        raise InvalidScheduleError(expression, f"expected 5 or 6 fields, got {len(fields)}")

    second, minute, hour, day, month, day_of_week = fields
    try:
        return CronTrigger(
            second=second,
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=_crontab_day_of_week(day_of_week),
            timezone=tz,
        )
    except ValueError as e:
        raise InvalidScheduleError(expression, str(e)) from None


def _metrics_dict(result: Any) -> Optional[dict]:
    if result is None:
        return None
    if hasattr(result, "to_dict"):
        return result.to_dict()
    if isinstance(result, dict):
        return result
    return {"result": str(result)}


@dataclass
class JobSpec:
    name: str
    schedule: str
    task: JobTask
    enabled: bool = True
    description: str = ""


@dataclass
class JobState:
    """Runtime bookkeeping for one registered job."""

    spec: JobSpec
    trigger: CronTrigger
    enabled: bool
    running: bool = False
    last_run: Optional[datetime] = None
    last_status: Optional[str] = None
    last_error: Optional[str] = None
    last_duration_ms: Optional[int] = None
    run_count: int = 0
    skipped_count: int = 0
    last_metrics: Optional[dict] = field(default=None, repr=False)


class JobScheduler:
    """Registry of named cron jobs on top of an AsyncIOScheduler."""

    def __init__(
        self,
        session_factory: Optional[SessionFactory] = None,
        timezone_name: str = "UTC",
        shutdown_timeout: float = 30.0,
    ):
        self.session_factory = session_factory
        self.timezone = timezone_name
        self.shutdown_timeout = shutdown_timeout
        self._scheduler = AsyncIOScheduler(timezone=timezone_name)
        self._jobs: dict[str, JobState] = {}
        self._tasks: dict[asyncio.Task, str] = {}
        self._shutting_down = False

    # ── Registration ─────────────────────────────────────────────────────────
    def register_job(self, spec: JobSpec) -> JobState:
        """Validate the schedule and bind the job (paused when disabled)."""
        if spec.name in self._jobs:
            raise DuplicateJobError(spec.name)

        trigger = parse_cron(spec.schedule, self.timezone)
        state = JobState(spec=spec, trigger=trigger, enabled=spec.enabled)
        self._jobs[spec.name] = state

        job_kwargs = {}
        if not spec.enabled:
            job_kwargs["next_run_time"] = None
        self._scheduler.add_job(
            self._on_fire,
            trigger=trigger,
            args=[spec.name],
            id=spec.name,
            name=spec.description or spec.name,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
            replace_existing=True,
            **job_kwargs,
        )
        logger.info(
            f"[SCHEDULER] Registered {spec.name} ({spec.schedule})"
            f"{'' if spec.enabled else ' [disabled]'}"
        )
        return state

    def has_job(self, name: str) -> bool:
        return name in self._jobs

    # ── Lifecycle ────────────────────────────────────────────────────────────
    def start(self) -> None:
        if self._scheduler.running:
            logger.warning("[SCHEDULER] Already started, skipping duplicate start")
            return
        self._shutting_down = False
        self._scheduler.start()
        logger.info(f"[SCHEDULER] Started with {len(self._jobs)} jobs")

    async def shutdown(self, timeout: Optional[float] = None) -> list[str]:
        """
        Stop new fires, then wait for in-flight runs.

        Returns the names of jobs abandoned after the timeout.
        """
        timeout = self.shutdown_timeout if timeout is None else timeout
        self._shutting_down = True
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

        pending = [task for task in self._tasks if not task.done()]
        if not pending:
            logger.info("[SCHEDULER] Stopped (no jobs in flight)")
            return []

        logger.info(f"[SCHEDULER] Waiting up to {timeout}s for {len(pending)} running jobs")
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        abandoned = sorted(self._tasks.get(task, "?") for task in still_running)
        if abandoned:
            logger.warning(f"[SCHEDULER] Abandoning jobs still running after {timeout}s: {', '.join(abandoned)}")
        else:
            logger.info("[SCHEDULER] Stopped after in-flight jobs finished")
        return abandoned

    # ── Control surface ──────────────────────────────────────────────────────
    def start_job(self, name: str) -> None:
        state = self._get(name)
        state.enabled = True
        self._scheduler.resume_job(name)
        logger.info(f"[SCHEDULER] Enabled {name}")

    def stop_job(self, name: str) -> None:
        """Disable future fires; a run already in flight finishes normally."""
        state = self._get(name)
        state.enabled = False
        self._scheduler.pause_job(name)
        logger.info(f"[SCHEDULER] Disabled {name}")

    async def trigger_job(self, name: str) -> dict:
        """
        Run a job now and wait for it.

        Raises:
            JobNotFoundError, JobAlreadyRunningError, SchedulerError (shutting down)
        """
        state = self._get(name)
        if self._shutting_down:
            raise SchedulerError(f"Scheduler is shutting down, not running {name}")
        if state.running:
            raise JobAlreadyRunningError(name)

        task = self._spawn(state, "manual")
        return await task

    def get_job_status(self, name: Optional[str] = None) -> Union[dict, list[dict]]:
        if name is not None:
            return self._snapshot(self._get(name))
        return [self._snapshot(state) for state in self._jobs.values()]

    @property
    def running_jobs(self) -> list[str]:
        return [name for name, state in self._jobs.items() if state.running]

    # ── Execution ────────────────────────────────────────────────────────────
    async def _on_fire(self, name: str) -> None:
        """APScheduler callback: spawn the run unless it must be skipped."""
        state = self._jobs.get(name)
        if state is None:
            return
        if self._shutting_down:
            logger.debug(f"[SCHEDULER] Shutting down, ignoring fire of {name}")
            return
        if not state.enabled:
            logger.debug(f"[SCHEDULER] {name} is disabled, ignoring fire")
            return
        if state.running:
            state.skipped_count += 1
            record_job_skipped(name, "already_running")
            logger.info(f"[SCHEDULER] {name} still running, skipping this fire")
            return

        self._spawn(state, "cron")

    def _spawn(self, state: JobState, source: str) -> asyncio.Task:
        # No await between the running check and this flag
        state.running = True
        task = asyncio.create_task(self._run(state, source), name=f"job:{state.spec.name}")
        self._tasks[task] = state.spec.name
        task.add_done_callback(lambda t: self._tasks.pop(t, None))
        return task

    async def _run(self, state: JobState, source: str) -> dict:
        name = state.spec.name
        started_at = utc_now()
        start = time.monotonic()
        status = "ok"
        error: Optional[str] = None
        metrics: Optional[dict] = None

        logger.info(f"[SCHEDULER] Running {name} ({source})")
        try:
            with sentry_job_context(name, trigger=source):
                metrics = _metrics_dict(await state.spec.task())
        except Exception as e:
            status = "error"
            error = str(e) or type(e).__name__
            logger.error(f"[SCHEDULER] {name} failed: {e}", exc_info=True)
        finally:
            state.running = False

        duration = time.monotonic() - start
        state.run_count += 1
        state.last_run = started_at
        state.last_status = status
        state.last_error = error
        state.last_duration_ms = int(duration * 1000)
        state.last_metrics = metrics
        record_job_run(name, status, duration)

        if self.session_factory is not None:
            try:
                await tracking.record_job_run(self.session_factory, name, status, started_at, error, metrics)
            except Exception as e:
                logger.warning(f"[SCHEDULER] Failed to record run of {name}: {e}")

        logger.info(f"[SCHEDULER] {name} finished: {status} in {state.last_duration_ms}ms")
        return {
            "job": name,
            "status": status,
            "trigger": source,
            "started_at": started_at.isoformat(),
            "duration_ms": state.last_duration_ms,
            "error": error,
            "metrics": metrics,
        }

    # ── Helpers ──────────────────────────────────────────────────────────────
    def _get(self, name: str) -> JobState:
        state = self._jobs.get(name)
        if state is None:
            raise JobNotFoundError(name)
        return state

    def _next_run(self, state: JobState) -> Optional[datetime]:
        if not state.enabled or self._shutting_down:
            return None
        return state.trigger.get_next_fire_time(None, datetime.now(timezone.utc))

    def _snapshot(self, state: JobState) -> dict:
        next_run = self._next_run(state)
        return {
            "name": state.spec.name,
            "schedule": state.spec.schedule,
            "description": state.spec.description,
            "enabled": state.enabled,
            "running": state.running,
            "last_run": state.last_run.isoformat() if state.last_run else None,
            "last_status": state.last_status,
            "last_error": state.last_error,
            "last_duration_ms": state.last_duration_ms,
            "next_run": next_run.isoformat() if next_run else None,
            "run_count": state.run_count,
            "skipped_count": state.skipped_count,
        }
