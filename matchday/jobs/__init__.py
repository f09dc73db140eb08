"""Scheduled jobs: cron scheduler, job definitions and run tracking."""

from matchday.jobs.registry import JobRegistry
from matchday.jobs.scheduler import JobScheduler, JobSpec, parse_cron

__all__ = [
    "JobRegistry",
    "JobScheduler",
    "JobSpec",
    "parse_cron",
]
