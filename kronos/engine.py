"""
Job handles on top of APScheduler.

A JobHandle turns a schedule and a callback into an APScheduler job that can be
started, stopped and inspected, and tracks whether the callback is executing.
"""

import asyncio
import inspect
import logging
import secrets
from datetime import datetime, timezone
from typing import Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from .types import DEFAULT_TIMEZONE, JobCallback, Schedule

# Upper bound on overlapping runs of one job when it does not wait for completion
MAX_CONCURRENT_RUNS = 100


def schedule_to_str(schedule: Schedule) -> str:
    """Render a schedule the way it is stored in the crontab."""
    if isinstance(schedule, datetime):
        return schedule.isoformat()
    return " ".join(str(schedule).split())


def build_trigger(schedule: Schedule, tz: Optional[str] = None) -> BaseTrigger:
    """
    Build an APScheduler trigger from a schedule.

    Args:
        schedule: Cron expression with 5 fields (minute hour day month
            day_of_week) or 6 fields (second first), an ISO-8601 timestamp, or
            a datetime
        tz: Timezone used to evaluate the schedule (defaults to UTC)

    Returns:
        CronTrigger for expressions, DateTrigger for instants

    Raises:
        ValueError: If the schedule cannot be parsed
    """
    tz = tz or DEFAULT_TIMEZONE

    try:
        return _build_trigger(schedule, tz)
    except KeyError as e:
        # unknown timezone names surface as KeyError subclasses
        raise ValueError(f"Invalid timezone: {tz!r}") from e


def _build_trigger(schedule: Schedule, tz: str) -> BaseTrigger:
    if isinstance(schedule, datetime):
        return DateTrigger(run_date=schedule, timezone=tz)

    parts = str(schedule).split()
    if len(parts) == 1:
        try:
            run_date = datetime.fromisoformat(parts[0])
        except ValueError:
            raise ValueError(f"Invalid schedule: {schedule!r}") from None
        return DateTrigger(run_date=run_date, timezone=tz)

    if len(parts) == 5:
        second = "0"
        minute, hour, day, month, day_of_week = parts
    elif len(parts) == 6:
        second, minute, hour, day, month, day_of_week = parts
    else:
        raise ValueError(
            f"Invalid schedule: {schedule!r} must have 5 or 6 fields "
            "([second] minute hour day month day_of_week)"
        )

    try:
        return CronTrigger(
            second=second,
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=day_of_week,
            timezone=tz,
        )
    except ValueError as e:
        raise ValueError(f"Invalid schedule: {schedule!r}: {e}") from e


class JobHandle:
    """
    A named, controllable scheduled job.

    The handle is inactive until ``start()`` is called. Stopping removes the
    underlying APScheduler job; the callback of a run already in progress is
    not interrupted.
    """

    def __init__(
        self,
        scheduler: AsyncIOScheduler,
        name: str,
        schedule: Schedule,
        callback: JobCallback,
        *,
        tz: Optional[str] = None,
        wait_for_completion: bool = False,
        log: logging.Logger,
    ):
        self.name = name
        self.schedule = schedule_to_str(schedule)
        self.timezone = tz or DEFAULT_TIMEZONE
        self.wait_for_completion = wait_for_completion
        self.log = log
        self.last_fire_time: Optional[datetime] = None

        # Raises ValueError on malformed schedules before anything is scheduled
        self._trigger = build_trigger(schedule, self.timezone)
        self._scheduler = scheduler
        self._callback = callback
        self._pass_log = "log" in _parameters(callback)
        self._job_id = f"{name}_{secrets.token_urlsafe(8)}"
        self._started = False

        self._runs = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def is_active(self) -> bool:
        return self._started and self._scheduler.get_job(self._job_id) is not None

    @property
    def is_running(self) -> bool:
        return self._runs > 0

    @property
    def next_fire_time(self) -> Optional[datetime]:
        if not self.is_active:
            return None
        job = self._scheduler.get_job(self._job_id)
        next_run_time = getattr(job, "next_run_time", None)
        if next_run_time is None and not self._scheduler.running:
            # pending jobs only get a next run time once the scheduler starts
            return self._trigger.get_next_fire_time(None, datetime.now(timezone.utc))
        return next_run_time

    def start(self) -> None:
        if self.is_active:
            return
        self._scheduler.add_job(
            self._fire,
            trigger=self._trigger,
            id=self._job_id,
            name=self.name,
            max_instances=1 if self.wait_for_completion else MAX_CONCURRENT_RUNS,
            coalesce=True,
            replace_existing=True,
        )
        self._started = True
        self.log.debug(f"Job {self.name} started ({self.schedule})")

    def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        try:
            self._scheduler.remove_job(self._job_id)
        except JobLookupError:
            # one-shot jobs are removed by the scheduler after firing
            pass
        self.log.debug(f"Job {self.name} stopped")

    async def wait_idle(self) -> None:
        """Wait until no invocation of the callback is executing."""
        await self._idle.wait()

    async def _fire(self) -> None:
        self._runs += 1
        self._idle.clear()
        self.last_fire_time = datetime.now(timezone.utc)
        self.log.debug(f"Job {self.name} fired")
        try:
            result = (
                self._callback(log=self.log) if self._pass_log else self._callback()
            )
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            self.log.warning(f"Job {self.name} was cancelled")
            raise
        except Exception as e:
            self.log.error(f"Job {self.name} failed: {type(e).__name__}: {e}", exc_info=True)
        finally:
            self._runs -= 1
            if self._runs == 0:
                self._idle.set()

    def __repr__(self) -> str:
        return f"<JobHandle {self.name!r} {self.schedule!r} active={self.is_active}>"


def _parameters(callback: JobCallback) -> dict:
    try:
        return dict(inspect.signature(callback).parameters)
    except (TypeError, ValueError):
        return {}
