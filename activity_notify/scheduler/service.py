"""Delayed task scheduling for cascade steps and deferred email."""

import uuid
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Callable, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger

from activity_notify.config.models import SchedulerSettings
from activity_notify.logging import get_logger
from activity_notify.utils.timestamps import utc_now

logger = get_logger(__name__, component="scheduler")


class TaskScheduler(ABC):
    """Contract for at-least-once delayed task execution.

    Tasks are plain callables with positional arguments. For cascade steps
    the arguments are ``(notification_id, config, step_index)``.
    """

    @abstractmethod
    def schedule(self, delay_seconds: float, func: Callable[..., Any], *args: Any) -> Optional[str]:
        """Run func(*args) no earlier than delay_seconds from now.

        Returns:
            An identifier for the scheduled task, if the scheduler assigns one
        """


class BackgroundTaskScheduler(TaskScheduler):
    """
    Wraps APScheduler to run one-shot delayed tasks.

    Uses BackgroundScheduler so tasks execute on worker threads while the
    host application keeps serving requests. Jobs live in the in-memory job
    store, so pending tasks do not survive a restart.
    """

    def __init__(self, settings: Optional[SchedulerSettings] = None):
        """
        Initialize the scheduler.

        Args:
            settings: Scheduler settings (misfire grace time, timezone)
        """
        self.settings = settings or SchedulerSettings()

        self.scheduler = BackgroundScheduler(
            job_defaults={
                "coalesce": False,  # Every scheduled task must run
                "misfire_grace_time": self.settings.misfire_grace_time,
            },
            timezone=self.settings.timezone,
        )

    def start(self) -> None:
        """Start the worker threads."""
        self.scheduler.start()
        logger.info(
            "Task scheduler started",
            extra={
                "event": "scheduler.started",
                "timezone": self.settings.timezone,
            },
        )

    def shutdown(self, wait: bool = False) -> None:
        """
        Shutdown the scheduler.

        Args:
            wait: If True, wait for running tasks to complete before returning
        """
        logger.info(
            "Shutting down task scheduler",
            extra={
                "event": "scheduler.stopping",
                "wait_for_jobs": wait,
            },
        )

        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)

        logger.info("Task scheduler shutdown complete", extra={"event": "scheduler.stopped"})

    def is_running(self) -> bool:
        return self.scheduler.running

    def schedule(self, delay_seconds: float, func: Callable[..., Any], *args: Any) -> str:
        run_date = utc_now() + timedelta(seconds=max(float(delay_seconds), 0.0))
        job_id = uuid.uuid4().hex

        self.scheduler.add_job(
            func=func,
            trigger=DateTrigger(run_date=run_date, timezone=self.settings.timezone),
            args=list(args),
            id=job_id,
            name=getattr(func, "__qualname__", repr(func)),
        )

        logger.debug(
            f"Scheduled {getattr(func, '__qualname__', func)} in {delay_seconds}s",
            extra={
                "event": "scheduler.task.scheduled",
                "job_id": job_id,
                "delay_seconds": delay_seconds,
                "run_date": run_date.isoformat(),
            },
        )
        return job_id

    def pending_job_ids(self) -> List[str]:
        """Ids of tasks that have not run yet."""
        return [job.id for job in self.scheduler.get_jobs()]


class ImmediateTaskScheduler(TaskScheduler):
    """Runs every task inline, ignoring the delay.

    Useful in development and in tests that exercise a whole cascade
    synchronously.
    """

    def schedule(self, delay_seconds: float, func: Callable[..., Any], *args: Any) -> None:
        logger.debug(
            f"Running {getattr(func, '__qualname__', func)} inline (requested delay {delay_seconds}s)",
            extra={"event": "scheduler.task.inline", "delay_seconds": delay_seconds},
        )
        func(*args)
        return None
