from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
import logging
from typing import Callable, Dict, Protocol

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger


class JobResult(Enum):
    OK = "ok"
    FAILED = "failed"


JobBody = Callable[[], JobResult]


@dataclass(frozen=True)
class BackoffPolicy:
    """Linear retry: attempt ``n`` waits ``step * n``."""

    step: timedelta = timedelta(hours=1)
    max_attempts: int = 3

    def delay_for(self, attempt: int) -> timedelta:
        return self.step * attempt


@dataclass(frozen=True)
class JobConstraints:
    requires_network: bool = False
    requires_battery_not_low: bool = False
    requires_charging: bool = False
    requires_device_idle: bool = False
    requires_storage_not_low: bool = False

    def any_required(self) -> bool:
        return any(vars(self).values())


@dataclass(frozen=True)
class PeriodicJobSpec:
    name: str
    period: timedelta
    initial_delay: timedelta = timedelta(0)
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    constraints: JobConstraints = field(default_factory=JobConstraints)
    replace_existing: bool = True


class JobRunner(Protocol):
    def register_periodic(self, spec: PeriodicJobSpec, body: JobBody) -> None:
        ...

    def cancel(self, name: str) -> None:
        ...


@dataclass
class ApschedulerJobRunner:
    scheduler: BaseScheduler
    now_provider: Callable[[], datetime] = datetime.now
    misfire_grace_seconds: int = 3600

    def __post_init__(self) -> None:
        self._logger = logging.getLogger(self.__class__.__name__)
        self._attempts: Dict[str, int] = {}

    def register_periodic(self, spec: PeriodicJobSpec, body: JobBody) -> None:
        if spec.constraints.any_required():
            # This host has no way to wait for power or network state.
            self._logger.warning("Ignoring environment constraints for %s", spec.name)
        start_at = self.now_provider() + spec.initial_delay
        self.scheduler.add_job(
            self._run,
            trigger=IntervalTrigger(
                seconds=int(spec.period.total_seconds()), start_date=start_at
            ),
            id=spec.name,
            name=spec.name,
            args=[spec, body, False],
            replace_existing=spec.replace_existing,
            misfire_grace_time=self.misfire_grace_seconds,
            coalesce=True,
            max_instances=1,
        )
        self._attempts.pop(spec.name, None)
        self._logger.info(
            "Registered periodic job %s every %s starting %s",
            spec.name,
            spec.period,
            start_at,
        )

    def cancel(self, name: str) -> None:
        for job_id in (name, self._retry_id(name)):
            self._remove_job(job_id)
        self._attempts.pop(name, None)
        self._logger.info("Cancelled periodic job %s", name)

    def _run(
        self, spec: PeriodicJobSpec, body: JobBody, is_retry: bool = False
    ) -> JobResult:
        if not is_retry:
            # A periodic run opens a new failure streak.
            self._attempts.pop(spec.name, None)
        try:
            result = body()
        except Exception:
            # Nothing escapes into the scheduler thread pool.
            self._logger.exception("Job %s raised", spec.name)
            result = JobResult.FAILED

        if result is JobResult.OK:
            self._clear_retry(spec.name)
        else:
            self._schedule_retry(spec, body)
        return result

    def _schedule_retry(self, spec: PeriodicJobSpec, body: JobBody) -> None:
        attempt = self._attempts.get(spec.name, 0) + 1
        if attempt > spec.backoff.max_attempts:
            self._logger.warning(
                "Job %s failed %s times; waiting for next period",
                spec.name,
                attempt - 1,
            )
            return
        self._attempts[spec.name] = attempt
        run_at = self.now_provider() + spec.backoff.delay_for(attempt)
        self.scheduler.add_job(
            self._run,
            trigger=DateTrigger(run_date=run_at),
            id=self._retry_id(spec.name),
            args=[spec, body, True],
            replace_existing=True,
            misfire_grace_time=self.misfire_grace_seconds,
            coalesce=True,
            max_instances=1,
        )
        self._logger.info("Retry %s of job %s at %s", attempt, spec.name, run_at)

    def _clear_retry(self, name: str) -> None:
        self._attempts.pop(name, None)
        self._remove_job(self._retry_id(name))

    def _remove_job(self, job_id: str) -> None:
        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError:
            pass

    def _retry_id(self, name: str) -> str:
        return f"{name}:retry"
