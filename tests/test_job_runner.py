from __future__ import annotations

from datetime import datetime, timedelta

from apscheduler.triggers.interval import IntervalTrigger

from prayerkeeper.job_runner import (
    ApschedulerJobRunner,
    BackoffPolicy,
    JobConstraints,
    JobResult,
    PeriodicJobSpec,
)


NOW = datetime(2024, 3, 10, 9, 0)
JOB = "reschedule_notifications"
RETRY = "reschedule_notifications:retry"

SPEC = PeriodicJobSpec(
    name=JOB,
    period=timedelta(hours=24),
    initial_delay=timedelta(hours=1),
    backoff=BackoffPolicy(step=timedelta(hours=1), max_attempts=2),
)


class FixedNow:
    def __init__(self, now: datetime) -> None:
        self._now = now

    def now(self) -> datetime:
        return self._now


def _runner(scheduler) -> ApschedulerJobRunner:
    return ApschedulerJobRunner(scheduler=scheduler, now_provider=FixedNow(NOW).now)


def _fire(runner: ApschedulerJobRunner, job_id: str) -> JobResult:
    job = runner.scheduler.get_job(job_id)
    if job_id == RETRY:
        # A one-shot job is gone once the scheduler has run it.
        runner.scheduler.remove_job(job_id)
    return job.func(*job.args)


def test_registering_twice_keeps_one_job(scheduler) -> None:
    runner = _runner(scheduler)

    runner.register_periodic(SPEC, lambda: JobResult.OK)
    runner.register_periodic(SPEC, lambda: JobResult.OK)

    assert [job.id for job in scheduler.get_jobs()] == [JOB]


def test_periodic_job_uses_interval_and_initial_delay(scheduler) -> None:
    runner = _runner(scheduler)

    runner.register_periodic(SPEC, lambda: JobResult.OK)

    trigger = scheduler.get_job(JOB).trigger
    assert isinstance(trigger, IntervalTrigger)
    assert trigger.interval == timedelta(hours=24)
    assert trigger.start_date.replace(tzinfo=None) == NOW + timedelta(hours=1)


def test_failed_run_schedules_linear_backoff_retries(scheduler) -> None:
    runner = _runner(scheduler)
    runner.register_periodic(SPEC, lambda: JobResult.FAILED)

    assert _fire(runner, JOB) is JobResult.FAILED
    retry = scheduler.get_job(RETRY)
    assert retry.trigger.run_date.replace(tzinfo=None) == NOW + timedelta(hours=1)

    _fire(runner, RETRY)
    retry = scheduler.get_job(RETRY)
    assert retry.trigger.run_date.replace(tzinfo=None) == NOW + timedelta(hours=2)


def test_retries_stop_after_max_attempts(scheduler) -> None:
    runner = _runner(scheduler)
    runner.register_periodic(SPEC, lambda: JobResult.FAILED)

    _fire(runner, JOB)
    _fire(runner, RETRY)
    _fire(runner, RETRY)

    assert scheduler.get_job(RETRY) is None


def test_next_periodic_failure_starts_a_fresh_retry_streak(scheduler) -> None:
    runner = _runner(scheduler)
    runner.register_periodic(SPEC, lambda: JobResult.FAILED)
    _fire(runner, JOB)
    _fire(runner, RETRY)
    _fire(runner, RETRY)
    assert scheduler.get_job(RETRY) is None

    _fire(runner, JOB)

    retry = scheduler.get_job(RETRY)
    assert retry is not None
    assert retry.trigger.run_date.replace(tzinfo=None) == NOW + timedelta(hours=1)


def test_raising_body_counts_as_failure(scheduler) -> None:
    def body() -> JobResult:
        raise RuntimeError("store locked")

    runner = _runner(scheduler)
    runner.register_periodic(SPEC, body)

    assert _fire(runner, JOB) is JobResult.FAILED
    assert scheduler.get_job(RETRY) is not None


def test_success_clears_pending_retry(scheduler) -> None:
    outcomes = [JobResult.FAILED, JobResult.FAILED, JobResult.OK]
    runner = _runner(scheduler)
    runner.register_periodic(SPEC, lambda: outcomes.pop(0))

    _fire(runner, JOB)
    _fire(runner, RETRY)
    assert scheduler.get_job(RETRY) is not None

    _fire(runner, JOB)

    assert scheduler.get_job(RETRY) is None


def test_cancel_removes_job_and_retry(scheduler) -> None:
    runner = _runner(scheduler)
    runner.register_periodic(SPEC, lambda: JobResult.FAILED)
    _fire(runner, JOB)

    runner.cancel(JOB)
    runner.cancel(JOB)

    assert scheduler.get_jobs() == []


def test_constraints_are_registered_anyway(scheduler, caplog) -> None:
    runner = _runner(scheduler)
    spec = PeriodicJobSpec(
        name="reschedule_tesbih_reminder",
        period=timedelta(hours=12),
        constraints=JobConstraints(requires_network=True),
    )

    runner.register_periodic(spec, lambda: JobResult.OK)

    assert scheduler.get_job("reschedule_tesbih_reminder") is not None
    assert "Ignoring environment constraints" in caplog.text
