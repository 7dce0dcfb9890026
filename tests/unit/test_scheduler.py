"""Tests for the detection scheduler."""

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from notifier.core.detection import DetectionScheduler

# Far enough ahead that no job comes due while a test runs
T0 = datetime.now(timezone.utc).replace(microsecond=0) + timedelta(days=1)
TZ = "America/Sao_Paulo"


class FakeDetector:
    """Counts scheduled runs."""

    def __init__(self):
        self.ticks = 0

    async def tick(self) -> None:
        self.ticks += 1


@pytest.fixture
def sweep():
    return FakeDetector()


@pytest.fixture
def poller():
    return FakeDetector()


def make_scheduler(sweep, poller=None, **overrides) -> DetectionScheduler:
    options = dict(
        reminder_cron="*/30 * * * *",
        poll_interval=10,
        initial_delay=5,
        run_initial=False,
        timezone_name=TZ,
        clock=lambda: T0,
    )
    options.update(overrides)
    return DetectionScheduler(sweep, poller, **options)


@pytest_asyncio.fixture
async def started():
    """Start schedulers built by the test and stop them afterwards."""
    schedulers: list[DetectionScheduler] = []

    async def start(scheduler: DetectionScheduler) -> dict:
        await scheduler.start()
        schedulers.append(scheduler)
        return {job.id: job for job in scheduler.scheduler.get_jobs()}

    yield start

    for scheduler in schedulers:
        await scheduler.stop()


class TestDetectionScheduler:
    """Test job registration and lifecycle."""

    @pytest.mark.asyncio
    async def test_poll_strategy_jobs(self, sweep, poller, started):
        jobs = await started(make_scheduler(sweep, poller))

        assert set(jobs) == {"reminder_sweep", "appointment_poll"}
        assert isinstance(jobs["reminder_sweep"].trigger, CronTrigger)
        assert isinstance(jobs["appointment_poll"].trigger, IntervalTrigger)
        assert jobs["appointment_poll"].trigger.interval == timedelta(seconds=10)
        assert jobs["appointment_poll"].func == poller.tick
        assert jobs["reminder_sweep"].func == sweep.tick

    @pytest.mark.asyncio
    async def test_push_strategy_has_no_poll_job(self, sweep, started):
        jobs = await started(make_scheduler(sweep))

        assert set(jobs) == {"reminder_sweep"}

    @pytest.mark.asyncio
    async def test_jobs_never_overlap(self, sweep, poller, started):
        jobs = await started(make_scheduler(sweep, poller))

        for job_id in ("reminder_sweep", "appointment_poll"):
            assert jobs[job_id].max_instances == 1
            assert jobs[job_id].coalesce is True

    @pytest.mark.asyncio
    async def test_initial_sweep_in_development(self, sweep, started):
        jobs = await started(make_scheduler(sweep, run_initial=True))

        initial = jobs["initial_reminder_sweep"]
        assert isinstance(initial.trigger, DateTrigger)
        assert initial.trigger.run_date == T0 + timedelta(seconds=5)
        assert initial.func == sweep.tick

    @pytest.mark.asyncio
    async def test_stop(self, sweep, poller):
        scheduler = make_scheduler(sweep, poller)

        await scheduler.start()
        assert scheduler.is_running

        await scheduler.stop()
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_start_twice_keeps_one_scheduler(self, sweep, started):
        scheduler = make_scheduler(sweep)
        await started(scheduler)
        first = scheduler.scheduler

        await scheduler.start()

        assert scheduler.scheduler is first


class TestReminderCadence:
    """Test the default reminder cron expression."""

    def test_every_half_hour(self, sweep):
        scheduler = make_scheduler(sweep)
        trigger = CronTrigger.from_crontab(scheduler.reminder_cron, timezone=scheduler.tz)
        now = datetime(2024, 5, 1, 10, 5, tzinfo=ZoneInfo(TZ))

        first = trigger.get_next_fire_time(None, now)
        second = trigger.get_next_fire_time(first, first + timedelta(seconds=1))

        assert (first.hour, first.minute) == (10, 30)
        assert (second.hour, second.minute) == (11, 0)
