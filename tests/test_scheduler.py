"""
Tests for resource schedules and the background scheduler.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock, patch

from awsreaper.aws import AutoScalingGroup
from awsreaper.errors import ProviderError
from awsreaper.scheduler import SCALE_DOWN, SCALE_UP, ResourceSchedules, Scheduler

# a Monday
MONDAY_18 = datetime(2024, 1, 1, 18, 0, 30, tzinfo=timezone.utc)


def _group():
    return AutoScalingGroup("us-east-1", "asg-1", desired_capacity=2, min_size=1)


class TestResourceSchedules:
    """Test cron-driven scale-down and scale-up."""

    def test_register(self):
        schedules = ResourceSchedules()

        assert schedules.register(_group(), "0 18 * * 1-5", "0 8 * * 1-5")
        assert len(schedules) == 1
        assert sorted(job.action for job in schedules.jobs()) == [SCALE_DOWN, SCALE_UP]

    def test_invalid_cron_keeps_existing_jobs(self):
        schedules = ResourceSchedules()
        group = _group()
        schedules.register(group, "0 18 * * *", "0 8 * * *")

        assert not schedules.register(group, "every evening", "0 8 * * *")
        assert [str(job.cron) for job in schedules.jobs()] == ["0 18 * * *", "0 8 * * *"]

    def test_fires_once_per_minute(self):
        schedules = ResourceSchedules()
        group = _group()
        schedules.register(group, "0 18 * * 1-5", "0 8 * * 1-5")

        with patch.object(group, "scale_down") as scale_down, patch.object(group, "scale_up") as scale_up:
            fired = schedules.run_due(MONDAY_18)
            again = schedules.run_due(MONDAY_18 + timedelta(seconds=20))

        assert [job.action for job in fired] == [SCALE_DOWN]
        assert again == []
        scale_down.assert_called_once_with()
        scale_up.assert_not_called()

    def test_reregistering_keeps_last_fired(self):
        schedules = ResourceSchedules(dry_run=True)
        group = _group()
        schedules.register(group, "0 18 * * *", "0 8 * * *")
        schedules.run_due(MONDAY_18)

        schedules.register(group, "0 18 * * *", "0 8 * * *")

        assert schedules.run_due(MONDAY_18) == []

    def test_dry_run(self):
        schedules = ResourceSchedules(dry_run=True)
        group = _group()
        schedules.register(group, "@daily", "0 8 * * *")

        with patch.object(group, "scale_down") as scale_down:
            fired = schedules.run_due(datetime(2024, 1, 1, tzinfo=timezone.utc))

        assert len(fired) == 1
        scale_down.assert_not_called()

    def test_failure_is_logged(self, caplog):
        schedules = ResourceSchedules()
        group = _group()
        schedules.register(group, "0 18 * * *", "0 8 * * *")

        with patch.object(group, "scale_down", side_effect=ProviderError("throttled")):
            fired = schedules.run_due(MONDAY_18)

        assert len(fired) == 1
        assert "throttled" in caplog.text

    def test_register_resource_uses_schedule_tag(self):
        schedules = ResourceSchedules()
        group = _group()

        assert not schedules.register_resource(group)
        group.scheduling = ("0 18 * * *", "0 8 * * *")
        assert schedules.register_resource(group)

        schedules.unregister("us-east-1", "asg-1")
        assert len(schedules) == 0


class TestScheduler:
    """Test the background loops."""

    def test_tick_runs_reaper(self):
        reaper = Mock()
        assert Scheduler(reaper, timedelta(hours=1)).tick()
        reaper.run.assert_called_once_with()

    def test_tick_skips_while_running(self):
        reaper = Mock()
        scheduler = Scheduler(reaper, timedelta(hours=1))
        scheduler._run_lock.acquire()
        try:
            assert not scheduler.tick()
        finally:
            scheduler._run_lock.release()
        reaper.run.assert_not_called()

    def test_tick_survives_failures(self, caplog):
        reaper = Mock()
        reaper.run.side_effect = RuntimeError("boom")
        scheduler = Scheduler(reaper, timedelta(hours=1))

        assert scheduler.tick()
        assert "boom" in caplog.text
        # lock released after the failure
        assert scheduler.tick()

    def test_start_and_stop(self):
        reaper = Mock()
        reaper.config.prices_url = ""
        scheduler = Scheduler(reaper, timedelta(hours=1), prices_interval=timedelta(days=7))

        scheduler.start()
        names = sorted(t.name for t in scheduler.threads)
        scheduler.stop(timeout=5)

        assert names == ["awsreaper-reap", "awsreaper-schedules"]
        reaper.refresh_prices.assert_not_called()
        assert scheduler.threads == []
