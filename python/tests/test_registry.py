"""
Tests for the job registry.

Tests cover:
- Registration and ordering
- Ticks with an injected clock
- Payload failures
- The driving loop
- Status reporting
"""

import os
import sys
import unittest
from datetime import datetime, time, timedelta, timezone
from unittest.mock import Mock, patch

import psutil

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from jobrunner import ConfigurationError, Decision, Job, JobRunner, RecurrenceRule
from jobrunner.rule import TimeUnit, Weekday

UTC = timezone.utc
START = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)  # a Monday


class FakeClock:
    """Clock that advances by a fixed step every time it is read."""

    def __init__(self, start, step=timedelta(seconds=1)):
        self.now = start
        self.step = step
        self.reads = 0

    def __call__(self):
        current = self.now
        self.now += self.step
        self.reads += 1
        return current


class TestJob(unittest.TestCase):
    """Test a single job."""

    def test_run_if_due_calls_payload_then_records(self):
        """A due job should call its payload and then record the run."""
        payload = Mock(__name__="payload")
        job = Job(RecurrenceRule(1, TimeUnit.SECONDS, repeat_limit=2), payload)

        decision = job.run_if_due(START)

        self.assertIs(decision, Decision.FIRE)
        payload.assert_called_once_with()
        self.assertEqual(job.last_run, START)
        self.assertEqual(job.remaining_runs, 1)

    def test_skip_does_not_call_payload(self):
        """A skipped job should neither call its payload nor record a run."""
        payload = Mock(__name__="payload")
        job = Job(RecurrenceRule(1, TimeUnit.WEEKS, weekday=Weekday.FRIDAY), payload)

        self.assertIs(job.run_if_due(START), Decision.WRONG_WEEKDAY)
        payload.assert_not_called()
        self.assertIsNone(job.last_run)

    def test_failing_payload_is_not_recorded(self):
        """A payload exception should propagate without touching the history."""
        payload = Mock(__name__="payload", side_effect=RuntimeError("boom"))
        job = Job(RecurrenceRule(1, TimeUnit.SECONDS, repeat_limit=2), payload)

        with self.assertRaises(RuntimeError):
            job.run_if_due(START)

        self.assertIsNone(job.last_run)
        self.assertEqual(job.remaining_runs, 2)

    def test_should_run_has_no_side_effects(self):
        """should_run() should evaluate without running or recording."""
        payload = Mock(__name__="payload")
        job = Job(RecurrenceRule(1, TimeUnit.SECONDS), payload)
        self.assertTrue(job.should_run(START))
        payload.assert_not_called()
        self.assertIsNone(job.last_run)

    def test_explicit_name_and_repr(self):
        """An explicit name should be used in the job's repr."""
        job = Job(RecurrenceRule(2, TimeUnit.HOURS), lambda: None, name="cleanup")
        self.assertEqual(job.name, "cleanup")
        self.assertIn("cleanup", repr(job))
        self.assertIn("every 2 hours", repr(job))

    def test_next_eligible_at(self):
        """next_eligible_at should be unset before the first run and last run plus period after."""
        job = Job(RecurrenceRule(5, TimeUnit.HOURS), lambda: None)
        self.assertIsNone(job.next_eligible_at)
        job.run_if_due(START)
        self.assertEqual(job.next_eligible_at, START + timedelta(hours=5))

    def test_non_callable_payload(self):
        """A job with a non-callable payload should be rejected."""
        with self.assertRaises(ConfigurationError):
            Job(RecurrenceRule(1, TimeUnit.SECONDS), None)


class TestTick(unittest.TestCase):
    """Test evaluating all jobs against one instant."""

    def setUp(self):
        self.runner = JobRunner()
        self.calls = []

    def _recorder(self, label):
        def record():
            self.calls.append(label)

        record.__name__ = label
        return record

    def test_jobs_run_in_registration_order(self):
        """Due jobs should run in the order they were registered."""
        self.runner.every(1).seconds().do(self._recorder("first"))
        self.runner.every(1).seconds().do(self._recorder("second"))
        self.runner.every(1).seconds().do(self._recorder("third"))

        fired = self.runner.tick(START)

        self.assertEqual(self.calls, ["first", "second", "third"])
        self.assertEqual([job.name for job in fired], ["first", "second", "third"])

    def test_every_job_sees_the_same_now(self):
        """All jobs in one tick should be evaluated against the same now."""
        first = self.runner.every(1).seconds().do(self._recorder("a"))
        second = self.runner.every(1).hours().do(self._recorder("b"))
        self.runner.tick(START)
        self.assertEqual(first.last_run, START)
        self.assertEqual(second.last_run, START)

    def test_jobs_are_independent(self):
        """One job firing should not affect another job's schedule."""
        fast = self.runner.every(1).seconds().do(self._recorder("fast"))
        slow = self.runner.every(1).minutes().do(self._recorder("slow"))

        self.runner.tick(START)
        fired = self.runner.tick(START + timedelta(seconds=1))

        self.assertEqual(fired, [fast])
        self.assertEqual(slow.last_run, START)

    def test_same_now_twice(self):
        """Ticking twice with the same now should run the payload once."""
        self.runner.every(1).seconds().do(self._recorder("job"))
        self.assertEqual(len(self.runner.tick(START)), 1)
        self.assertEqual(self.runner.tick(START), [])
        self.assertEqual(self.calls, ["job"])

    def test_exhausted_jobs_stay_registered(self):
        """Exhausted jobs should stay registered and stop firing."""
        job = self.runner.every(1).seconds().repeat(1).do(self._recorder("once"))
        self.runner.tick(START)
        for i in range(1, 5):
            self.assertEqual(self.runner.tick(START + timedelta(seconds=i)), [])

        self.assertTrue(job.exhausted)
        self.assertEqual(self.runner.jobs, (job,))
        self.assertEqual(self.calls, ["once"])

    def test_payload_failure_propagates_and_stops_the_tick(self):
        """A failing payload should stop the tick and leave later jobs unevaluated."""
        def explode():
            raise ValueError("payload failed")

        before = self.runner.every(1).seconds().do(self._recorder("before"))
        failing = self.runner.every(1).seconds().do(explode)
        after = self.runner.every(1).seconds().do(self._recorder("after"))

        with self.assertRaises(ValueError):
            self.runner.tick(START)

        self.assertEqual(before.last_run, START)
        self.assertIsNone(failing.last_run)
        self.assertIsNone(after.last_run)

    def test_failed_job_retries_on_next_natural_tick(self):
        """A failed job should be evaluated again on the next tick."""
        attempts = []

        def flaky():
            attempts.append(len(attempts))
            if len(attempts) == 1:
                raise RuntimeError("first attempt fails")

        job = self.runner.every(10).seconds().do(flaky)
        with self.assertRaises(RuntimeError):
            self.runner.tick(START)

        # Never recorded, so the very next tick is still a first evaluation
        self.runner.tick(START + timedelta(seconds=1))
        self.assertEqual(job.last_run, START + timedelta(seconds=1))
        self.assertEqual(len(attempts), 2)

    def test_naive_now_is_utc(self):
        """A naive tick time should be recorded as UTC."""
        job = self.runner.every(1).seconds().do(self._recorder("job"))
        self.runner.tick(datetime(2024, 1, 1, 12, 0))
        self.assertEqual(job.last_run, START)

    def test_register_with_rule(self):
        """register() should accept a prebuilt rule and return the job."""
        rule = RecurrenceRule(1, TimeUnit.DAYS, at_time=time(6, 0))
        job = self.runner.register(rule, self._recorder("report"), name="report")
        self.assertIs(job.rule, rule)
        self.assertEqual(len(self.runner), 1)
        self.assertEqual(list(self.runner), [job])

    def test_tick_count(self):
        """Each tick should increment tick_count."""
        self.runner.tick(START)
        self.runner.tick(START)
        self.assertEqual(self.runner.tick_count, 2)


class TestRunPending(unittest.TestCase):
    """Test ticks driven by the injected clock."""

    def test_clock_is_read_once_per_tick(self):
        """run_pending() should read the clock once for all jobs."""
        clock = FakeClock(START)
        runner = JobRunner(clock=clock)
        job_a = runner.every(1).seconds().do(lambda: None)
        job_b = runner.every(1).seconds().do(lambda: None)

        runner.run_pending()

        self.assertEqual(clock.reads, 1)
        self.assertEqual(job_a.last_run, job_b.last_run)

    def test_scenario_a_with_clock(self):
        """A 3 second, repeat 3 job should fire three times under a stepping clock."""
        clock = FakeClock(START)
        runner = JobRunner(clock=clock)
        fired_at = []
        runner.every(3).seconds().repeat(3).do(lambda: fired_at.append(clock.now))

        for _ in range(20):
            runner.run_pending()

        # clock.now has already advanced one step when the payload runs
        self.assertEqual(
            fired_at,
            [START + timedelta(seconds=s) for s in (1, 4, 7)],
        )

    def test_default_clock_is_aware_utc(self):
        """The default clock should produce aware UTC instants."""
        runner = JobRunner()
        job = runner.every(1).seconds().do(lambda: None)
        runner.run_pending()
        self.assertEqual(job.last_run.tzinfo, UTC)


class TestRunForever(unittest.TestCase):
    """Test the driving loop."""

    def test_runs_max_ticks_and_sleeps_between(self):
        """run_forever() should stop after max_ticks and sleep only between ticks."""
        clock = FakeClock(START)
        runner = JobRunner(clock=clock)
        sleep = Mock()
        payload = Mock(__name__="payload")
        runner.every(3).seconds().repeat(3).do(payload)

        ticks = runner.run_forever(tick_interval_seconds=1, max_ticks=10, sleep=sleep)

        self.assertEqual(ticks, 10)
        self.assertEqual(payload.call_count, 3)
        self.assertEqual(sleep.call_count, 9)
        sleep.assert_called_with(1)

    def test_zero_ticks(self):
        """max_ticks=0 should return immediately without sleeping."""
        runner = JobRunner(clock=FakeClock(START))
        sleep = Mock()
        self.assertEqual(runner.run_forever(max_ticks=0, sleep=sleep), 0)
        sleep.assert_not_called()

    def test_invalid_arguments(self):
        """A non-positive interval or negative max_ticks should raise ConfigurationError."""
        runner = JobRunner()
        with self.assertRaises(ConfigurationError):
            runner.run_forever(tick_interval_seconds=0, max_ticks=1)
        with self.assertRaises(ConfigurationError):
            runner.run_forever(max_ticks=-1)

    def test_keyboard_interrupt_stops_cleanly(self):
        """KeyboardInterrupt should stop the loop and return the tick count."""
        runner = JobRunner(clock=FakeClock(START))
        sleep = Mock(side_effect=[None, KeyboardInterrupt])

        self.assertEqual(runner.run_forever(sleep=sleep), 2)

    def test_payload_failure_propagates(self):
        """A payload exception should escape run_forever()."""
        runner = JobRunner(clock=FakeClock(START))
        runner.every(1).seconds().do(Mock(__name__="bad", side_effect=OSError("disk")))
        with self.assertRaises(OSError):
            runner.run_forever(max_ticks=5, sleep=Mock())


class TestStatus(unittest.TestCase):
    """Test status reporting."""

    def test_status_counts_and_jobs(self):
        """get_status() should report job counts, per-job state and resource usage."""
        runner = JobRunner()
        runner.every(1).seconds().repeat(1).do(lambda: None)
        runner.every(2).days().at("08:00").do(lambda: None)
        runner.tick(START)

        status = runner.get_status()

        self.assertEqual(status["total_jobs"], 2)
        self.assertEqual(status["exhausted_jobs"], 1)
        self.assertEqual(status["active_jobs"], 1)
        self.assertEqual(status["ticks"], 1)
        self.assertEqual(status["jobs"][0]["last_run"], START.isoformat())
        self.assertEqual(status["jobs"][0]["remaining_runs"], 0)
        self.assertTrue(status["jobs"][0]["exhausted"])
        self.assertEqual(status["jobs"][1]["rule"], "every 2 days at 08:00")
        self.assertEqual(
            status["jobs"][1]["next_eligible_at"],
            (START + timedelta(days=2)).isoformat(),
        )
        self.assertGreaterEqual(status["resource_usage"]["memory_mb"], 0)
        self.assertGreaterEqual(status["resource_usage"]["active_threads"], 1)

    @patch("jobrunner.registry.psutil.Process")
    def test_memory_usage_reported(self, mock_process):
        """Memory usage should be reported in whole megabytes."""
        mock_process.return_value.memory_info.return_value.rss = 64 * 1024 * 1024
        status = JobRunner().get_status()
        self.assertEqual(status["resource_usage"]["memory_mb"], 64)

    @patch("jobrunner.registry.psutil.Process")
    def test_memory_usage_unavailable(self, mock_process):
        """Memory usage should fall back to 0 when psutil is denied."""
        mock_process.side_effect = psutil.AccessDenied()
        status = JobRunner().get_status()
        self.assertEqual(status["resource_usage"]["memory_mb"], 0)


if __name__ == "__main__":
    unittest.main()
