"""
Tests for the in-memory encoding job queue.
"""
import threading
from datetime import datetime, timedelta, timezone

import pytest

from civicfeed.worker.encoding_queue import EncodingJobQueue, JobStatus, QueueListener


class FakeClock:
    """Manually advanced clock."""

    def __init__(self):
        self.now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class RecordingListener(QueueListener):
    def __init__(self):
        self.events = []

    def on_job_added(self, job):
        self.events.append(("added", job.id))

    def on_job_completed(self, job):
        self.events.append(("completed", job.id))

    def on_job_retry(self, job):
        self.events.append(("retry", job.id))

    def on_job_failed(self, job):
        self.events.append(("failed", job.id))


class TestAddAndDequeue:
    """Priority ordering and job creation."""

    def test_add_job_creates_pending(self):
        queue = EncodingJobQueue()
        job_id = queue.add_job("vid-1", "raw/vid-1.mp4")

        job = queue.get_job(job_id)
        assert job_id.startswith("job-vid-1-")
        assert job.status is JobStatus.PENDING
        assert job.attempts == 0
        assert job.priority == 10

    def test_lower_priority_number_first(self):
        """Priorities [20, 5, 10] dequeue as 5, 10, 20."""
        queue = EncodingJobQueue(max_concurrent=3)
        for priority in (20, 5, 10):
            queue.add_job(f"vid-{priority}", "raw.mp4", priority)

        order = [queue.get_next_job().priority for _ in range(3)]
        assert order == [5, 10, 20]

    def test_fifo_within_equal_priority(self):
        queue = EncodingJobQueue(max_concurrent=3)
        ids = [queue.add_job(f"vid-{i}", "raw.mp4") for i in range(3)]

        assert [queue.get_next_job().id for _ in range(3)] == ids

    def test_empty_queue_returns_none(self):
        assert EncodingJobQueue().get_next_job() is None

    def test_dequeue_marks_processing(self):
        queue = EncodingJobQueue()
        queue.add_job("vid-1", "raw.mp4")

        job = queue.get_next_job()
        assert job.status is JobStatus.PROCESSING
        assert job.started_at is not None

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            EncodingJobQueue(max_concurrent=0)
        with pytest.raises(ValueError):
            EncodingJobQueue(max_attempts=0)


class TestConcurrencyBound:
    """Never more than max_concurrent jobs in PROCESSING."""

    def test_bound_blocks_dequeue(self):
        queue = EncodingJobQueue(max_concurrent=2)
        for i in range(3):
            queue.add_job(f"vid-{i}", "raw.mp4")

        first = queue.get_next_job()
        assert queue.get_next_job() is not None
        assert queue.get_next_job() is None
        assert not queue.has_available_jobs()

        queue.complete_job(first.id)
        assert queue.has_available_jobs()
        assert queue.get_next_job() is not None

    def test_bound_holds_under_threads(self):
        """Many threads racing to dequeue never exceed the bound."""
        queue = EncodingJobQueue(max_concurrent=3)
        for i in range(50):
            queue.add_job(f"vid-{i}", "raw.mp4")

        claimed = []
        lock = threading.Lock()
        barrier = threading.Barrier(10)

        def grab():
            barrier.wait()
            for _ in range(10):
                job = queue.get_next_job()
                if job:
                    with lock:
                        claimed.append(job.id)

        threads = [threading.Thread(target=grab) for _ in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(claimed) == 3
        assert len(set(claimed)) == 3
        assert queue.get_stats().processing == 3


class TestCompleteAndFail:
    """State transitions, retries and no-ops."""

    def test_complete_job(self):
        queue = EncodingJobQueue()
        queue.add_job("vid-1", "raw.mp4")
        job = queue.get_next_job()

        assert queue.complete_job(job.id) is True
        done = queue.get_job(job.id)
        assert done.status is JobStatus.COMPLETED
        assert done.completed_at is not None

    def test_unknown_job_is_noop(self):
        queue = EncodingJobQueue()
        assert queue.complete_job("job-missing") is False
        assert queue.fail_job("job-missing", "boom") is None

    def test_complete_pending_job_is_noop(self):
        queue = EncodingJobQueue()
        job_id = queue.add_job("vid-1", "raw.mp4")

        assert queue.complete_job(job_id) is False
        assert queue.get_job(job_id).status is JobStatus.PENDING

    def test_retry_until_max_attempts(self):
        """A job that keeps failing ends FAILED with attempts == max_attempts."""
        queue = EncodingJobQueue(max_attempts=3, retry_backoff_base=0, retry_backoff_max=0)
        job_id = queue.add_job("vid-1", "raw.mp4")

        for attempt in range(1, 4):
            job = queue.get_next_job()
            assert job.id == job_id
            updated = queue.fail_job(job.id, f"failure {attempt}")
            assert updated.attempts == attempt

        final = queue.get_job(job_id)
        assert final.status is JobStatus.FAILED
        assert final.attempts == 3
        assert final.last_error == "failure 3"
        assert queue.get_next_job() is None

    def test_no_retry_fails_immediately(self):
        queue = EncodingJobQueue(max_attempts=3)
        queue.add_job("vid-1", "raw.mp4")
        job = queue.get_next_job()

        updated = queue.fail_job(job.id, "record missing", retry=False)
        assert updated.status is JobStatus.FAILED
        assert updated.attempts == 1

    def test_retry_keeps_priority_position(self):
        """A retried job goes back ahead of lower-priority work."""
        queue = EncodingJobQueue(max_concurrent=1, retry_backoff_base=0, retry_backoff_max=0)
        urgent = queue.add_job("vid-urgent", "raw.mp4", priority=1)
        queue.add_job("vid-later", "raw.mp4", priority=50)

        job = queue.get_next_job()
        queue.fail_job(job.id, "transient")

        assert queue.get_next_job().id == urgent

    def test_retry_backoff_delays_redelivery(self):
        clock = FakeClock()
        queue = EncodingJobQueue(retry_backoff_base=5, retry_backoff_max=300, clock=clock)
        job_id = queue.add_job("vid-1", "raw.mp4")

        queue.fail_job(queue.get_next_job().id, "transient")
        assert queue.get_next_job() is None

        clock.advance(seconds=5)
        assert queue.get_next_job().id == job_id

        queue.fail_job(job_id, "transient again")
        clock.advance(seconds=9)
        assert queue.get_next_job() is None
        clock.advance(seconds=1)
        assert queue.get_next_job().id == job_id

    def test_backoff_is_bounded_and_floored(self):
        queue = EncodingJobQueue(retry_backoff_base=5, retry_backoff_max=30, min_retry_delay=8)
        assert queue._backoff(1) == 8
        assert queue._backoff(2) == 10
        assert queue._backoff(10) == 30


class TestLookupsAndHousekeeping:
    """Stats, lookups, cleanup and listeners."""

    def test_stats_by_status(self):
        queue = EncodingJobQueue(max_concurrent=3, max_attempts=1)
        for i in range(4):
            queue.add_job(f"vid-{i}", "raw.mp4")
        done = queue.get_next_job()
        failed = queue.get_next_job()
        queue.get_next_job()
        queue.complete_job(done.id)
        queue.fail_job(failed.id, "boom")

        assert queue.get_stats().to_dict() == {
            "pending": 1,
            "processing": 1,
            "completed": 1,
            "failed": 1,
            "total": 4,
        }

    def test_get_job_by_video_id_prefers_live_job(self):
        queue = EncodingJobQueue()
        queue.add_job("vid-1", "raw.mp4")
        old = queue.get_next_job()
        queue.complete_job(old.id)
        live = queue.add_job("vid-1", "raw.mp4")

        assert queue.get_job_by_video_id("vid-1").id == live
        assert queue.get_job_by_video_id("vid-2") is None

    def test_cleanup_evicts_old_terminal_jobs(self):
        clock = FakeClock()
        queue = EncodingJobQueue(max_concurrent=2, retention_hours=24, clock=clock)
        queue.add_job("vid-1", "raw.mp4")
        pending = queue.add_job("vid-2", "raw.mp4")
        done = queue.get_next_job()
        queue.complete_job(done.id)

        clock.advance(hours=23)
        assert queue.cleanup() == 0

        clock.advance(hours=2)
        assert queue.cleanup() == 1
        assert queue.get_job(done.id) is None
        assert queue.get_job(pending) is not None

    def test_listeners_notified(self):
        queue = EncodingJobQueue(max_attempts=2, retry_backoff_base=0, retry_backoff_max=0)
        listener = RecordingListener()
        queue.subscribe(listener)

        job_id = queue.add_job("vid-1", "raw.mp4")
        queue.fail_job(queue.get_next_job().id, "once")
        queue.fail_job(queue.get_next_job().id, "twice")

        assert listener.events == [("added", job_id), ("retry", job_id), ("failed", job_id)]

    def test_listener_errors_do_not_break_queue(self):
        class Broken(QueueListener):
            def on_job_added(self, job):
                raise RuntimeError("listener bug")

        queue = EncodingJobQueue()
        queue.subscribe(Broken())

        job_id = queue.add_job("vid-1", "raw.mp4")
        assert queue.get_job(job_id).status is JobStatus.PENDING
