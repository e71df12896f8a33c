"""
Integration tests for the queue lifecycle: enqueue, claim, report, recover.
"""

from datetime import datetime, timedelta, timezone

import pytest

from balin.constants import JobStatus
from balin.errors import PayloadDecodeError, PayloadEncodeError
from balin.queue import Queue
from balin.utils import utc_now


class TestEnqueue:
    """Tests for adding jobs."""

    async def test_enqueue_defaults(self, queue: Queue):
        job_id = await queue.enqueue("emails", {"to": "a@example.com"})

        job = await queue.get_job(job_id)
        assert job.status == JobStatus.PENDING
        assert job.priority == 99
        assert job.max_attempts == 3
        assert job.attempts == 0
        assert job.scheduled_at is not None
        assert job.scheduled_at <= utc_now()

    async def test_ids_increase(self, queue: Queue):
        first = await queue.enqueue("emails", {})
        second = await queue.enqueue("emails", {})

        assert second > first

    async def test_rejects_empty_task_name(self, queue: Queue):
        with pytest.raises(ValueError):
            await queue.enqueue("  ", {})

    async def test_rejects_negative_max_attempts(self, queue: Queue):
        with pytest.raises(ValueError):
            await queue.enqueue("emails", {}, max_attempts=-1)

    async def test_unserializable_payload_writes_nothing(self, queue: Queue):
        with pytest.raises(PayloadEncodeError):
            await queue.enqueue("emails", {"when": object()})

        counts = await queue.count_by_status()
        assert sum(counts.values()) == 0

    @pytest.mark.parametrize(
        "payload",
        [
            {1: "int key"},
            {"pair": (1, 2)},
            {"ratio": float("nan")},
            {"ratio": float("inf")},
        ],
    )
    async def test_payload_that_would_change_is_rejected(self, queue: Queue, payload):
        """Payloads must decode back to an equal value or nothing is stored."""
        with pytest.raises(PayloadEncodeError):
            await queue.enqueue("emails", payload)

        counts = await queue.count_by_status()
        assert sum(counts.values()) == 0

    async def test_aware_schedule_is_stored_as_utc(self, queue: Queue):
        run_at = datetime(2030, 6, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))

        job_id = await queue.enqueue("emails", {}, scheduled_at=run_at)

        job = await queue.get_job(job_id)
        assert job.scheduled_at == datetime(2030, 6, 1, 12, 0)


class TestClaim:
    """Tests for claiming jobs."""

    async def test_claim_empty_queue(self, queue: Queue):
        assert await queue.claim() is None

    async def test_payload_round_trip(self, queue: Queue, sample_payload):
        await queue.enqueue("emails", sample_payload)

        job = await queue.claim()

        assert job.payload == sample_payload

    async def test_claim_marks_processing(self, queue: Queue):
        job_id = await queue.enqueue("emails", {"n": 1})

        job = await queue.claim(worker_id="worker-a")

        assert job.id == job_id
        assert job.status == JobStatus.PROCESSING
        assert job.worker_id == "worker-a"

        stored = await queue.get_job(job_id)
        assert stored.locked is True
        assert stored.worker_id == "worker-a"

    async def test_claim_generates_worker_id(self, queue: Queue):
        await queue.enqueue("emails", {})

        job = await queue.claim()

        assert job.worker_id

    async def test_claimed_job_is_not_claimed_again(self, queue: Queue):
        await queue.enqueue("emails", {})

        assert await queue.claim() is not None
        assert await queue.claim() is None

    async def test_priority_order(self, queue: Queue):
        """Jobs come out by ascending priority value, whatever the insert order."""
        ids = {}
        for priority in (5, 10, 1):
            ids[priority] = await queue.enqueue("emails", {"p": priority}, priority=priority)

        claimed = [(await queue.claim()).id for _ in range(3)]

        assert claimed == [ids[1], ids[5], ids[10]]

    async def test_equal_priority_is_fifo(self, queue: Queue):
        first = await queue.enqueue("emails", {})
        second = await queue.enqueue("emails", {})

        assert (await queue.claim()).id == first
        assert (await queue.claim()).id == second

    async def test_claim_task_filters(self, queue: Queue):
        await queue.enqueue("emails", {}, priority=1)
        report_id = await queue.enqueue("reports", {}, priority=50)

        job = await queue.claim_task("reports")

        assert job.id == report_id
        assert await queue.claim_task("reports") is None
        assert await queue.claim_task("unknown") is None
        assert (await queue.claim()).task_name == "emails"

    async def test_delayed_job(self, queue: Queue, set_job_fields):
        """A job scheduled an hour ahead is invisible until its time comes."""
        job_id = await queue.enqueue(
            "emails", {}, scheduled_at=utc_now() + timedelta(hours=1)
        )

        assert await queue.claim() is None
        assert await queue.queue_depth() == 0

        # Simulate the hour passing
        await set_job_fields(job_id, scheduled_at=utc_now() - timedelta(seconds=1))

        job = await queue.claim()
        assert job is not None
        assert job.id == job_id

    async def test_corrupt_payload_raises_after_claim(self, queue: Queue, set_job_fields):
        job_id = await queue.enqueue("emails", {})
        await set_job_fields(job_id, payload="{not json")

        with pytest.raises(PayloadDecodeError) as exc_info:
            await queue.claim(worker_id="worker-a")

        assert exc_info.value.job_id == job_id
        stored = await queue.get_job(job_id)
        assert stored.status == JobStatus.PROCESSING
        assert stored.worker_id == "worker-a"

        assert await queue.report_error(job_id, str(exc_info.value), worker_id="worker-a") == 1
        assert (await queue.get_job(job_id)).status == JobStatus.ERROR

    async def test_queue_depth(self, queue: Queue):
        await queue.enqueue("emails", {})
        await queue.enqueue("emails", {})
        await queue.enqueue("reports", {})

        assert await queue.queue_depth() == 3
        assert await queue.queue_depth("emails") == 2

        await queue.claim()
        assert await queue.queue_depth() == 2


class TestReports:
    """Tests for outcome reporting."""

    async def test_success(self, queue: Queue):
        job_id = await queue.enqueue("emails", {})
        job = await queue.claim()

        assert await queue.report_success(job.id) == 1

        stored = await queue.get_job(job_id)
        assert stored.status == JobStatus.SUCCESS
        assert stored.locked is False
        assert stored.worker_id is None
        assert stored.is_active is False
        assert await queue.claim() is None

    async def test_double_report_changes_nothing(self, queue: Queue):
        await queue.enqueue("emails", {})
        job = await queue.claim()

        assert await queue.report_success(job.id) == 1
        assert await queue.report_success(job.id) == 0
        assert await queue.report_failure(job.id) == 0
        assert await queue.report_error(job.id, "late") == 0
        assert (await queue.get_job(job.id)).status == JobStatus.SUCCESS

    async def test_unknown_id_returns_zero(self, queue: Queue):
        assert await queue.report_success(424242) == 0
        assert await queue.report_failure(424242) == 0
        assert await queue.report_error(424242, "nope") == 0

    async def test_report_by_wrong_worker(self, queue: Queue):
        await queue.enqueue("emails", {})
        job = await queue.claim(worker_id="worker-a")

        assert await queue.report_success(job.id, worker_id="worker-b") == 0
        assert await queue.report_success(job.id, worker_id="worker-a") == 1

    async def test_max_attempts_two(self, queue: Queue):
        """Fail, retry, fail: the job ends FAILED with two attempts."""
        job_id = await queue.enqueue("emails", {}, max_attempts=2)

        job = await queue.claim()
        assert await queue.report_failure(job.id) == 1
        stored = await queue.get_job(job_id)
        assert stored.status == JobStatus.PENDING
        assert stored.attempts == 1

        job = await queue.claim()
        assert job is not None
        assert job.id == job_id
        assert await queue.report_failure(job.id) == 1

        stored = await queue.get_job(job_id)
        assert stored.status == JobStatus.FAILED
        assert stored.attempts == 2
        assert stored.locked is False
        assert await queue.claim() is None

    async def test_unlimited_attempts(self, queue: Queue):
        job_id = await queue.enqueue("emails", {}, max_attempts=0)

        for _ in range(6):
            job = await queue.claim()
            assert job is not None
            assert await queue.report_failure(job.id) == 1

        stored = await queue.get_job(job_id)
        assert stored.status == JobStatus.PENDING
        assert stored.attempts == 6

    async def test_failure_with_retry_at(self, queue: Queue):
        job_id = await queue.enqueue("emails", {})
        job = await queue.claim()
        retry_at = utc_now() + timedelta(minutes=10)

        await queue.report_failure(job.id, retry_at=retry_at)

        stored = await queue.get_job(job_id)
        assert stored.status == JobStatus.PENDING
        assert stored.scheduled_at == retry_at
        assert await queue.claim() is None

    async def test_error_keeps_attempts(self, queue: Queue):
        job_id = await queue.enqueue("emails", {}, max_attempts=5)
        job = await queue.claim()

        assert await queue.report_error(job.id, "bad input") == 1

        stored = await queue.get_job(job_id)
        assert stored.status == JobStatus.ERROR
        assert stored.error_message == "bad input"
        assert stored.attempts == 0
        assert stored.locked is False
        assert await queue.claim() is None


class TestReleaseStale:
    """Tests for stale lock recovery."""

    async def test_threshold(self, queue: Queue, set_job_fields):
        """Only locks at least max_lock_age old are released."""
        old_id = await queue.enqueue("emails", {"n": 1})
        fresh_id = await queue.enqueue("emails", {"n": 2})
        await queue.claim(worker_id="worker-a")
        await queue.claim(worker_id="worker-b")

        now = utc_now()
        await set_job_fields(old_id, updated_at=now - timedelta(hours=2))
        await set_job_fields(fresh_id, updated_at=now - timedelta(minutes=10))

        assert await queue.release_stale(3600) == 1

        old = await queue.get_job(old_id)
        assert old.status == JobStatus.PENDING
        assert old.locked is False
        assert old.worker_id is None
        assert old.attempts == 0

        fresh = await queue.get_job(fresh_id)
        assert fresh.status == JobStatus.PROCESSING
        assert fresh.worker_id == "worker-b"

        job = await queue.claim()
        assert job.id == old_id

    async def test_accepts_timedelta(self, queue: Queue, set_job_fields):
        job_id = await queue.enqueue("emails", {})
        await queue.claim()
        await set_job_fields(job_id, updated_at=utc_now() - timedelta(minutes=2))

        assert await queue.release_stale(timedelta(minutes=5)) == 0
        assert await queue.release_stale(timedelta(minutes=1)) == 1

    async def test_negative_age_is_rejected(self, queue: Queue):
        """A negative age would release locks that are still live."""
        job_id = await queue.enqueue("emails", {})
        await queue.claim(worker_id="live-worker")

        with pytest.raises(ValueError):
            await queue.release_stale(-60)
        with pytest.raises(ValueError):
            await queue.release_stale(timedelta(seconds=-1))

        stored = await queue.get_job(job_id)
        assert stored.status == JobStatus.PROCESSING
        assert stored.worker_id == "live-worker"

    async def test_success_is_permanent(self, queue: Queue, set_job_fields):
        job_id = await queue.enqueue("emails", {})
        job = await queue.claim()
        await queue.report_success(job.id)
        await set_job_fields(job_id, updated_at=utc_now() - timedelta(days=2))

        assert await queue.release_stale(0) == 0

        assert (await queue.get_job(job_id)).status == JobStatus.SUCCESS
        assert await queue.claim() is None

    async def test_late_report_after_release(self, queue: Queue, set_job_fields):
        """A worker whose lock was released can no longer report."""
        job_id = await queue.enqueue("emails", {})
        await queue.claim(worker_id="slow-worker")
        await set_job_fields(job_id, updated_at=utc_now() - timedelta(hours=2))
        await queue.release_stale(3600)

        job = await queue.claim(worker_id="new-worker")

        assert await queue.report_success(job_id, worker_id="slow-worker") == 0
        assert await queue.report_success(job.id, worker_id="new-worker") == 1


class TestMetricsIntegration:
    """Queue operations feed the metrics collector."""

    async def test_counters(self, queue: Queue, registry, set_job_fields):
        job_id = await queue.enqueue("emails", {})
        await queue.claim()
        await set_job_fields(job_id, updated_at=utc_now() - timedelta(hours=2))
        await queue.release_stale(3600)

        labels = {"task_name": "emails"}
        assert registry.get_sample_value("balin_jobs_enqueued_total", labels) == 1
        assert registry.get_sample_value("balin_jobs_claimed_total", labels) == 1
        assert registry.get_sample_value("balin_stale_locks_released_total") == 1
