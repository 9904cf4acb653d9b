import asyncio

from services.document_pipeline.document_worker import run_until_stopped
from shared.models.errors import UnrecoverableJobError
from shared.queue.JobQueue import STALLED_REASON
from shared.queue.Worker import Worker
from shared.queue.models.Job import BackoffPolicy, JobOptions, JobState, RetentionPolicy


def options(job_id: str, **overrides) -> JobOptions:
    fields = {"attempts": 3, "backoff": BackoffPolicy(delay_ms=1000)}
    fields.update(overrides)
    return JobOptions(job_id=job_id, **fields)


class TestBackoffPolicy:
    """Test cases for retry delays."""

    def test_exponential(self):
        policy = BackoffPolicy(delay_ms=1000, max_delay_ms=5000)
        assert [policy.compute(n) for n in range(1, 5)] == [1000, 2000, 4000, 5000]

    def test_fixed(self):
        assert BackoffPolicy(type="fixed", delay_ms=700).compute(4) == 700


class TestJobQueueProducer:
    """Test cases for adding, deduplicating and removing jobs."""

    async def test_add_returns_waiting_job(self, job_queue):
        job = await job_queue.add("index", {"document_id": "d1"}, options("index-d1"))

        assert job.id == "index-d1"
        assert job.state == JobState.WAITING
        stored = await job_queue.get_job("index-d1")
        assert stored.data == {"document_id": "d1"}
        assert stored.opts.attempts == 3

    async def test_pending_job_with_same_id_is_not_added_twice(self, job_queue):
        first = await job_queue.add("index", {"document_id": "d1", "n": 1}, options("index-d1"))
        second = await job_queue.add("index", {"document_id": "d1", "n": 2}, options("index-d1"))

        assert second.id == first.id
        assert second.data == {"document_id": "d1", "n": 1}
        assert (await job_queue.get_counts())["waiting"] == 1

    async def test_finished_job_with_same_id_is_replaced(self, job_queue):
        await job_queue.add("index", {"n": 1}, options("index-d1"))
        claimed = await job_queue.claim(60_000)
        await job_queue.complete(claimed.id, claimed.lock_token, {"done": True})

        again = await job_queue.add("index", {"n": 2}, options("index-d1"))

        assert again.state == JobState.WAITING
        assert (await job_queue.get_job("index-d1")).data == {"n": 2}
        counts = await job_queue.get_counts()
        assert counts["waiting"] == 1
        assert counts["completed"] == 0

    async def test_jobs_without_id_get_sequential_ids(self, job_queue):
        first = await job_queue.add("index", {})
        second = await job_queue.add("index", {})
        assert first.id != second.id

    async def test_remove_waiting_job(self, job_queue):
        await job_queue.add("index", {}, options("index-d1"))

        assert await job_queue.remove("index-d1") is True
        assert await job_queue.get_job("index-d1") is None
        assert await job_queue.claim(60_000) is None

    async def test_active_job_cannot_be_removed(self, job_queue):
        await job_queue.add("index", {}, options("index-d1"))
        await job_queue.claim(60_000)

        assert await job_queue.remove("index-d1") is False
        assert await job_queue.remove("missing") is False

    async def test_delayed_job_waits_for_its_time(self, job_queue, clock):
        await job_queue.add("index", {}, options("later", delay_ms=5000))

        assert await job_queue.claim(60_000) is None
        clock.advance(5000)
        claimed = await job_queue.claim(60_000)
        assert claimed.id == "later"


class TestJobQueueConsumer:
    """Test cases for claiming, leases, completion and failure."""

    async def test_lower_priority_number_is_claimed_first(self, job_queue):
        await job_queue.add("index", {}, options("index-a"))
        await job_queue.add("index", {}, options("index-b"))
        await job_queue.add("delete", {}, options("delete-c", priority=1))

        order = []
        while (job := await job_queue.claim(60_000)) is not None:
            order.append(job.id)

        assert order == ["delete-c", "index-a", "index-b"]

    async def test_claim_leases_job(self, job_queue, clock):
        await job_queue.add("index", {}, options("index-d1"))

        job = await job_queue.claim(60_000)

        assert job.state == JobState.ACTIVE
        assert job.lock_token
        assert job.processed_on == clock.now
        assert (await job_queue.get_counts())["active"] == 1

    async def test_extend_lock_requires_the_token(self, job_queue):
        await job_queue.add("index", {}, options("index-d1"))
        job = await job_queue.claim(60_000)

        assert await job_queue.extend_lock(job.id, job.lock_token, 60_000) is True
        assert await job_queue.extend_lock(job.id, "someone-else", 60_000) is False

    async def test_complete_with_stale_token_is_discarded(self, job_queue):
        await job_queue.add("index", {}, options("index-d1"))
        job = await job_queue.claim(60_000)

        assert await job_queue.complete(job.id, "stale", {"x": 1}) is False
        assert (await job_queue.get_job(job.id)).state == JobState.ACTIVE

    async def test_progress_is_clamped(self, job_queue):
        await job_queue.add("index", {}, options("index-d1"))
        job = await job_queue.claim(60_000)

        assert await job_queue.update_progress(job.id, job.lock_token, 42) is True
        assert (await job_queue.get_job(job.id)).progress == 42

        await job_queue.update_progress(job.id, job.lock_token, 250)
        assert (await job_queue.get_job(job.id)).progress == 100

        assert await job_queue.update_progress("missing", job.lock_token, 10) is False
        assert await job_queue.get_job("missing") is None

    async def test_progress_from_stalled_holder_is_dropped(self, job_queue, clock):
        await job_queue.add("index", {}, options("index-d1"))
        stale = await job_queue.claim(1000)
        clock.advance(1001)
        await job_queue.check_stalled(max_stalled_count=1)

        # not active while waiting to be claimed again
        assert await job_queue.update_progress(stale.id, stale.lock_token, 90) is False

        current = await job_queue.claim(60_000)
        assert await job_queue.update_progress(current.id, current.lock_token, 10) is True
        assert await job_queue.update_progress(stale.id, stale.lock_token, 90) is False
        assert (await job_queue.get_job(current.id)).progress == 10

    async def test_failure_with_attempts_left_is_delayed(self, job_queue, clock):
        await job_queue.add("index", {}, options("index-d1"))
        job = await job_queue.claim(60_000)

        state = await job_queue.fail(job.id, job.lock_token, "timeout")

        assert state == JobState.DELAYED
        stored = await job_queue.get_job(job.id)
        assert stored.attempts_made == 1
        assert stored.failed_reason == "timeout"
        assert stored.lock_token is None

    async def test_unrecoverable_failure_is_final(self, job_queue):
        await job_queue.add("index", {}, options("index-d1"))
        job = await job_queue.claim(60_000)

        state = await job_queue.fail(job.id, job.lock_token, "document not found", unrecoverable=True)

        assert state == JobState.FAILED
        stored = await job_queue.get_job(job.id)
        assert stored.attempts_made == 1
        assert stored.finished_on is not None

    async def test_stalled_job_is_requeued_then_failed(self, job_queue, clock):
        await job_queue.add("index", {}, options("index-d1"))
        first = await job_queue.claim(1000)

        clock.advance(1001)
        assert await job_queue.check_stalled(max_stalled_count=1) == ["index-d1"]
        requeued = await job_queue.get_job("index-d1")
        assert requeued.state == JobState.WAITING
        assert requeued.stalled_count == 1

        # the old lease holder cannot complete any more
        assert await job_queue.complete(first.id, first.lock_token) is False

        await job_queue.claim(1000)
        clock.advance(1001)
        assert await job_queue.check_stalled(max_stalled_count=1) == ["index-d1"]
        failed = await job_queue.get_job("index-d1")
        assert failed.state == JobState.FAILED
        assert failed.failed_reason == STALLED_REASON

    async def test_running_job_with_valid_lease_is_not_stalled(self, job_queue, clock):
        await job_queue.add("index", {}, options("index-d1"))
        await job_queue.claim(1000)
        clock.advance(999)

        assert await job_queue.check_stalled() == []

    async def test_completed_jobs_are_trimmed_by_count(self, job_queue, clock):
        retention = RetentionPolicy(count=1)
        for job_id in ("a", "b"):
            await job_queue.add("index", {}, options(job_id, remove_on_complete=retention))
            job = await job_queue.claim(60_000)
            await job_queue.complete(job.id, job.lock_token)
            clock.advance(10)

        assert await job_queue.get_job("a") is None
        assert (await job_queue.get_job("b")).state == JobState.COMPLETED

    async def test_failed_jobs_are_trimmed_by_age(self, job_queue, clock):
        retention = RetentionPolicy(age_ms=1000)
        await job_queue.add("index", {}, options("old", remove_on_fail=retention, attempts=1))
        job = await job_queue.claim(60_000)
        await job_queue.fail(job.id, job.lock_token, "boom")

        clock.advance(2000)
        await job_queue.add("index", {}, options("new", remove_on_fail=retention, attempts=1))
        job = await job_queue.claim(60_000)
        await job_queue.fail(job.id, job.lock_token, "boom")

        assert await job_queue.get_job("old") is None
        assert (await job_queue.get_job("new")).state == JobState.FAILED

    async def test_get_jobs_lists_finished_newest_first(self, job_queue, clock):
        for job_id in ("first", "second"):
            await job_queue.add("index", {}, options(job_id))
            job = await job_queue.claim(60_000)
            await job_queue.complete(job.id, job.lock_token)
            clock.advance(10)

        jobs = await job_queue.get_jobs([JobState.COMPLETED])
        assert [job.id for job in jobs] == ["second", "first"]


class TestWorker:
    """Test cases for the worker loop."""

    async def test_fails_twice_then_succeeds(self, job_queue, helper_config, clock):
        attempts_seen = []

        async def flaky(job, report_progress):
            attempts_seen.append(job.attempts_made)
            if len(attempts_seen) < 3:
                raise ConnectionError("provider timeout")
            await report_progress(100)
            return {"ok": True}

        worker = Worker(job_queue, flaky, helper_config)
        await job_queue.add("index", {}, options("index-d1"))

        job = await worker.process_next()
        assert job.state == JobState.DELAYED
        assert job.attempts_made == 1

        assert await worker.process_next() is None
        clock.advance(1000)
        job = await worker.process_next()
        assert job.state == JobState.DELAYED
        assert job.attempts_made == 2

        clock.advance(1999)
        assert await worker.process_next() is None
        clock.advance(1)
        job = await worker.process_next()

        assert job.state == JobState.COMPLETED
        assert job.attempts_made == 3
        assert job.progress == 100
        assert job.return_value == {"ok": True}
        assert attempts_seen == [0, 1, 2]

    async def test_gives_up_after_last_attempt(self, job_queue, helper_config, clock):
        async def always_down(job, report_progress):
            raise ConnectionError("provider down")

        worker = Worker(job_queue, always_down, helper_config)
        await job_queue.add("index", {}, options("index-d1"))

        for _ in range(3):
            job = await worker.process_next()
            clock.advance(10_000)

        assert job.state == JobState.FAILED
        assert job.attempts_made == 3
        assert job.failed_reason == "provider down"

    async def test_unrecoverable_error_is_not_retried(self, job_queue, helper_config):
        async def broken(job, report_progress):
            raise UnrecoverableJobError("Document d1 not found")

        worker = Worker(job_queue, broken, helper_config)
        await job_queue.add("index", {}, options("index-d1"))

        job = await worker.process_next()

        assert job.state == JobState.FAILED
        assert job.attempts_made == 1
        assert job.failed_reason == "Document d1 not found"

    async def test_run_processes_jobs_until_closed(self, job_queue, helper_config):
        done = asyncio.Event()

        async def processor(job, report_progress):
            done.set()
            return {"id": job.id}

        worker = Worker(job_queue, processor, helper_config, concurrency=2, poll_interval=0.01)
        await job_queue.add("index", {}, options("index-d1"))

        runner = asyncio.create_task(worker.run())
        await asyncio.wait_for(done.wait(), timeout=5)
        await worker.close()
        await asyncio.wait_for(runner, timeout=5)

        assert (await job_queue.get_job("index-d1")).state == JobState.COMPLETED

    async def test_stop_waits_for_running_job(self, job_queue, helper_config):
        started = asyncio.Event()
        release = asyncio.Event()

        async def processor(job, report_progress):
            started.set()
            await release.wait()
            return {"id": job.id}

        worker = Worker(job_queue, processor, helper_config, concurrency=1, poll_interval=0.01)
        await job_queue.add("index", {}, options("index-d1"))
        stop = asyncio.Event()

        runner = asyncio.create_task(run_until_stopped(worker, stop))
        await asyncio.wait_for(started.wait(), timeout=5)
        stop.set()
        await asyncio.sleep(0.05)
        assert not runner.done()

        release.set()
        await asyncio.wait_for(runner, timeout=5)
        assert (await job_queue.get_job("index-d1")).state == JobState.COMPLETED
