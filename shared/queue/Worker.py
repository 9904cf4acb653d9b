"""Asyncio worker that pulls jobs from a JobQueue and runs a processor on them."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import BadRequestError, NotFoundError, UnrecoverableJobError
from shared.queue.JobQueue import JobQueue
from shared.queue.models.Job import JobRecord, JobState


ProgressReporter = Callable[[int], Awaitable[None]]
JobProcessor = Callable[[JobRecord, ProgressReporter], Awaitable[dict[str, Any] | None]]


class Worker:
    """Runs ``concurrency`` processing slots plus a stalled-job checker.

    While a job runs its lease is renewed every ``lock_duration_ms / 2``. A job
    whose lease runs out (dead or hung worker) is picked up by the stalled
    check of any worker on the same queue.
    """

    def __init__(
        self,
        queue: JobQueue,
        processor: JobProcessor,
        helper_config: HelperConfig,
        concurrency: int = 1,
        lock_duration_ms: int = 600_000,
        stalled_interval_ms: int = 30_000,
        max_stalled_count: int = 1,
        poll_interval: float = 1.0,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._queue = queue
        self._processor = processor
        self.logging = helper_config.get_logger()
        self.concurrency = concurrency
        self.lock_duration_ms = lock_duration_ms
        self.stalled_interval_ms = stalled_interval_ms
        self.max_stalled_count = max_stalled_count
        self.poll_interval = poll_interval

        self._closing = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    ##########################################
    ############### PROCESSING ###############
    ##########################################

    async def process_next(self) -> JobRecord | None:
        """Claim and run a single job.

        Returns:
            JobRecord | None: The job as stored after this attempt, or None if nothing was waiting.
        """
        job = await self._queue.claim(self.lock_duration_ms)
        if job is None:
            return None

        self.logging.info("Processing job %s (%s), attempt %d", job.id, job.name, job.attempts_made + 1)

        async def report_progress(progress: int) -> None:
            await self._queue.update_progress(job.id, job.lock_token, progress)

        renewer = asyncio.create_task(self._renew_lock(job))
        try:
            try:
                result = await self._processor(job, report_progress)
            finally:
                renewer.cancel()
        except (UnrecoverableJobError, BadRequestError, NotFoundError) as exc:
            # client errors will not go away by retrying
            await self._queue.fail(job.id, job.lock_token, str(exc), unrecoverable=True)
            self.logging.error("Job %s (%s) failed permanently: %s", job.id, job.name, exc)
        except Exception as exc:
            state = await self._queue.fail(job.id, job.lock_token, str(exc) or exc.__class__.__name__)
            if state == JobState.DELAYED:
                self.logging.warning("Job %s (%s) failed, will retry: %s", job.id, job.name, exc)
            else:
                self.logging.error("Job %s (%s) failed: %s", job.id, job.name, exc)
        else:
            if await self._queue.complete(job.id, job.lock_token, result):
                self.logging.info("Job %s (%s) completed", job.id, job.name, color="green")

        return await self._queue.get_job(job.id)

    async def _renew_lock(self, job: JobRecord) -> None:
        interval = self.lock_duration_ms / 2 / 1000
        while True:
            await asyncio.sleep(interval)
            if not await self._queue.extend_lock(job.id, job.lock_token, self.lock_duration_ms):
                self.logging.warning("Lost lock on job %s while processing", job.id)
                return

    ##########################################
    ################ LOOPS ###################
    ##########################################

    async def _wait_or_close(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._closing.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _slot_loop(self, slot: int) -> None:
        while not self._closing.is_set():
            try:
                job = await self.process_next()
            except Exception:
                # queue backend unreachable, back off and try again
                self.logging.exception("Worker slot %d could not fetch a job", slot)
                job = None
            if job is None:
                await self._wait_or_close(self.poll_interval)

    async def _stalled_loop(self) -> None:
        while not self._closing.is_set():
            try:
                await self._queue.check_stalled(self.max_stalled_count)
            except Exception:
                self.logging.exception("Stalled job check failed")
            await self._wait_or_close(self.stalled_interval_ms / 1000)

    async def run(self) -> None:
        """Process jobs until close() is called."""
        self.logging.info(
            "Worker for queue '%s' started (concurrency=%d, lock=%dms)",
            self._queue.name, self.concurrency, self.lock_duration_ms,
            color="cyan",
        )
        self._tasks = [asyncio.create_task(self._slot_loop(slot)) for slot in range(self.concurrency)]
        self._tasks.append(asyncio.create_task(self._stalled_loop()))
        await asyncio.gather(*self._tasks)

    async def close(self) -> None:
        """Stop taking new jobs and wait for running ones to finish."""
        self.logging.info("Closing worker for queue '%s'...", self._queue.name)
        self._closing.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self.logging.info("Worker for queue '%s' closed", self._queue.name)
