"""Durable job queue on top of Redis.

Layout under ``<prefix>:<queue>``:

* ``job:<id>``   hash with the serialized JobRecord
* ``waiting``    sorted set, score = priority * 10**12 + enqueue sequence
* ``delayed``    sorted set, score = timestamp (ms) when the job becomes ready
* ``active``     sorted set, score = lease expiry (ms)
* ``completed``  sorted set, score = finish timestamp (ms)
* ``failed``     sorted set, score = finish timestamp (ms)

State transitions run inside WATCH/MULTI transactions so that concurrent
workers never claim the same job twice. The Redis client must be created
with ``decode_responses=True``.
"""

import json
import time
import uuid
from collections.abc import Callable
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import WatchError

from shared.helper.HelperConfig import HelperConfig
from shared.queue.models.Job import JobOptions, JobRecord, JobState, RetentionPolicy


_PRIORITY_SHIFT = 10**12
STALLED_REASON = "job stalled more than allowable limit"


def _now_ms() -> int:
    return int(time.time() * 1000)


class JobQueue:
    def __init__(
        self,
        redis: Redis,
        name: str,
        helper_config: HelperConfig,
        prefix: str | None = None,
        clock: Callable[[], int] | None = None,
    ):
        self._redis = redis
        self.name = name
        self.logging = helper_config.get_logger()
        prefix = prefix or helper_config.get_string_val("QUEUE_PREFIX", default="docmind")
        self._key_prefix = f"{prefix}:{name}"
        self._clock = clock or _now_ms

    ##########################################
    ################# KEYS ###################
    ##########################################

    def _key(self, suffix: str) -> str:
        return f"{self._key_prefix}:{suffix}"

    def _job_key(self, job_id: str) -> str:
        return self._key(f"job:{job_id}")

    def _state_key(self, state: JobState) -> str:
        return self._key(state.value)

    async def _next_seq(self, count: int = 1) -> int:
        """Reserve ``count`` sequence numbers and return the first one."""
        last = await self._redis.incrby(self._key("seq"), count)
        return last - count + 1

    @staticmethod
    def _waiting_score(priority: int, seq: int) -> int:
        return priority * _PRIORITY_SHIFT + seq

    ##########################################
    ############### PRODUCER #################
    ##########################################

    async def add(self, name: str, data: dict[str, Any], opts: JobOptions | None = None) -> JobRecord:
        """Enqueue a job.

        When ``opts.job_id`` names a job that is still waiting, delayed or
        active, that job is returned unchanged. A completed or failed job with
        the same id is replaced by the new one.

        Returns:
            JobRecord: The enqueued (or already pending) job.
        """
        opts = opts or JobOptions()
        job_id = opts.job_id or str(await self._redis.incr(self._key("id")))
        key = self._job_key(job_id)

        async with self._redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    raw = await pipe.hgetall(key)
                    existing = JobRecord.from_hash(raw) if raw else None
                    if existing is not None and not existing.state.is_terminal:
                        self.logging.debug(
                            "Job %s already %s in queue '%s', not adding again",
                            job_id, existing.state.value, self.name,
                        )
                        return existing

                    now = self._clock()
                    seq = await self._next_seq()
                    state = JobState.DELAYED if opts.delay_ms > 0 else JobState.WAITING
                    record = JobRecord(
                        id=job_id,
                        name=name,
                        data=data,
                        opts=opts.model_copy(update={"job_id": job_id}),
                        state=state,
                        created_at=now,
                    )

                    pipe.multi()
                    if existing is not None:
                        pipe.zrem(self._state_key(existing.state), job_id)
                    pipe.delete(key)
                    pipe.hset(key, mapping=record.to_hash())
                    if state == JobState.DELAYED:
                        pipe.zadd(self._state_key(JobState.DELAYED), {job_id: now + opts.delay_ms})
                    else:
                        pipe.zadd(self._state_key(JobState.WAITING), {job_id: self._waiting_score(opts.priority, seq)})
                    await pipe.execute()
                    self.logging.debug("Added job %s (%s) to queue '%s'", job_id, name, self.name)
                    return record
                except WatchError:
                    continue

    async def remove(self, job_id: str) -> bool:
        """Delete a job that is not currently being processed.

        Returns:
            bool: False if the job does not exist or is active.
        """
        key = self._job_key(job_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    raw = await pipe.hgetall(key)
                    if not raw:
                        return False
                    state = JobState(raw["state"])
                    if state == JobState.ACTIVE:
                        return False
                    pipe.multi()
                    pipe.zrem(self._state_key(state), job_id)
                    pipe.delete(key)
                    await pipe.execute()
                    return True
                except WatchError:
                    continue

    ##########################################
    ############### CONSUMER #################
    ##########################################

    async def promote_delayed(self) -> int:
        """Move delayed jobs whose time has come back to waiting.

        Returns:
            int: Number of promoted jobs.
        """
        delayed = self._state_key(JobState.DELAYED)
        waiting = self._state_key(JobState.WAITING)
        async with self._redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(delayed)
                    due = await pipe.zrangebyscore(delayed, "-inf", self._clock())
                    if not due:
                        return 0
                    priorities: dict[str, int | None] = {}
                    for job_id in due:
                        raw_opts = await pipe.hget(self._job_key(job_id), "opts")
                        priorities[job_id] = JobOptions.model_validate_json(raw_opts).priority if raw_opts else None
                    seq = await self._next_seq(len(due))

                    pipe.multi()
                    for offset, job_id in enumerate(due):
                        pipe.zrem(delayed, job_id)
                        priority = priorities[job_id]
                        if priority is None:
                            continue
                        pipe.zadd(waiting, {job_id: self._waiting_score(priority, seq + offset)})
                        pipe.hset(self._job_key(job_id), "state", JobState.WAITING.value)
                    await pipe.execute()
                    return len(due)
                except WatchError:
                    continue

    async def claim(self, lock_duration_ms: int) -> JobRecord | None:
        """Take the next waiting job and lease it for ``lock_duration_ms``.

        Returns:
            JobRecord | None: The claimed job carrying its lock token, or None if nothing is waiting.
        """
        await self.promote_delayed()
        waiting = self._state_key(JobState.WAITING)
        async with self._redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(waiting)
                    head = await pipe.zrange(waiting, 0, 0)
                    if not head:
                        return None
                    job_id = head[0]
                    key = self._job_key(job_id)
                    raw = await pipe.hgetall(key)
                    if not raw:
                        # hash expired or was removed, drop the dangling id
                        pipe.multi()
                        pipe.zrem(waiting, job_id)
                        await pipe.execute()
                        continue

                    record = JobRecord.from_hash(raw)
                    now = self._clock()
                    record.state = JobState.ACTIVE
                    record.processed_on = now
                    record.lock_token = uuid.uuid4().hex

                    pipe.multi()
                    pipe.zrem(waiting, job_id)
                    pipe.zadd(self._state_key(JobState.ACTIVE), {job_id: now + lock_duration_ms})
                    pipe.hset(key, mapping={
                        "state": record.state.value,
                        "processed_on": str(now),
                        "lock_token": record.lock_token,
                    })
                    await pipe.execute()
                    return record
                except WatchError:
                    continue

    async def extend_lock(self, job_id: str, token: str, lock_duration_ms: int) -> bool:
        """Renew the lease of an active job.

        Returns:
            bool: False if the lock is no longer held with this token.
        """
        active = self._state_key(JobState.ACTIVE)
        if await self._redis.hget(self._job_key(job_id), "lock_token") != token:
            return False
        if await self._redis.zscore(active, job_id) is None:
            return False
        await self._redis.zadd(active, {job_id: self._clock() + lock_duration_ms}, xx=True)
        return True

    async def update_progress(self, job_id: str, token: str, progress: int) -> bool:
        """Store the progress (clamped to 0-100) of an active job.

        Returns:
            bool: False if the worker no longer held the lease; the value is then dropped.
        """
        progress = max(0, min(100, int(progress)))
        key = self._job_key(job_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    raw = await pipe.hgetall(key)
                    if not raw or raw.get("lock_token") != token or raw.get("state") != JobState.ACTIVE.value:
                        return False
                    pipe.multi()
                    pipe.hset(key, "progress", str(progress))
                    await pipe.execute()
                    return True
                except WatchError:
                    continue

    async def complete(self, job_id: str, token: str, return_value: dict[str, Any] | None = None) -> bool:
        """Mark an active job as completed.

        Returns:
            bool: False if the worker no longer held the lease; the result is then discarded.
        """
        key = self._job_key(job_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    raw = await pipe.hgetall(key)
                    if not raw or raw.get("lock_token") != token or raw.get("state") != JobState.ACTIVE.value:
                        self.logging.warning("Job %s lost its lock before completion, result discarded", job_id)
                        return False
                    record = JobRecord.from_hash(raw)
                    now = self._clock()
                    fields = {
                        "state": JobState.COMPLETED.value,
                        "finished_on": str(now),
                        "attempts_made": str(record.attempts_made + 1),
                    }

                    pipe.multi()
                    pipe.zrem(self._state_key(JobState.ACTIVE), job_id)
                    pipe.zadd(self._state_key(JobState.COMPLETED), {job_id: now})
                    pipe.hset(key, mapping=fields)
                    pipe.hdel(key, "lock_token", "failed_reason")
                    if return_value is not None:
                        pipe.hset(key, "return_value", json.dumps(return_value))
                    await pipe.execute()
                    break
                except WatchError:
                    continue

        await self._trim(JobState.COMPLETED, record.opts.remove_on_complete)
        return True

    async def fail(self, job_id: str, token: str, reason: str, unrecoverable: bool = False) -> JobState | None:
        """Record a failed attempt of an active job.

        The job is retried (state delayed, ready after the backoff) while
        attempts remain, unless the failure is unrecoverable.

        Returns:
            JobState | None: The new state, or None if the lease was already lost.
        """
        key = self._job_key(job_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    raw = await pipe.hgetall(key)
                    if not raw or raw.get("lock_token") != token or raw.get("state") != JobState.ACTIVE.value:
                        self.logging.warning("Job %s lost its lock before failure could be recorded", job_id)
                        return None
                    record = JobRecord.from_hash(raw)
                    now = self._clock()
                    attempts_made = record.attempts_made + 1
                    retry = not unrecoverable and attempts_made < record.opts.attempts

                    pipe.multi()
                    pipe.zrem(self._state_key(JobState.ACTIVE), job_id)
                    pipe.hdel(key, "lock_token")
                    if retry:
                        delay = record.opts.backoff.compute(attempts_made)
                        new_state = JobState.DELAYED
                        pipe.zadd(self._state_key(JobState.DELAYED), {job_id: now + delay})
                        pipe.hset(key, mapping={
                            "state": new_state.value,
                            "attempts_made": str(attempts_made),
                            "failed_reason": reason,
                        })
                    else:
                        new_state = JobState.FAILED
                        pipe.zadd(self._state_key(JobState.FAILED), {job_id: now})
                        pipe.hset(key, mapping={
                            "state": new_state.value,
                            "attempts_made": str(attempts_made),
                            "failed_reason": reason,
                            "finished_on": str(now),
                        })
                    await pipe.execute()
                    break
                except WatchError:
                    continue

        if new_state == JobState.FAILED:
            await self._trim(JobState.FAILED, record.opts.remove_on_fail)
        return new_state

    async def check_stalled(self, max_stalled_count: int = 1) -> list[str]:
        """Recover active jobs whose lease expired (their worker died or hung).

        A stalled job goes back to waiting; once it has stalled more than
        ``max_stalled_count`` times it fails for good.

        Returns:
            list[str]: Ids of the jobs that were recovered or failed.
        """
        active = self._state_key(JobState.ACTIVE)
        expired = await self._redis.zrangebyscore(active, "-inf", self._clock())
        handled: list[str] = []
        for job_id in expired:
            key = self._job_key(job_id)
            async with self._redis.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        await pipe.watch(key, active)
                        lease = await pipe.zscore(active, job_id)
                        now = self._clock()
                        if lease is None or lease > now:
                            break
                        raw = await pipe.hgetall(key)
                        if not raw:
                            pipe.multi()
                            pipe.zrem(active, job_id)
                            await pipe.execute()
                            break
                        record = JobRecord.from_hash(raw)
                        stalled_count = record.stalled_count + 1
                        seq = await self._next_seq()

                        pipe.multi()
                        pipe.zrem(active, job_id)
                        pipe.hdel(key, "lock_token")
                        if stalled_count > max_stalled_count:
                            pipe.zadd(self._state_key(JobState.FAILED), {job_id: now})
                            pipe.hset(key, mapping={
                                "state": JobState.FAILED.value,
                                "stalled_count": str(stalled_count),
                                "failed_reason": STALLED_REASON,
                                "finished_on": str(now),
                            })
                        else:
                            pipe.zadd(self._state_key(JobState.WAITING), {
                                job_id: self._waiting_score(record.opts.priority, seq),
                            })
                            pipe.hset(key, mapping={
                                "state": JobState.WAITING.value,
                                "stalled_count": str(stalled_count),
                            })
                        await pipe.execute()
                        if stalled_count > max_stalled_count:
                            self.logging.error("Job %s stalled %d times, marking as failed", job_id, stalled_count)
                        else:
                            self.logging.warning("Job %s stalled, moved back to waiting", job_id)
                        handled.append(job_id)
                        break
                    except WatchError:
                        continue
        return handled

    ##########################################
    ############### INSPECTION ###############
    ##########################################

    async def get_job(self, job_id: str) -> JobRecord | None:
        raw = await self._redis.hgetall(self._job_key(job_id))
        return JobRecord.from_hash(raw) if raw else None

    async def get_jobs(self, states: list[JobState], start: int = 0, end: int = -1) -> list[JobRecord]:
        """List jobs in the given states, waiting jobs in dispatch order and finished jobs newest first."""
        jobs: list[JobRecord] = []
        for state in states:
            key = self._state_key(state)
            if state.is_terminal:
                job_ids = await self._redis.zrevrange(key, start, end)
            else:
                job_ids = await self._redis.zrange(key, start, end)
            for job_id in job_ids:
                job = await self.get_job(job_id)
                if job is not None:
                    jobs.append(job)
        return jobs

    async def get_counts(self) -> dict[str, int]:
        return {state.value: await self._redis.zcard(self._state_key(state)) for state in JobState}

    ##########################################
    ############### RETENTION ################
    ##########################################

    async def _trim(self, state: JobState, retention: RetentionPolicy) -> None:
        key = self._state_key(state)
        stale: list[str] = []
        if retention.age_ms is not None:
            stale.extend(await self._redis.zrangebyscore(key, "-inf", self._clock() - retention.age_ms))
        if retention.count is not None:
            total = await self._redis.zcard(key)
            if total > retention.count:
                stale.extend(await self._redis.zrange(key, 0, total - retention.count - 1))
        if not stale:
            return
        unique = list(dict.fromkeys(stale))
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.zrem(key, *unique)
            pipe.delete(*[self._job_key(job_id) for job_id in unique])
            await pipe.execute()
        self.logging.debug("Removed %d %s job(s) from queue '%s'", len(unique), state.value, self.name)
