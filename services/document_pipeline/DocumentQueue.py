from shared.helper.HelperConfig import HelperConfig
from shared.models.document import ChunkOptions
from shared.models.jobs import DeleteDocumentJob, IndexDocumentJob, JobStatusResponse, ReindexDocumentJob
from shared.queue.JobQueue import JobQueue
from shared.queue.models.Job import BackoffPolicy, JobOptions, JobRecord, JobState


DOCUMENT_QUEUE_NAME = "document"
DELETE_PRIORITY = 1
DEFAULT_PRIORITY = 10


class DocumentQueue:
    """Producer side of the document queue.

    Job ids are ``<kind>-<document_id>``, so at most one job of each kind is
    pending per document. Deletes jump ahead of index work.
    """

    def __init__(self, helper_config: HelperConfig, queue: JobQueue):
        self.logging = helper_config.get_logger()
        self._queue = queue
        self._attempts = int(helper_config.get_number_val("DOCUMENT_JOB_ATTEMPTS", default=3))
        self._backoff = BackoffPolicy(
            type="exponential",
            delay_ms=int(helper_config.get_number_val("DOCUMENT_JOB_BACKOFF_MS", default=1000)),
            max_delay_ms=int(helper_config.get_number_val("DOCUMENT_JOB_BACKOFF_MAX_MS", default=60_000)),
        )

    def _options(self, job_id: str, priority: int = DEFAULT_PRIORITY) -> JobOptions:
        return JobOptions(job_id=job_id, attempts=self._attempts, backoff=self._backoff, priority=priority)

    ##########################################
    ############### ENQUEUE ##################
    ##########################################

    async def enqueue_index(
        self,
        document_id: str,
        user_id: str,
        profile_id: str | None = None,
        chunk_options: ChunkOptions | None = None,
    ) -> JobRecord:
        payload = IndexDocumentJob(
            document_id=document_id, user_id=user_id, profile_id=profile_id, chunk_options=chunk_options,
        )
        job = await self._queue.add("index", payload.model_dump(mode="json"), self._options(f"index-{document_id}"))
        self.logging.info("Queued index job %s for document %s", job.id, document_id)
        return job

    async def enqueue_delete(self, document_id: str, user_id: str) -> JobRecord:
        payload = DeleteDocumentJob(document_id=document_id, user_id=user_id)
        job = await self._queue.add(
            "delete", payload.model_dump(mode="json"), self._options(f"delete-{document_id}", DELETE_PRIORITY),
        )
        self.logging.info("Queued delete job %s for document %s", job.id, document_id)
        return job

    async def enqueue_reindex(
        self,
        document_id: str,
        user_id: str,
        profile_id: str | None = None,
        chunk_options: ChunkOptions | None = None,
    ) -> JobRecord:
        payload = ReindexDocumentJob(
            document_id=document_id, user_id=user_id, profile_id=profile_id, chunk_options=chunk_options,
        )
        job = await self._queue.add("reindex", payload.model_dump(mode="json"), self._options(f"reindex-{document_id}"))
        self.logging.info("Queued reindex job %s for document %s", job.id, document_id)
        return job

    async def cancel_pending_index(self, document_id: str) -> list[str]:
        """Drop index and reindex jobs of a document that have not started yet.

        Returns:
            list[str]: Ids of the removed jobs.
        """
        removed = []
        for job_id in (f"index-{document_id}", f"reindex-{document_id}"):
            if await self._queue.remove(job_id):
                removed.append(job_id)
        if removed:
            self.logging.info("Cancelled pending jobs %s for document %s", removed, document_id)
        return removed

    ##########################################
    ################ STATUS ##################
    ##########################################

    @staticmethod
    def to_status(job: JobRecord) -> JobStatusResponse:
        return JobStatusResponse(
            job_id=job.id,
            name=job.name,
            state=job.state.value,
            progress=job.progress,
            attempts_made=job.attempts_made,
            data=job.data,
            return_value=job.return_value,
            failed_reason=job.failed_reason,
            created_at=job.created_at,
            processed_on=job.processed_on,
            finished_on=job.finished_on,
        )

    async def get_job_status(self, job_id: str) -> JobStatusResponse | None:
        job = await self._queue.get_job(job_id)
        return self.to_status(job) if job is not None else None

    async def get_pending_jobs(self, user_id: str | None = None) -> list[JobStatusResponse]:
        """Jobs that are waiting, delayed or running, optionally only those of one user."""
        jobs = await self._queue.get_jobs([JobState.ACTIVE, JobState.WAITING, JobState.DELAYED])
        if user_id is not None:
            jobs = [job for job in jobs if job.data.get("user_id") == user_id]
        return [self.to_status(job) for job in jobs]
