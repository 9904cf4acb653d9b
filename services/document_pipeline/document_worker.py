"""Document worker entry point.

Consumes index, delete and reindex jobs from the document queue until it
receives SIGINT or SIGTERM, then finishes running jobs and shuts down.

Usage:
    python -m services.document_pipeline.document_worker
"""

import asyncio
import signal

from redis.asyncio import Redis

from services.document_pipeline.CollectionResolver import CollectionCache, CollectionResolver
from services.document_pipeline.DocumentJobProcessor import DocumentJobProcessor
from services.document_pipeline.DocumentQueue import DOCUMENT_QUEUE_NAME
from services.document_pipeline.EmbeddingBatcher import EmbeddingBatcher
from services.document_pipeline.ProfileResolver import ProfileResolver
from shared.clients.llm.LLMClientManager import LLMClientManager
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.db.database import Database
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging
from shared.queue.JobQueue import JobQueue
from shared.queue.Worker import Worker
from shared.repositories.DocumentRepository import DocumentRepository
from shared.repositories.ProfileRepository import ProfileRepository


async def run_until_stopped(worker: Worker, stop: asyncio.Event) -> None:
    """Run the worker until it returns on its own or ``stop`` is set, then close it gracefully."""
    run_task = asyncio.create_task(worker.run())
    stop_task = asyncio.create_task(stop.wait())
    try:
        await asyncio.wait({run_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stop_task.cancel()
    if not run_task.done():
        worker.logging.info("Shutdown requested, waiting for active jobs to finish...")
        await worker.close()
    await run_task


async def main() -> None:
    """Boot all resources, run the worker, and release everything on shutdown."""
    logger = setup_logging("worker")
    config = HelperConfig(logger=logger)

    rag_client = RAGClientManager(helper_config=config).get_client()
    llm_client = LLMClientManager(helper_config=config).get_client()
    database = Database(helper_config=config)
    redis = Redis.from_url(config.get_string_val("QUEUE_REDIS_URL", default="redis://localhost:6379/0"), decode_responses=True)

    try:
        # the worker is useless without the vector store and the embedding provider
        for client in (rag_client, llm_client):
            await client.boot()
            result = await client.do_healthcheck()
            if not result.is_success:
                logger.error(
                    "%s client '%s' is not reachable (status %d). Aborting.",
                    client.get_client_type().upper(), client.get_engine_name(), result.status_code,
                )
                return
        await redis.ping()
        await database.init_db()

        documents = DocumentRepository(database)
        profiles = ProfileResolver(config, ProfileRepository(database))
        collections = CollectionResolver(config, rag_client, CollectionCache())
        processor = DocumentJobProcessor(
            helper_config=config,
            documents=documents,
            profiles=profiles,
            collections=collections,
            batcher=EmbeddingBatcher(config, llm_client),
            rag_client=rag_client,
        )
        worker = Worker(
            queue=JobQueue(redis, DOCUMENT_QUEUE_NAME, config),
            processor=processor.process,
            helper_config=config,
            concurrency=int(config.get_number_val("DOCUMENT_WORKER_CONCURRENCY", default=2)),
            lock_duration_ms=int(config.get_number_val("DOCUMENT_WORKER_LOCK_DURATION_MS", default=600_000)),
            stalled_interval_ms=int(config.get_number_val("DOCUMENT_WORKER_STALLED_INTERVAL_MS", default=30_000)),
        )

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        await run_until_stopped(worker, stop)
    finally:
        await rag_client.close()
        await llm_client.close()
        await redis.aclose()
        await database.close()
        logger.info("Document worker stopped.")


if __name__ == "__main__":
    asyncio.run(main())
