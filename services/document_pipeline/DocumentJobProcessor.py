"""Runs index, delete and reindex jobs for documents.

Writes go to two stores without a shared transaction, so the order is
fixed: chunk rows first, then vector points, then the status flip. Any
failure tries to remove what was written and marks the document failed;
whatever that cleanup misses is purged by the next attempt before it writes.
"""

import time
from typing import assert_never

from pydantic import ValidationError

from services.document_pipeline.Chunker import chunk_text, add_contextual_prefix, count_tokens, get_length_function
from services.document_pipeline.CollectionResolver import CollectionResolver
from services.document_pipeline.EmbeddingBatcher import EmbeddingBatcher
from services.document_pipeline.ProfileResolver import ProfileResolver
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.VectorPoint import VectorPoint, VectorPointPayload
from shared.db.models import Document, DocumentChunk, generate_id
from shared.helper.HelperConfig import HelperConfig
from shared.models.document import ChunkOptions, DocumentStatus
from shared.models.errors import BadRequestError, UnrecoverableJobError
from shared.models.jobs import (
    DOCUMENT_JOB_ADAPTER,
    DeleteDocumentJob,
    DeleteDocumentJobResult,
    IndexDocumentJob,
    IndexDocumentJobResult,
    ReindexDocumentJob,
)
from shared.models.profile import ProfileSettings
from shared.queue.Worker import ProgressReporter
from shared.queue.models.Job import JobRecord
from shared.repositories.DocumentRepository import DocumentRepository


UPSERT_BATCH_SIZE = 100  # max points per upsert call

# progress milestones of an index run
PROGRESS_STARTED = 5
PROGRESS_CHUNKED = 10
PROGRESS_EMBEDDED = 75
PROGRESS_ROWS_WRITTEN = 80
PROGRESS_POINTS_WRITTEN = 90
PROGRESS_DONE = 100

# reindex spends 0-20 on cleanup and maps the index run onto 20-100
REINDEX_CLEANUP_DONE = 20


class DocumentJobProcessor:
    """Processor for the document queue."""

    def __init__(
        self,
        helper_config: HelperConfig,
        documents: DocumentRepository,
        profiles: ProfileResolver,
        collections: CollectionResolver,
        batcher: EmbeddingBatcher,
        rag_client: RAGClientInterface,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._documents = documents
        self._profiles = profiles
        self._collections = collections
        self._batcher = batcher
        self._rag_client = rag_client
        unit = helper_config.get_choice_val("CHUNK_SIZE_UNIT", ["characters", "tokens"], default="characters")
        self._length_function = get_length_function(unit)

    ##########################################
    ############### DISPATCH #################
    ##########################################

    async def process(self, job: JobRecord, report_progress: ProgressReporter) -> dict:
        """Parse the job payload and run the matching workflow.

        Raises:
            UnrecoverableJobError: If the payload is malformed or retrying cannot help.
        """
        try:
            payload = DOCUMENT_JOB_ADAPTER.validate_python(job.data)
        except ValidationError as exc:
            raise UnrecoverableJobError(f"Invalid document job payload: {exc}") from exc

        if isinstance(payload, IndexDocumentJob):
            result = await self.do_index(payload, report_progress)
        elif isinstance(payload, DeleteDocumentJob):
            result = await self.do_delete(payload, report_progress)
        elif isinstance(payload, ReindexDocumentJob):
            result = await self.do_reindex(payload, report_progress)
        else:
            assert_never(payload)
        return result.model_dump()

    ##########################################
    ################ INDEX ###################
    ##########################################

    async def do_index(self, job: IndexDocumentJob | ReindexDocumentJob, report_progress: ProgressReporter) -> IndexDocumentJobResult:
        """Chunk, embed and store a document, then mark it indexed.

        Raises:
            UnrecoverableJobError: If the document does not exist or vanished while indexing.
        """
        started = time.monotonic()
        document = await self._documents.get(job.document_id)
        if document is None:
            raise UnrecoverableJobError(f"Document {job.document_id} not found")

        self.logging.info(
            "Indexing document %s with profile %s", document.id, job.profile_id or document.profile_id or "default",
        )
        if document.status != DocumentStatus.PROCESSING.value:
            # a retry after a failed attempt
            await self._documents.update_status(document.id, DocumentStatus.PROCESSING)
        await report_progress(PROGRESS_STARTED)

        collection: str | None = None
        points_written = False
        try:
            resolved = await self._profiles.resolve(job.user_id, job.profile_id or document.profile_id)
            settings = resolved.settings
            collection = await self._collections.resolve(settings.embedding_model)
            if resolved.profile_id != document.profile_id:
                # keep the profile on the document so a later delete finds the right collection
                await self._documents.set_profile(document.id, resolved.profile_id)

            chunks = self._chunk(document, settings, job.chunk_options)
            self.logging.info("Document %s: created %d chunks", document.id, len(chunks))
            await report_progress(PROGRESS_CHUNKED)

            texts = (
                add_contextual_prefix(chunks, document.title)
                if settings.add_contextual_prefix
                else [chunk.content for chunk in chunks]
            )

            async def on_batch(done: int, total: int) -> None:
                span = PROGRESS_EMBEDDED - PROGRESS_CHUNKED
                await report_progress(PROGRESS_CHUNKED + (done * span) // total)

            vectors = await self._batcher.embed(settings.embedding_model, texts, on_batch=on_batch)
            await report_progress(PROGRESS_EMBEDDED)

            chunk_rows: list[DocumentChunk] = []
            points: list[VectorPoint] = []
            for chunk, vector in zip(chunks, vectors, strict=True):
                chunk_id = generate_id()
                chunk_rows.append(DocumentChunk(
                    id=chunk_id,
                    document_id=document.id,
                    content=chunk.content,
                    chunk_index=chunk.index,
                    token_count=count_tokens(chunk.content),
                    vector_point_id=chunk_id,
                    metadata_={},
                ))
                points.append(VectorPoint(
                    id=chunk_id,
                    vector=vector,
                    payload=VectorPointPayload(
                        document_id=document.id,
                        chunk_id=chunk_id,
                        content=chunk.content,
                        chunk_index=chunk.index,
                        source=document.source,
                        metadata=document.metadata_ or {},
                    ),
                ))

            # an earlier attempt may have left rows or points behind when its cleanup failed
            await self._documents.delete_chunks(document.id)
            await self._delete_vectors(collection, document.id)

            await self._documents.insert_chunks(chunk_rows)
            await report_progress(PROGRESS_ROWS_WRITTEN)

            for start in range(0, len(points), UPSERT_BATCH_SIZE):
                points_written = True
                await self._rag_client.do_upsert_points(collection, points[start:start + UPSERT_BATCH_SIZE])
            await report_progress(PROGRESS_POINTS_WRITTEN)

            if not await self._documents.update_status(document.id, DocumentStatus.INDEXED, chunk_count=len(chunks)):
                raise UnrecoverableJobError(f"Document {document.id} was deleted while indexing")
            await report_progress(PROGRESS_DONE)
        except Exception as exc:
            await self._cleanup_failed_index(document.id, collection, points_written)
            self.logging.error("Document %s: indexing failed: %s", document.id, exc)
            raise

        elapsed_ms = int((time.monotonic() - started) * 1000)
        self.logging.info("Document %s: indexed %d chunks in %dms", document.id, len(chunks), elapsed_ms, color="green")
        return IndexDocumentJobResult(
            document_id=document.id,
            chunk_count=len(chunks),
            collection=collection,
            processing_time_ms=elapsed_ms,
        )

    def _chunk(self, document: Document, settings: ProfileSettings, options: ChunkOptions | None):
        options = options or ChunkOptions()
        chunk_size = options.chunk_size if options.chunk_size is not None else settings.chunk_size
        chunk_overlap = options.chunk_overlap if options.chunk_overlap is not None else settings.chunk_overlap
        separators = options.separators if options.separators is not None else settings.separators
        try:
            return chunk_text(
                document.content,
                chunk_size=chunk_size,
                chunk_overlap=chunk_overlap,
                separators=separators,
                length_function=self._length_function,
            )
        except ValueError as exc:
            raise UnrecoverableJobError(str(exc)) from exc

    async def _cleanup_failed_index(self, document_id: str, collection: str | None, points_written: bool) -> None:
        """Remove everything a failed index run may have written and mark the document failed.

        Row and vector removal are best effort; the next attempt purges leftovers
        before writing. The status flip is not, so the document never stays
        ``indexed`` with missing data.
        """
        try:
            await self._documents.delete_chunks(document_id)
        except Exception as cleanup_exc:
            self.logging.warning(
                "Document %s: could not remove chunk rows after failed indexing: %s", document_id, cleanup_exc,
            )
        if collection is not None and points_written:
            try:
                await self._delete_vectors(collection, document_id)
            except Exception as cleanup_exc:
                self.logging.warning(
                    "Document %s: could not remove vectors after failed indexing: %s", document_id, cleanup_exc,
                )
        await self._documents.update_status(document_id, DocumentStatus.FAILED, chunk_count=0)

    ##########################################
    ################ DELETE ##################
    ##########################################

    async def do_delete(self, job: DeleteDocumentJob, report_progress: ProgressReporter) -> DeleteDocumentJobResult:
        """Delete a document's vectors, then the document row (chunk rows go with it)."""
        self.logging.info("Deleting document %s", job.document_id)
        document = await self._documents.get(job.document_id)
        profile_id = document.profile_id if document is not None else None

        collection = await self._collection_for_profile(profile_id)
        await self._delete_vectors(collection, job.document_id)
        await report_progress(50)

        deleted = await self._documents.delete_document(job.document_id)
        await report_progress(100)
        if not deleted:
            self.logging.warning("Document %s was already gone, removed its vectors only", job.document_id)
        return DeleteDocumentJobResult(document_id=job.document_id, deleted=deleted)

    ##########################################
    ################ REINDEX #################
    ##########################################

    async def do_reindex(self, job: ReindexDocumentJob, report_progress: ProgressReporter) -> IndexDocumentJobResult:
        """Drop a document's chunks and vectors and index its stored content again.

        Raises:
            UnrecoverableJobError: If the document does not exist.
        """
        document = await self._documents.get(job.document_id)
        if document is None:
            raise UnrecoverableJobError(f"Document {job.document_id} not found")

        self.logging.info("Reindexing document %s", document.id)
        # leave indexed before either store is touched
        await self._documents.update_status(document.id, DocumentStatus.PROCESSING, chunk_count=0)
        collection: str | None = None
        try:
            collection = await self._collection_for_profile(document.profile_id)
            await self._delete_vectors(collection, document.id)
            await self._documents.delete_chunks(document.id)
        except Exception as exc:
            await self._cleanup_failed_index(document.id, collection, points_written=True)
            self.logging.error("Document %s: reindex cleanup failed: %s", document.id, exc)
            raise
        await report_progress(REINDEX_CLEANUP_DONE)

        async def scaled_progress(progress: int) -> None:
            span = 100 - REINDEX_CLEANUP_DONE
            await report_progress(REINDEX_CLEANUP_DONE + (progress * span) // 100)

        return await self.do_index(job, scaled_progress)

    ##########################################
    ################ HELPERS #################
    ##########################################

    async def _collection_for_profile(self, profile_id: str | None) -> str:
        """Collection a document was indexed into; the default collection if that cannot be told."""
        settings = await self._profiles.settings_for(profile_id)
        if settings is None:
            return self._collections.default_collection_name()
        try:
            return self._collections.collection_name_for(settings.embedding_model)
        except BadRequestError:
            self.logging.warning(
                "Profile %s uses unknown embedding model '%s', falling back to the default collection",
                profile_id, settings.embedding_model,
            )
            return self._collections.default_collection_name()

    async def _delete_vectors(self, collection: str, document_id: str) -> None:
        if not await self._collections.exists(collection):
            self.logging.debug("Collection %s does not exist, no vectors to delete for %s", collection, document_id)
            return
        await self._rag_client.do_delete_points_by_filter(
            collection, self._rag_client.get_match_filter({"document_id": document_id}),
        )
