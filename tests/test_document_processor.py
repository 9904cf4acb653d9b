import pytest

from shared.models.document import ChunkOptions, DocumentStatus
from shared.models.errors import ClientResponseError, NotFoundError, UnrecoverableJobError
from shared.models.profile import ProfileSettings
from shared.queue.models.Job import JobOptions, JobRecord, JobState


USER = "alice"
SENTENCE = "Employees accrue two vacation days per month of service. "
CONTENT = "\n\n".join(f"Section {i}. " + SENTENCE * 4 for i in range(6))


async def claim_and_process(job_queue, processor, progress) -> dict:
    job = await job_queue.claim(60_000)
    assert job is not None
    return await processor.process(job, progress)


@pytest.fixture
async def profile(profile_repository):
    settings = ProfileSettings(embedding_model="all-minilm", chunk_size=200, chunk_overlap=20)
    return await profile_repository.create(USER, "Handbook", settings, is_default=True)


@pytest.fixture
async def document(document_repository, profile):
    return await document_repository.create(
        USER, "Employee Handbook", CONTENT, source="handbook.txt", metadata={"team": "hr"},
    )


class TestIndexDocument:
    """Test cases for the index workflow."""

    async def test_index_round_trip(
        self, document, document_queue, job_queue, processor, progress, document_repository, rag_client, llm_client, profile,
    ):
        await document_queue.enqueue_index(document.id, USER)

        result = await claim_and_process(job_queue, processor, progress)

        stored = await document_repository.get(document.id)
        rows = await document_repository.list_chunks(document.id)
        points = rag_client.points(document.id)

        assert stored.status == DocumentStatus.INDEXED.value
        assert stored.chunk_count == len(rows) == len(points) > 1
        assert stored.profile_id == profile.id
        assert sorted(row.id for row in rows) == sorted(point.id for point in points)
        assert all(row.vector_point_id == row.id for row in rows)
        assert [row.chunk_index for row in rows] == list(range(len(rows)))

        assert result["collection"] == "docmind_384"
        assert result["chunk_count"] == len(rows)

        point = next(p for p in points if p.payload.chunk_index == 0)
        assert point.payload.content == rows[0].content
        assert point.payload.source == "handbook.txt"
        assert point.payload.metadata == {"team": "hr"}

        # embedded text carries the title, the stored chunk does not
        embedded = [text for _, batch in llm_client.embed_calls for text in batch]
        assert all(text.startswith("Document: Employee Handbook\n\n") for text in embedded)
        assert not rows[0].content.startswith("Document:")

        assert progress.values[0] == 5
        assert progress.values[-1] == 100
        assert progress.values == sorted(progress.values)

    async def test_chunk_options_override_profile(
        self, document, document_queue, job_queue, processor, progress, document_repository,
    ):
        await document_queue.enqueue_index(document.id, USER, chunk_options=ChunkOptions(chunk_size=2000, chunk_overlap=0))

        await claim_and_process(job_queue, processor, progress)

        assert (await document_repository.get(document.id)).chunk_count == 1

    async def test_upsert_failure_removes_everything(
        self, document, document_queue, job_queue, processor, progress, document_repository, rag_client,
    ):
        rag_client.fail_upsert = True
        await document_queue.enqueue_index(document.id, USER)

        with pytest.raises(ClientResponseError):
            await claim_and_process(job_queue, processor, progress)

        stored = await document_repository.get(document.id)
        assert stored.status == DocumentStatus.FAILED.value
        assert stored.chunk_count == 0
        assert await document_repository.count_chunks(document.id) == 0
        assert rag_client.points(document.id) == []

    async def test_retry_after_embedding_failure_succeeds(
        self, document, document_queue, job_queue, processor, progress, document_repository, llm_client,
    ):
        llm_client.fail_embed_times = 1
        await document_queue.enqueue_index(document.id, USER)
        job = await job_queue.claim(60_000)

        with pytest.raises(ClientResponseError):
            await processor.process(job, progress)
        assert (await document_repository.get(document.id)).status == DocumentStatus.FAILED.value

        await processor.process(job, progress)
        stored = await document_repository.get(document.id)
        assert stored.status == DocumentStatus.INDEXED.value
        assert stored.chunk_count == await document_repository.count_chunks(document.id)

    async def test_retry_purges_points_left_by_failed_cleanup(
        self, document_repository, document_queue, job_queue, processor, progress, rag_client, profile,
    ):
        content = "\n\n".join(f"Paragraph {i}. Travel costs are reimbursed monthly." for i in range(150))
        document = await document_repository.create(USER, "Travel", content)
        upserts = 0

        async def vector_store_goes_down():
            nonlocal upserts
            upserts += 1
            if upserts == 2:
                rag_client.fail_delete = True
                raise ClientResponseError("/collections/docmind_384/points", 503, "unavailable")

        rag_client.before_upsert = vector_store_goes_down
        await document_queue.enqueue_index(document.id, USER, chunk_options=ChunkOptions(chunk_size=60, chunk_overlap=0))
        job = await job_queue.claim(60_000)

        with pytest.raises(ClientResponseError):
            await processor.process(job, progress)
        assert (await document_repository.get(document.id)).status == DocumentStatus.FAILED.value
        assert len(rag_client.points(document.id)) == 100

        rag_client.before_upsert = None
        rag_client.fail_delete = False
        await processor.process(job, progress)

        stored = await document_repository.get(document.id)
        rows = await document_repository.list_chunks(document.id)
        points = rag_client.points(document.id)
        assert stored.status == DocumentStatus.INDEXED.value
        assert stored.chunk_count == len(rows) == len(points) == 150
        assert {row.id for row in rows} == {point.id for point in points}

    async def test_document_deleted_while_indexing_leaves_no_vectors(
        self, document, document_queue, job_queue, processor, progress, document_repository, rag_client,
    ):
        async def delete_document():
            await document_repository.delete_document(document.id)

        rag_client.before_upsert = delete_document
        await document_queue.enqueue_index(document.id, USER)

        with pytest.raises(UnrecoverableJobError, match="deleted while indexing"):
            await claim_and_process(job_queue, processor, progress)

        assert await document_repository.get(document.id) is None
        assert rag_client.points(document.id) == []
        assert await document_repository.count_chunks(document.id) == 0

    async def test_missing_document_is_unrecoverable(self, document_queue, job_queue, processor, progress):
        await document_queue.enqueue_index("does-not-exist", USER)

        with pytest.raises(UnrecoverableJobError, match="not found"):
            await claim_and_process(job_queue, processor, progress)

    async def test_unknown_explicit_profile_fails_document(
        self, document, document_queue, job_queue, processor, progress, document_repository,
    ):
        await document_queue.enqueue_index(document.id, USER, profile_id="no-such-profile")

        with pytest.raises(NotFoundError):
            await claim_and_process(job_queue, processor, progress)
        assert (await document_repository.get(document.id)).status == DocumentStatus.FAILED.value

    async def test_blank_document_is_indexed_with_no_chunks(
        self, document_repository, document_queue, job_queue, processor, progress, llm_client, profile,
    ):
        blank = await document_repository.create(USER, "Blank", "   \n\n  ")
        await document_queue.enqueue_index(blank.id, USER)

        result = await claim_and_process(job_queue, processor, progress)

        stored = await document_repository.get(blank.id)
        assert stored.status == DocumentStatus.INDEXED.value
        assert stored.chunk_count == 0
        assert result["chunk_count"] == 0
        assert llm_client.embed_calls == []

    async def test_without_profile_uses_builtin_defaults(
        self, document_repository, document_queue, job_queue, processor, progress,
    ):
        document = await document_repository.create("carol", "Notes", "Short note about the quarterly plan.")
        await document_queue.enqueue_index(document.id, "carol")

        result = await claim_and_process(job_queue, processor, progress)

        assert result["collection"] == "docmind_1536"
        assert (await document_repository.get(document.id)).profile_id is None

    async def test_invalid_payload_is_unrecoverable(self, processor, progress):
        job = JobRecord(
            id="broken", name="index", data={"kind": "index"}, opts=JobOptions(), state=JobState.ACTIVE, created_at=0,
        )

        with pytest.raises(UnrecoverableJobError, match="Invalid document job payload"):
            await processor.process(job, progress)


class TestDeleteDocument:
    """Test cases for the delete workflow."""

    async def test_delete_removes_vectors_rows_and_document(
        self, document, document_queue, job_queue, processor, progress, document_repository, rag_client,
    ):
        await document_queue.enqueue_index(document.id, USER)
        await claim_and_process(job_queue, processor, progress)
        assert rag_client.points(document.id)

        await document_queue.enqueue_delete(document.id, USER)
        result = await claim_and_process(job_queue, processor, progress)

        assert result == {"document_id": document.id, "deleted": True}
        assert rag_client.points(document.id) == []
        assert await document_repository.get(document.id) is None
        assert await document_repository.count_chunks(document.id) == 0

    async def test_delete_of_unindexed_document(
        self, document, document_queue, job_queue, processor, progress, document_repository, rag_client,
    ):
        await document_queue.enqueue_delete(document.id, USER)

        result = await claim_and_process(job_queue, processor, progress)

        assert result["deleted"] is True
        assert rag_client.collections == {}
        assert await document_repository.get(document.id) is None

    async def test_delete_of_missing_document(self, document_queue, job_queue, processor, progress):
        await document_queue.enqueue_delete("gone", USER)

        result = await claim_and_process(job_queue, processor, progress)

        assert result == {"document_id": "gone", "deleted": False}

    async def test_delete_leaves_other_documents(
        self, document, document_repository, document_queue, job_queue, processor, progress, rag_client,
    ):
        other = await document_repository.create(USER, "Other", "Travel expenses are reimbursed monthly.")
        for doc_id in (document.id, other.id):
            await document_queue.enqueue_index(doc_id, USER)
            await claim_and_process(job_queue, processor, progress)

        await document_queue.enqueue_delete(document.id, USER)
        await claim_and_process(job_queue, processor, progress)

        assert rag_client.points(document.id) == []
        assert len(rag_client.points(other.id)) == 1


class TestReindexDocument:
    """Test cases for the reindex workflow."""

    async def test_reindex_missing_document_is_unrecoverable(self, document_queue, job_queue, processor, progress):
        await document_queue.enqueue_reindex("gone", USER)

        with pytest.raises(UnrecoverableJobError):
            await claim_and_process(job_queue, processor, progress)

    async def test_reindex_with_new_profile_moves_vectors(
        self, document, document_queue, job_queue, processor, progress, document_repository, profile_repository, rag_client,
    ):
        await document_queue.enqueue_index(document.id, USER)
        await claim_and_process(job_queue, processor, progress)
        assert rag_client.collections["docmind_384"]["points"]

        other = await profile_repository.create(
            USER, "Large", ProfileSettings(embedding_model="nomic-embed-text", chunk_size=300, chunk_overlap=30),
        )
        progress.values.clear()
        await document_queue.enqueue_reindex(document.id, USER, profile_id=other.id)
        result = await claim_and_process(job_queue, processor, progress)

        stored = await document_repository.get(document.id)
        assert result["collection"] == "docmind_768"
        assert stored.profile_id == other.id
        assert stored.status == DocumentStatus.INDEXED.value
        assert rag_client.collections["docmind_384"]["points"] == {}
        assert len(rag_client.collections["docmind_768"]["points"]) == stored.chunk_count
        assert await document_repository.count_chunks(document.id) == stored.chunk_count
        assert progress.values[0] == 20
        assert progress.values[-1] == 100

    async def test_reindex_replaces_chunks(
        self, document, document_queue, job_queue, processor, progress, document_repository, rag_client,
    ):
        await document_queue.enqueue_index(document.id, USER)
        await claim_and_process(job_queue, processor, progress)
        before = {row.id for row in await document_repository.list_chunks(document.id)}

        await document_queue.enqueue_reindex(document.id, USER)
        await claim_and_process(job_queue, processor, progress)
        after = {row.id for row in await document_repository.list_chunks(document.id)}

        assert before.isdisjoint(after)
        assert {point.id for point in rag_client.points(document.id)} == after

    async def test_failed_cleanup_marks_document_failed(
        self, document, document_queue, job_queue, processor, progress, document_repository, rag_client, monkeypatch,
    ):
        await document_queue.enqueue_index(document.id, USER)
        await claim_and_process(job_queue, processor, progress)

        async def database_unavailable(document_id):
            raise ConnectionError("database unavailable")

        monkeypatch.setattr(document_repository, "delete_chunks", database_unavailable)
        await document_queue.enqueue_reindex(document.id, USER)
        job = await job_queue.claim(60_000)

        with pytest.raises(ConnectionError):
            await processor.process(job, progress)

        stored = await document_repository.get(document.id)
        assert stored.status == DocumentStatus.FAILED.value
        assert stored.chunk_count == 0
        assert rag_client.points(document.id) == []

        monkeypatch.undo()
        await processor.process(job, progress)

        stored = await document_repository.get(document.id)
        rows = await document_repository.list_chunks(document.id)
        assert stored.status == DocumentStatus.INDEXED.value
        assert {row.id for row in rows} == {point.id for point in rag_client.points(document.id)}
        assert stored.chunk_count == len(rows)
