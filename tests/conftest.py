"""
Pytest configuration for the docmind test suite.

Provides:
- in-memory SQLite database (aiosqlite) and fakeredis queue backend
- in-memory fakes for the vector store, LLM provider and auth server
- wired repositories, resolvers, queue and document job processor
"""
import asyncio
import logging
import os

os.environ.setdefault("LOG_FILE_ENABLED", "false")

import fakeredis
import httpx
import pytest

from services.document_pipeline.CollectionResolver import CollectionCache, CollectionResolver
from services.document_pipeline.DocumentJobProcessor import DocumentJobProcessor
from services.document_pipeline.DocumentQueue import DOCUMENT_QUEUE_NAME, DocumentQueue
from services.document_pipeline.EmbeddingBatcher import EmbeddingBatcher
from services.document_pipeline.ProfileResolver import ProfileResolver
from shared.clients.auth.models.Session import SessionUser
from shared.clients.llm.models.EmbeddingModel import find_embedding_model
from shared.clients.rag.models.VectorPoint import SearchHit, VectorPoint
from shared.db.database import Database
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import ColorLogger
from shared.models.errors import ClientResponseError
from shared.queue.JobQueue import JobQueue
from shared.repositories.ConversationRepository import ConversationRepository
from shared.repositories.DocumentRepository import DocumentRepository
from shared.repositories.ProfileRepository import ProfileRepository


##########################################
################# FAKES ##################
##########################################

class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeRAGClient:
    """In-memory vector store with the request methods of RAGClientInterface."""

    def __init__(self, prefix: str = "docmind"):
        self.prefix = prefix
        self.collections: dict[str, dict] = {}
        self.created: list[str] = []
        self.searches: list[dict] = []
        self.score = 0.9
        self.fail_upsert = False
        self.fail_delete = False
        self.before_upsert = None

    def get_collection_prefix(self) -> str:
        return self.prefix

    def get_engine_name(self) -> str:
        return "fake"

    def get_match_filter(self, conditions: dict) -> dict:
        return {"must": [{"key": key, "match": {"value": value}} for key, value in conditions.items()]}

    @staticmethod
    def _matches(payload: dict, filter: dict | None) -> bool:
        if not filter:
            return True
        return all(payload.get(cond["key"]) == cond["match"]["value"] for cond in filter.get("must", []))

    async def do_healthcheck(self) -> httpx.Response:
        return httpx.Response(200)

    async def do_existence_check(self, collection: str) -> bool:
        return collection in self.collections

    async def do_create_collection(self, collection, vector_size, distance="Cosine", keyword_fields=None, text_fields=None):
        # let concurrent callers interleave like a real HTTP round-trip would
        await asyncio.sleep(0)
        self.created.append(collection)
        self.collections[collection] = {"size": vector_size, "distance": distance, "points": {}}

    async def do_upsert_points(self, collection: str, points: list[VectorPoint]) -> None:
        if self.before_upsert is not None:
            await self.before_upsert()
        if self.fail_upsert:
            raise ClientResponseError(f"/collections/{collection}/points", 503, "unavailable")
        store = self.collections[collection]
        for point in points:
            assert len(point.vector) == store["size"]
            store["points"][point.id] = point

    async def do_delete_points_by_filter(self, collection: str, filter: dict) -> None:
        if self.fail_delete:
            raise ClientResponseError(f"/collections/{collection}/points/delete", 503, "unavailable")
        points = self.collections[collection]["points"]
        for point_id in [pid for pid, point in points.items() if self._matches(point.payload.model_dump(), filter)]:
            del points[point_id]

    async def do_search(self, collection, vector, limit, score_threshold=None, filter=None) -> list[SearchHit]:
        self.searches.append({
            "collection": collection, "limit": limit, "score_threshold": score_threshold, "filter": filter,
        })
        if collection not in self.collections:
            return []
        if score_threshold is not None and self.score < score_threshold:
            return []
        hits = [
            SearchHit(id=point.id, score=self.score, payload=point.payload.model_dump())
            for point in self.collections[collection]["points"].values()
            if self._matches(point.payload.model_dump(), filter)
        ]
        hits.sort(key=lambda hit: hit.payload["chunk_index"])
        return hits[:limit]

    def points(self, document_id: str | None = None) -> list[VectorPoint]:
        found = []
        for store in self.collections.values():
            found.extend(
                point for point in store["points"].values()
                if document_id is None or point.payload.document_id == document_id
            )
        return found


class FakeLLMClient:
    """Deterministic embedding and chat provider."""

    def __init__(self):
        self.embed_calls: list[tuple[str, list[str]]] = []
        self.chat_calls: list[dict] = []
        self.fail_embed_times = 0
        self.answer = "Invoices are due within 30 days."
        self.stream_tokens = ["Invoices", " are", " due", " in 30 days."]
        self.stream_closed = False

    async def do_healthcheck(self) -> httpx.Response:
        return httpx.Response(200)

    async def do_embed(self, model: str, texts) -> list[list[float]]:
        texts = [texts] if isinstance(texts, str) else list(texts)
        self.embed_calls.append((model, texts))
        if self.fail_embed_times > 0:
            self.fail_embed_times -= 1
            raise ClientResponseError("/embeddings", 503, "provider unavailable")
        dimensions = find_embedding_model(model).dimensions
        return [[1.0 + len(text)] + [0.0] * (dimensions - 1) for text in texts]

    async def do_chat(self, model, messages, settings) -> str:
        self.chat_calls.append({"model": model, "messages": messages, "settings": settings, "stream": False})
        return self.answer

    async def do_chat_stream(self, model, messages, settings):
        self.chat_calls.append({"model": model, "messages": messages, "settings": settings, "stream": True})
        try:
            for token in self.stream_tokens:
                yield token
        finally:
            self.stream_closed = True


class FakeAuthClient:
    """Accepts ``Authorization: Bearer token-<user>`` for the users it knows."""

    def __init__(self):
        self.users = {
            "alice": SessionUser(id="alice", email="alice@example.com", name="Alice"),
            "bob": SessionUser(id="bob", email="bob@example.com", name="Bob"),
        }

    async def do_healthcheck(self) -> httpx.Response:
        return httpx.Response(200)

    async def do_get_session(self, headers: dict[str, str]) -> SessionUser | None:
        lowered = {name.lower(): value for name, value in headers.items()}
        token = lowered.get("authorization", "")
        if not token.startswith("Bearer token-"):
            return None
        return self.users.get(token[len("Bearer token-"):])


class ProgressRecorder:
    """Collects the values a processor reports."""

    def __init__(self):
        self.values: list[int] = []

    async def __call__(self, progress: int) -> None:
        self.values.append(progress)


##########################################
############### FIXTURES #################
##########################################

@pytest.fixture
def helper_config():
    return HelperConfig(logger=ColorLogger(logging.getLogger("tests")))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def progress():
    return ProgressRecorder()


@pytest.fixture
async def redis():
    client = fakeredis.aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
async def database(helper_config):
    db = Database(helper_config, url="sqlite+aiosqlite:///:memory:")
    await db.init_db()
    yield db
    await db.close()


@pytest.fixture
def rag_client():
    return FakeRAGClient()


@pytest.fixture
def llm_client():
    return FakeLLMClient()


@pytest.fixture
def auth_client():
    return FakeAuthClient()


@pytest.fixture
def document_repository(database):
    return DocumentRepository(database)


@pytest.fixture
def profile_repository(database):
    return ProfileRepository(database)


@pytest.fixture
def conversation_repository(database):
    return ConversationRepository(database)


@pytest.fixture
def profile_resolver(helper_config, profile_repository):
    return ProfileResolver(helper_config, profile_repository)


@pytest.fixture
def collection_resolver(helper_config, rag_client):
    return CollectionResolver(helper_config, rag_client, CollectionCache())


@pytest.fixture
def job_queue(redis, helper_config, clock):
    return JobQueue(redis, DOCUMENT_QUEUE_NAME, helper_config, prefix="test", clock=clock)


@pytest.fixture
def document_queue(helper_config, job_queue):
    return DocumentQueue(helper_config, job_queue)


@pytest.fixture
def processor(helper_config, document_repository, profile_resolver, collection_resolver, llm_client, rag_client):
    return DocumentJobProcessor(
        helper_config=helper_config,
        documents=document_repository,
        profiles=profile_resolver,
        collections=collection_resolver,
        batcher=EmbeddingBatcher(helper_config, llm_client),
        rag_client=rag_client,
    )
