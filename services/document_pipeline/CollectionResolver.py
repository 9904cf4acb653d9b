import asyncio

from shared.clients.llm.models.EmbeddingModel import DEFAULT_EMBEDDING_MODEL, EmbeddingModel, find_embedding_model
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import BadRequestError


KEYWORD_INDEX_FIELDS = ["document_id", "source"]
TEXT_INDEX_FIELDS = ["content"]
COLLECTION_DISTANCE = "Cosine"


class CollectionCache:
    """Remembers which collections are known to exist.

    One instance is shared by everything in a process that resolves
    collections; tests create their own or call reset().
    """

    def __init__(self) -> None:
        self._known: set[str] = set()
        self.lock = asyncio.Lock()

    def __contains__(self, collection: str) -> bool:
        return collection in self._known

    def add(self, collection: str) -> None:
        self._known.add(collection)

    def reset(self) -> None:
        self._known.clear()


class CollectionResolver:
    """Maps embedding models to vector collections, one collection per dimension."""

    def __init__(self, helper_config: HelperConfig, rag_client: RAGClientInterface, cache: CollectionCache):
        self.logging = helper_config.get_logger()
        self._rag_client = rag_client
        self._cache = cache

    def get_embedding_model(self, model_id: str) -> EmbeddingModel:
        """Raises BadRequestError for models with unknown dimensions."""
        model = find_embedding_model(model_id)
        if model is None:
            raise BadRequestError(f"Unknown embedding model: {model_id}", details={"embedding_model": model_id})
        return model

    def collection_name_for(self, model_id: str) -> str:
        """Collection name for a model without touching the vector store."""
        dimensions = self.get_embedding_model(model_id).dimensions
        return f"{self._rag_client.get_collection_prefix()}_{dimensions}"

    def default_collection_name(self) -> str:
        return self.collection_name_for(DEFAULT_EMBEDDING_MODEL)

    async def resolve(self, model_id: str) -> str:
        """Return the collection for a model, creating it on first use.

        Concurrent first calls for the same dimension create the collection once.
        """
        model = self.get_embedding_model(model_id)
        collection = f"{self._rag_client.get_collection_prefix()}_{model.dimensions}"
        if collection in self._cache:
            return collection

        async with self._cache.lock:
            if collection in self._cache:
                return collection
            if not await self._rag_client.do_existence_check(collection):
                await self._rag_client.do_create_collection(
                    collection,
                    vector_size=model.dimensions,
                    distance=COLLECTION_DISTANCE,
                    keyword_fields=KEYWORD_INDEX_FIELDS,
                    text_fields=TEXT_INDEX_FIELDS,
                )
            self._cache.add(collection)
        return collection

    async def exists(self, collection: str) -> bool:
        if collection in self._cache:
            return True
        return await self._rag_client.do_existence_check(collection)
