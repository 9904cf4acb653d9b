"""Known embedding models and their output dimensions.

The dimension decides which vector collection a document lands in, so a model
that is not listed here cannot be used for indexing or search.
"""

from pydantic import BaseModel


DEFAULT_EMBEDDING_MODEL = "openai/text-embedding-3-small"


class EmbeddingModel(BaseModel):
    id: str
    name: str
    dimensions: int
    provider: str


EMBEDDING_MODELS: dict[str, EmbeddingModel] = {
    model.id: model
    for model in [
        EmbeddingModel(id="openai/text-embedding-3-small", name="Text Embedding 3 Small", dimensions=1536, provider="openai"),
        EmbeddingModel(id="openai/text-embedding-3-large", name="Text Embedding 3 Large", dimensions=3072, provider="openai"),
        EmbeddingModel(id="openai/text-embedding-ada-002", name="Text Embedding Ada 002", dimensions=1536, provider="openai"),
        EmbeddingModel(id="google/gemini-embedding-001", name="Gemini Embedding 001", dimensions=3072, provider="google"),
        EmbeddingModel(id="mistralai/mistral-embed-2312", name="Mistral Embed", dimensions=1024, provider="mistralai"),
        EmbeddingModel(id="qwen/qwen3-embedding-8b", name="Qwen3 Embedding 8B", dimensions=4096, provider="qwen"),
        EmbeddingModel(id="nomic-embed-text", name="Nomic Embed Text", dimensions=768, provider="ollama"),
        EmbeddingModel(id="mxbai-embed-large", name="mxbai Embed Large", dimensions=1024, provider="ollama"),
        EmbeddingModel(id="all-minilm", name="all-MiniLM", dimensions=384, provider="ollama"),
    ]
}


def find_embedding_model(model_id: str) -> EmbeddingModel | None:
    """Look up an embedding model by id. Returns None for unknown ids."""
    return EMBEDDING_MODELS.get(model_id)
