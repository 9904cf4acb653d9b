from typing import Literal

from pydantic import BaseModel, Field, model_validator

from shared.clients.llm.models.Chat import ChatMessage


class SearchOptions(BaseModel):
    """Retrieval knobs. Unset values fall back to the profile settings."""

    profile_id: str | None = None
    limit: int | None = Field(default=None, ge=1, le=50)
    score_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    document_id: str | None = None
    source: str | None = None


class SearchRequest(SearchOptions):
    query: str = Field(min_length=1, max_length=4000)

    def options(self) -> SearchOptions:
        return SearchOptions.model_validate(self.model_dump(exclude={"query"}))


class SearchResultItem(BaseModel):
    document_id: str
    chunk_id: str
    content: str
    score: float


class SearchResponse(BaseModel):
    query: str
    results: list[SearchResultItem]
    total: int


class QueryRequest(SearchRequest):
    """A RAG chat turn.

    History is either supplied by the caller (``messages``) or managed by the
    server (``conversation_id``, or a fresh conversation when neither is set).
    """

    messages: list[ChatMessage] | None = None
    conversation_id: str | None = None

    @model_validator(mode="after")
    def _check_history_mode(self) -> "QueryRequest":
        if self.messages is not None and self.conversation_id is not None:
            raise ValueError("Provide either 'messages' or 'conversation_id', not both")
        return self

    def options(self) -> SearchOptions:
        return SearchOptions.model_validate(self.model_dump(exclude={"query", "messages", "conversation_id"}))


class QueryResult(BaseModel):
    answer: str
    sources: list[SearchResultItem]


class QueryResponse(QueryResult):
    conversation_id: str | None = None


class StreamEvent(BaseModel):
    """One server-sent event of a streamed RAG answer.

    Order: ``conversation_id`` (server-managed history only), ``sources``,
    any number of ``token`` events, then ``done``. A failure after the
    stream has started ends it with a single ``error`` event instead.
    """

    type: Literal["conversation_id", "sources", "token", "done", "error"]
    conversation_id: str | None = None
    sources: list[SearchResultItem] | None = None
    content: str | None = None
    error: str | None = None

    def to_sse(self) -> str:
        return f"data: {self.model_dump_json(exclude_none=True)}\n\n"
