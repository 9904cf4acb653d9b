"""RAG profile settings: chunking, embedding, retrieval, generation and persona."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from shared.clients.llm.models.Chat import GenerationSettings, ReasoningEffort
from shared.clients.llm.models.EmbeddingModel import DEFAULT_EMBEDDING_MODEL


DEFAULT_SEPARATORS: list[str] = ["\n\n", "\n", ". ", "! ", "? ", "; ", ", ", " ", ""]
DEFAULT_CHAT_MODEL = "google/gemini-2.5-flash-lite"

Tone = Literal["formal", "friendly", "professional", "casual"]
ResponseLength = Literal["concise", "balanced", "detailed"]


class ProfileSettings(BaseModel):
    """Every tunable of a profile. Defaults apply when no profile exists."""

    # chunking
    chunk_size: int = Field(default=500, ge=100, le=8000)
    chunk_overlap: int = Field(default=50, ge=0, le=2000)
    separators: list[str] = Field(default_factory=lambda: list(DEFAULT_SEPARATORS))
    add_contextual_prefix: bool = True

    # embedding
    embedding_model: str = DEFAULT_EMBEDDING_MODEL

    # retrieval
    retrieval_strategy: Literal["similarity", "mmr"] = "similarity"
    score_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    top_k: int = Field(default=5, ge=1, le=50)

    # generation
    model: str = DEFAULT_CHAT_MODEL
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    top_p: float = Field(default=1.0, ge=0.0, le=1.0)
    max_tokens: int = Field(default=2048, gt=0, le=32000)
    reasoning_effort: ReasoningEffort = "none"

    # persona
    assistant_name: str = "Assistant"
    company_name: str | None = None
    domain: str | None = None
    tone: Tone = "friendly"
    response_length: ResponseLength = "balanced"
    language: str = "English"
    enable_citations: bool = True
    system_prompt: str | None = None
    custom_instructions: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_overlap(self) -> "ProfileSettings":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        return self

    def generation_settings(self) -> GenerationSettings:
        return GenerationSettings(
            temperature=self.temperature,
            top_p=self.top_p,
            max_tokens=self.max_tokens,
            reasoning_effort=self.reasoning_effort,
        )


class ProfileCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str | None = None
    is_default: bool = False
    settings: ProfileSettings = Field(default_factory=ProfileSettings)


class ProfileUpdate(BaseModel):
    """Partial update; settings are merged key by key into the stored ones."""

    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = None
    is_default: bool | None = None
    settings: dict | None = None


class ProfileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    name: str
    description: str | None
    is_default: bool
    settings: ProfileSettings
    created_at: datetime
    updated_at: datetime
