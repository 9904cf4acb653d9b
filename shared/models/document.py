from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


class DocumentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    INDEXED = "indexed"
    FAILED = "failed"


class ChunkOptions(BaseModel):
    """Per-job overrides of the profile's chunking settings."""

    chunk_size: int | None = Field(default=None, ge=50, le=8000)
    chunk_overlap: int | None = Field(default=None, ge=0, le=2000)
    separators: list[str] | None = None

    @model_validator(mode="after")
    def _check_overlap(self) -> "ChunkOptions":
        if self.chunk_size is not None and self.chunk_overlap is not None and self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        return self


class DocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    profile_id: str | None
    title: str
    source: str | None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("metadata_", "metadata"))
    status: DocumentStatus
    chunk_count: int
    created_at: datetime
    updated_at: datetime


class DocumentDetailResponse(DocumentResponse):
    content: str


class DocumentListResponse(BaseModel):
    documents: list[DocumentResponse]
    total: int
    limit: int
    offset: int


class DocumentUploadResponse(BaseModel):
    document_id: str
    job_id: str
    status: DocumentStatus
    message: str = "Document uploaded and queued for indexing"


class DocumentJobResponse(BaseModel):
    document_id: str
    job_id: str
    message: str


class ReindexRequest(BaseModel):
    profile_id: str | None = None
    chunk_options: ChunkOptions | None = None


class TokenCountResponse(BaseModel):
    filename: str | None
    mime_type: str
    characters: int
    tokens: int
