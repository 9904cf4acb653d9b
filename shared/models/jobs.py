"""Document job payloads.

Payloads form a tagged union on ``kind``, so a worker can parse any queued
document job with ``DOCUMENT_JOB_ADAPTER`` and dispatch exhaustively.
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from shared.models.document import ChunkOptions


class IndexDocumentJob(BaseModel):
    kind: Literal["index"] = "index"
    document_id: str
    user_id: str
    profile_id: str | None = None
    chunk_options: ChunkOptions | None = None


class DeleteDocumentJob(BaseModel):
    kind: Literal["delete"] = "delete"
    document_id: str
    user_id: str


class ReindexDocumentJob(BaseModel):
    kind: Literal["reindex"] = "reindex"
    document_id: str
    user_id: str
    profile_id: str | None = None
    chunk_options: ChunkOptions | None = None


DocumentJob = Annotated[
    Union[IndexDocumentJob, DeleteDocumentJob, ReindexDocumentJob],
    Field(discriminator="kind"),
]

DOCUMENT_JOB_ADAPTER: TypeAdapter[DocumentJob] = TypeAdapter(DocumentJob)


class IndexDocumentJobResult(BaseModel):
    document_id: str
    chunk_count: int
    collection: str
    processing_time_ms: int


class DeleteDocumentJobResult(BaseModel):
    document_id: str
    deleted: bool


class JobStatusResponse(BaseModel):
    job_id: str
    name: str
    state: str
    progress: int
    attempts_made: int
    data: dict
    return_value: dict | None = None
    failed_reason: str | None = None
    created_at: int
    processed_on: int | None = None
    finished_on: int | None = None
