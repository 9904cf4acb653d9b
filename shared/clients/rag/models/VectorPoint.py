"""Vector point models exchanged with a RAG backend."""

from typing import Any

from pydantic import BaseModel, Field


class VectorPointPayload(BaseModel):
    """Metadata stored alongside each chunk vector.

    Attributes:
        document_id:  Id of the owning document row.
        chunk_id:     Id of the chunk row; equal to the point id.
        content:      Raw chunk text (without any contextual prefix).
        chunk_index:  Zero-based position of the chunk within the document.
        source:       Optional origin of the document (file name, URL, ...).
        metadata:     Free-form metadata copied from the document.
    """

    document_id: str
    chunk_id: str
    content: str
    chunk_index: int
    source: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class VectorPoint(BaseModel):
    """A single point as sent to the RAG backend on upsert."""

    id: str
    vector: list[float]
    payload: VectorPointPayload


class SearchHit(BaseModel):
    """A single scored point as returned by a similarity search."""

    id: str
    score: float
    payload: dict[str, Any] = Field(default_factory=dict)
