from typing import Any

from sqlalchemy import delete, func, select, update

from shared.db.database import Database
from shared.db.models import Document, DocumentChunk, utcnow
from shared.models.document import DocumentStatus


class DocumentRepository:
    """Persistence for documents and their chunk rows.

    Every method runs in its own transaction; the index pipeline relies on
    that to order its writes (chunk rows before vector points).
    """

    def __init__(self, database: Database):
        self._db = database
        self.logging = database.logging

    ##########################################
    ############### DOCUMENTS ################
    ##########################################

    async def create(
        self,
        user_id: str,
        title: str,
        content: str,
        profile_id: str | None = None,
        source: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Document:
        document = Document(
            user_id=user_id,
            profile_id=profile_id,
            title=title,
            content=content,
            source=source,
            metadata_=metadata or {},
            status=DocumentStatus.PENDING.value,
            chunk_count=0,
        )
        async with self._db.session() as session:
            session.add(document)
        self.logging.debug("Created document id=%s for user=%s", document.id, user_id)
        return document

    async def get(self, document_id: str, user_id: str | None = None) -> Document | None:
        """Load a document, optionally scoped to its owner."""
        stmt = select(Document).where(Document.id == document_id)
        if user_id is not None:
            stmt = stmt.where(Document.user_id == user_id)
        async with self._db.session() as session:
            return (await session.execute(stmt)).scalar_one_or_none()

    async def list_documents(
        self,
        user_id: str,
        status: DocumentStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Document]:
        stmt = select(Document).where(Document.user_id == user_id)
        if status is not None:
            stmt = stmt.where(Document.status == status.value)
        stmt = stmt.order_by(Document.created_at.desc()).limit(limit).offset(offset)
        async with self._db.session() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def count(self, user_id: str, status: DocumentStatus | None = None) -> int:
        stmt = select(func.count()).select_from(Document).where(Document.user_id == user_id)
        if status is not None:
            stmt = stmt.where(Document.status == status.value)
        async with self._db.session() as session:
            return (await session.execute(stmt)).scalar_one()

    async def update_status(
        self,
        document_id: str,
        status: DocumentStatus,
        chunk_count: int | None = None,
        expected: DocumentStatus | None = None,
    ) -> bool:
        """Set the status (and optionally the chunk count) of a document.

        Args:
            expected (DocumentStatus | None): Only update if the document currently has this status.

        Returns:
            bool: False if the document no longer exists or was not in the expected status.
        """
        values: dict[str, Any] = {"status": status.value, "updated_at": utcnow()}
        if chunk_count is not None:
            values["chunk_count"] = chunk_count
        async with self._db.session() as session:
            stmt = update(Document).where(Document.id == document_id)
            if expected is not None:
                stmt = stmt.where(Document.status == expected.value)
            result = await session.execute(stmt.values(**values))
            return result.rowcount > 0

    async def set_profile(self, document_id: str, profile_id: str | None) -> bool:
        async with self._db.session() as session:
            result = await session.execute(
                update(Document)
                .where(Document.id == document_id)
                .values(profile_id=profile_id, updated_at=utcnow())
            )
            return result.rowcount > 0

    async def delete_document(self, document_id: str) -> bool:
        """Delete a document together with its chunk rows.

        Returns:
            bool: False if the document did not exist.
        """
        async with self._db.session() as session:
            await session.execute(delete(DocumentChunk).where(DocumentChunk.document_id == document_id))
            result = await session.execute(delete(Document).where(Document.id == document_id))
            return result.rowcount > 0

    ##########################################
    ################ CHUNKS ##################
    ##########################################

    async def insert_chunks(self, chunks: list[DocumentChunk]) -> None:
        if not chunks:
            return
        async with self._db.session() as session:
            session.add_all(chunks)

    async def delete_chunks(self, document_id: str) -> int:
        async with self._db.session() as session:
            result = await session.execute(delete(DocumentChunk).where(DocumentChunk.document_id == document_id))
            return result.rowcount

    async def count_chunks(self, document_id: str) -> int:
        stmt = select(func.count()).select_from(DocumentChunk).where(DocumentChunk.document_id == document_id)
        async with self._db.session() as session:
            return (await session.execute(stmt)).scalar_one()

    async def list_chunks(self, document_id: str) -> list[DocumentChunk]:
        stmt = (
            select(DocumentChunk)
            .where(DocumentChunk.document_id == document_id)
            .order_by(DocumentChunk.chunk_index)
        )
        async with self._db.session() as session:
            return list((await session.execute(stmt)).scalars().all())
