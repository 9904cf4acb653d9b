import json

from pydantic import ValidationError

from services.document_pipeline.Chunker import count_tokens
from services.document_pipeline.DocumentQueue import DocumentQueue
from shared.clients.extract.FileExtractor import FileExtractor, resolve_mime_type
from shared.db.models import Document
from shared.helper.HelperConfig import HelperConfig
from shared.models.document import (
    ChunkOptions,
    DocumentJobResponse,
    DocumentListResponse,
    DocumentResponse,
    DocumentStatus,
    DocumentUploadResponse,
    ReindexRequest,
    TokenCountResponse,
)
from shared.models.errors import BadRequestError, NotFoundError
from shared.models.jobs import JobStatusResponse
from shared.repositories.DocumentRepository import DocumentRepository
from shared.repositories.ProfileRepository import ProfileRepository


class DocumentService:
    """API side of the document lifecycle.

    Uploads are validated and extracted synchronously; chunking, embedding
    and storage happen in the document worker.
    """

    def __init__(
        self,
        helper_config: HelperConfig,
        documents: DocumentRepository,
        profiles: ProfileRepository,
        queue: DocumentQueue,
        extractor: FileExtractor,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._documents = documents
        self._profiles = profiles
        self._queue = queue
        self._extractor = extractor

    ##########################################
    ############### HELPERS ##################
    ##########################################

    @staticmethod
    def parse_metadata(raw: str | None) -> dict:
        """Parse the metadata form field, which must be a JSON object.

        Raises:
            BadRequestError: If the value is not valid JSON or not an object.
        """
        if raw is None or not raw.strip():
            return {}
        try:
            metadata = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise BadRequestError("Metadata must be valid JSON", details={"error": str(exc)}) from exc
        if not isinstance(metadata, dict):
            raise BadRequestError("Metadata must be a JSON object")
        return metadata

    @staticmethod
    def parse_chunk_options(chunk_size: int | None, chunk_overlap: int | None) -> ChunkOptions | None:
        if chunk_size is None and chunk_overlap is None:
            return None
        try:
            return ChunkOptions(chunk_size=chunk_size, chunk_overlap=chunk_overlap)
        except ValidationError as exc:
            raise BadRequestError("Invalid chunk options", details={"errors": exc.errors(include_url=False, include_context=False)}) from exc

    async def _check_profile(self, profile_id: str | None, user_id: str) -> None:
        if profile_id is not None and await self._profiles.get(profile_id, user_id=user_id) is None:
            raise NotFoundError("Profile", profile_id)

    async def get_document(self, document_id: str, user_id: str) -> Document:
        document = await self._documents.get(document_id, user_id=user_id)
        if document is None:
            raise NotFoundError("Document", document_id)
        return document

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    async def upload(
        self,
        user_id: str,
        data: bytes,
        filename: str | None,
        content_type: str | None,
        title: str | None = None,
        source: str | None = None,
        profile_id: str | None = None,
        metadata: str | None = None,
        chunk_options: ChunkOptions | None = None,
    ) -> DocumentUploadResponse:
        """Validate an upload, store it as ``pending`` and queue it for indexing.

        Args:
            user_id (str): Owner of the new document.
            data (bytes): Raw file content.
            filename (str | None): Original file name; default title and MIME fallback.
            content_type (str | None): Declared MIME type of the upload.
            title (str | None): Optional title.
            source (str | None): Optional origin, stored with every vector point.
            profile_id (str | None): Profile to index with; the user's default when unset.
            metadata (str | None): JSON object stored with the document.
            chunk_options (ChunkOptions | None): Per-upload chunking overrides.

        Returns:
            DocumentUploadResponse: Document id and index job id.

        Raises:
            BadRequestError: On invalid type, size, content or metadata.
            NotFoundError: If profile_id does not exist for the user.
        """
        parsed_metadata = self.parse_metadata(metadata)
        mime_type = resolve_mime_type(content_type, filename)
        content = await self._extractor.extract_text(data, mime_type)
        await self._check_profile(profile_id, user_id)

        document = await self._documents.create(
            user_id=user_id,
            title=(title or "").strip() or filename or "Untitled",
            content=content,
            profile_id=profile_id,
            source=source,
            metadata=parsed_metadata,
        )
        try:
            job = await self._queue.enqueue_index(document.id, user_id, profile_id, chunk_options)
        except Exception:
            await self._documents.update_status(document.id, DocumentStatus.FAILED)
            raise

        # the worker may already have finished, so only move on from pending
        await self._documents.update_status(document.id, DocumentStatus.PROCESSING, expected=DocumentStatus.PENDING)
        self.logging.info(
            "Uploaded document %s (%s, %d chars) for user %s, job %s",
            document.id, mime_type, len(content), user_id, job.id,
        )
        return DocumentUploadResponse(document_id=document.id, job_id=job.id, status=DocumentStatus.PROCESSING)

    async def list_documents(
        self,
        user_id: str,
        status: DocumentStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> DocumentListResponse:
        documents = await self._documents.list_documents(user_id, status=status, limit=limit, offset=offset)
        total = await self._documents.count(user_id, status=status)
        return DocumentListResponse(
            documents=[DocumentResponse.model_validate(document) for document in documents],
            total=total,
            limit=limit,
            offset=offset,
        )

    async def delete_document(self, document_id: str, user_id: str) -> DocumentJobResponse:
        """Queue removal of a document's vectors and rows; unstarted index jobs are dropped first."""
        document = await self.get_document(document_id, user_id)
        await self._queue.cancel_pending_index(document.id)
        job = await self._queue.enqueue_delete(document.id, user_id)
        return DocumentJobResponse(document_id=document.id, job_id=job.id, message="Document queued for deletion")

    async def reindex_document(self, document_id: str, user_id: str, body: ReindexRequest) -> DocumentJobResponse:
        """
        Raises:
            NotFoundError: If the document or the requested profile does not exist for the user.
        """
        document = await self.get_document(document_id, user_id)
        await self._check_profile(body.profile_id, user_id)
        job = await self._queue.enqueue_reindex(document.id, user_id, body.profile_id, body.chunk_options)
        return DocumentJobResponse(document_id=document.id, job_id=job.id, message="Document queued for reindexing")

    async def count_tokens(self, data: bytes, filename: str | None, content_type: str | None) -> TokenCountResponse:
        """Extract an upload without storing it and report its size in characters and tokens."""
        mime_type = resolve_mime_type(content_type, filename)
        content = await self._extractor.extract_text(data, mime_type)
        return TokenCountResponse(
            filename=filename,
            mime_type=mime_type,
            characters=len(content),
            tokens=count_tokens(content),
        )

    ##########################################
    ################# JOBS ###################
    ##########################################

    async def get_job_status(self, job_id: str, user_id: str) -> JobStatusResponse:
        status = await self._queue.get_job_status(job_id)
        if status is None or status.data.get("user_id") != user_id:
            raise NotFoundError("Job", job_id)
        return status

    async def get_pending_jobs(self, user_id: str) -> list[JobStatusResponse]:
        return await self._queue.get_pending_jobs(user_id=user_id)
