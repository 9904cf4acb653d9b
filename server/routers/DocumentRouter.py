from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile

from server.dependencies.auth import get_current_user
from shared.clients.auth.models.Session import SessionUser
from shared.models.document import (
    DocumentDetailResponse,
    DocumentJobResponse,
    DocumentListResponse,
    DocumentStatus,
    DocumentUploadResponse,
    ReindexRequest,
    TokenCountResponse,
)
from shared.models.jobs import JobStatusResponse

router = APIRouter(prefix="/documents", tags=["documents"])


@router.post("", status_code=202)
async def upload_document(
    request: Request,
    file: UploadFile = File(...),
    title: str | None = Form(default=None),
    source: str | None = Form(default=None),
    profile_id: str | None = Form(default=None),
    metadata: str | None = Form(default=None),
    chunk_size: int | None = Form(default=None),
    chunk_overlap: int | None = Form(default=None),
    user: SessionUser = Depends(get_current_user),
) -> DocumentUploadResponse:
    """Upload a file and queue it for indexing.

    Args:
        request (Request): FastAPI request (provides app.state.document_service).
        file (UploadFile): The document (text, markdown, HTML, PDF, DOCX or XLSX, max 10MB).
        title (str | None): Optional title; defaults to the file name.
        source (str | None): Optional origin, usable as a search filter.
        profile_id (str | None): Profile to index with; the user's default when unset.
        metadata (str | None): JSON object stored with the document.
        chunk_size (int | None): Overrides the profile's chunk size for this upload.
        chunk_overlap (int | None): Overrides the profile's chunk overlap for this upload.
        user (SessionUser): The authenticated user.

    Returns:
        DocumentUploadResponse: Document id and index job id; poll the job for progress.
    """
    document_service = request.app.state.document_service
    chunk_options = document_service.parse_chunk_options(chunk_size, chunk_overlap)
    data = await file.read()
    return await document_service.upload(
        user_id=user.id,
        data=data,
        filename=file.filename,
        content_type=file.content_type,
        title=title,
        source=source,
        profile_id=profile_id,
        metadata=metadata,
        chunk_options=chunk_options,
    )


@router.get("")
async def list_documents(
    request: Request,
    status: DocumentStatus | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user: SessionUser = Depends(get_current_user),
) -> DocumentListResponse:
    """List the user's documents, newest first."""
    return await request.app.state.document_service.list_documents(user.id, status=status, limit=limit, offset=offset)


@router.get("/jobs")
async def list_pending_jobs(
    request: Request,
    user: SessionUser = Depends(get_current_user),
) -> list[JobStatusResponse]:
    """Jobs of the user that are waiting, delayed or running."""
    return await request.app.state.document_service.get_pending_jobs(user.id)


@router.get("/jobs/{job_id}")
async def get_job_status(
    request: Request,
    job_id: str,
    user: SessionUser = Depends(get_current_user),
) -> JobStatusResponse:
    """State, progress and result of a document job.

    Args:
        request (Request): FastAPI request (provides app.state.document_service).
        job_id (str): Job id as returned by upload, delete or reindex.
        user (SessionUser): The authenticated user.

    Returns:
        JobStatusResponse: The job; 404 if unknown, expired or owned by someone else.
    """
    return await request.app.state.document_service.get_job_status(job_id, user.id)


@router.post("/tokens")
async def count_tokens(
    request: Request,
    file: UploadFile = File(...),
    user: SessionUser = Depends(get_current_user),
) -> TokenCountResponse:
    """Extract a file without storing it and report its token count."""
    data = await file.read()
    return await request.app.state.document_service.count_tokens(data, file.filename, file.content_type)


@router.get("/{document_id}")
async def get_document(
    request: Request,
    document_id: str,
    user: SessionUser = Depends(get_current_user),
) -> DocumentDetailResponse:
    document = await request.app.state.document_service.get_document(document_id, user.id)
    return DocumentDetailResponse.model_validate(document)


@router.delete("/{document_id}", status_code=202)
async def delete_document(
    request: Request,
    document_id: str,
    user: SessionUser = Depends(get_current_user),
) -> DocumentJobResponse:
    """Queue deletion of a document together with its chunks and vectors."""
    return await request.app.state.document_service.delete_document(document_id, user.id)


@router.post("/{document_id}/reindex", status_code=202)
async def reindex_document(
    request: Request,
    document_id: str,
    body: ReindexRequest | None = None,
    user: SessionUser = Depends(get_current_user),
) -> DocumentJobResponse:
    """Queue re-chunking and re-embedding of a document, optionally with another profile or chunk options."""
    return await request.app.state.document_service.reindex_document(document_id, user.id, body or ReindexRequest())
