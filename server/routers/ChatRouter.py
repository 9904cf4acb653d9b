from contextlib import aclosing

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from server.dependencies.auth import get_current_user
from shared.clients.auth.models.Session import SessionUser
from shared.models.search import QueryRequest, QueryResponse, SearchRequest, SearchResponse, StreamEvent

router = APIRouter(prefix="/chat", tags=["chat"])


@router.post("/search")
async def search_chunks(
    request: Request,
    body: SearchRequest,
    user: SessionUser = Depends(get_current_user),
) -> SearchResponse:
    """Semantic search over the indexed documents.

    Args:
        request (Request): FastAPI request (provides app.state.query_service).
        body (SearchRequest): Query text, optional profile, limit, threshold and filters.
        user (SessionUser): The authenticated user.

    Returns:
        SearchResponse: Matching chunks with their similarity scores.
    """
    results = await request.app.state.query_service.search(body.query, body.options(), user.id)
    return SearchResponse(query=body.query, results=results, total=len(results))


@router.post("/query")
async def query(
    request: Request,
    body: QueryRequest,
    user: SessionUser = Depends(get_current_user),
) -> QueryResponse:
    """Answer a question from the indexed documents.

    Pass ``messages`` to supply the history yourself, or ``conversation_id``
    (or nothing, to start a new conversation) to let the server keep it.
    """
    chat_history_service = request.app.state.chat_history_service
    await request.app.state.profile_resolver.resolve(user.id, body.profile_id)
    history = await chat_history_service.resolve(body, user.id)
    options = body.options()
    options.profile_id = history.profile_id

    result = await request.app.state.query_service.query_rag(body.query, options, user.id, history.messages)
    if history.conversation_id is not None:
        await chat_history_service.store_exchange(history.conversation_id, body.query, result.answer)
    return QueryResponse(answer=result.answer, sources=result.sources, conversation_id=history.conversation_id)


@router.post("/query/stream")
async def query_stream(
    request: Request,
    body: QueryRequest,
    user: SessionUser = Depends(get_current_user),
) -> StreamingResponse:
    """Same as /chat/query, streamed as server-sent events.

    Events: ``conversation_id`` (server-managed history only), ``sources``,
    ``token`` per generated fragment, ``done``.
    """
    chat_history_service = request.app.state.chat_history_service
    # fail with a plain 404 before a conversation is created or the stream starts
    await request.app.state.profile_resolver.resolve(user.id, body.profile_id)
    history = await chat_history_service.resolve(body, user.id)
    options = body.options()
    options.profile_id = history.profile_id

    events = chat_history_service.record_stream(
        request.app.state.query_service.query_rag_stream(body.query, options, user.id, history.messages),
        history,
        body.query,
    )

    async def event_stream():
        async with aclosing(events):
            try:
                async for event in events:
                    yield event.to_sse()
            except Exception as exc:
                request.app.state.logging.error("Streaming query failed: %s", exc)
                yield StreamEvent(type="error", error=str(exc)).to_sse()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
