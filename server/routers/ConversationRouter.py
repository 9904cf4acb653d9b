from fastapi import APIRouter, Depends, Query, Request, Response

from server.dependencies.auth import get_current_user
from shared.clients.auth.models.Session import SessionUser
from shared.models.conversation import (
    ConversationDetailResponse,
    ConversationResponse,
    ConversationUpdate,
    MessageResponse,
)
from shared.models.errors import NotFoundError

router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.get("")
async def list_conversations(
    request: Request,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user: SessionUser = Depends(get_current_user),
) -> list[ConversationResponse]:
    """The user's conversations, most recently active first."""
    conversations = await request.app.state.conversation_repository.list_conversations(user.id, limit=limit, offset=offset)
    return [ConversationResponse.model_validate(conversation) for conversation in conversations]


@router.get("/{conversation_id}")
async def get_conversation(
    request: Request,
    conversation_id: str,
    limit: int = Query(default=100, ge=1, le=500),
    user: SessionUser = Depends(get_current_user),
) -> ConversationDetailResponse:
    """A conversation with its most recent messages, oldest first.

    Args:
        request (Request): FastAPI request (provides app.state.conversation_repository).
        conversation_id (str): The conversation id.
        limit (int): Maximum number of messages to return.
        user (SessionUser): The authenticated user.

    Returns:
        ConversationDetailResponse: The conversation and its messages.
    """
    repository = request.app.state.conversation_repository
    conversation = await repository.get(conversation_id, user_id=user.id)
    if conversation is None:
        raise NotFoundError("Conversation", conversation_id)
    messages = await repository.list_messages(conversation.id, limit=limit)
    return ConversationDetailResponse(
        **ConversationResponse.model_validate(conversation).model_dump(),
        messages=[MessageResponse.model_validate(message) for message in messages],
    )


@router.patch("/{conversation_id}")
async def update_conversation(
    request: Request,
    conversation_id: str,
    body: ConversationUpdate,
    user: SessionUser = Depends(get_current_user),
) -> ConversationResponse:
    """Rename a conversation or switch its profile."""
    if body.profile_id is not None and await request.app.state.profile_repository.get(body.profile_id, user_id=user.id) is None:
        raise NotFoundError("Profile", body.profile_id)
    conversation = await request.app.state.conversation_repository.update(
        conversation_id, user.id, title=body.title, profile_id=body.profile_id,
    )
    if conversation is None:
        raise NotFoundError("Conversation", conversation_id)
    return ConversationResponse.model_validate(conversation)


@router.delete("/{conversation_id}", status_code=204)
async def delete_conversation(
    request: Request,
    conversation_id: str,
    user: SessionUser = Depends(get_current_user),
) -> Response:
    if not await request.app.state.conversation_repository.delete(conversation_id, user.id):
        raise NotFoundError("Conversation", conversation_id)
    return Response(status_code=204)
