from contextlib import aclosing
from dataclasses import dataclass, field
from typing import AsyncIterator

from services.document_pipeline.Chunker import count_tokens
from shared.clients.llm.models.Chat import ChatMessage
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import NotFoundError
from shared.models.search import QueryRequest, StreamEvent
from shared.repositories.ConversationRepository import ConversationRepository


HISTORY_LIMIT = 50
TITLE_MAX_LENGTH = 100


@dataclass
class ChatHistory:
    """Prior turns for a query and, in server-managed mode, the conversation to append to."""

    messages: list[ChatMessage] = field(default_factory=list)
    conversation_id: str | None = None
    profile_id: str | None = None


class ChatHistoryService:
    """Resolves and persists chat history for RAG queries.

    Callers either send their own ``messages`` (nothing is stored) or let the
    server keep the history in a conversation, identified by
    ``conversation_id`` or created on the first turn.
    """

    def __init__(self, helper_config: HelperConfig, conversations: ConversationRepository):
        self.logging = helper_config.get_logger()
        self._conversations = conversations

    async def resolve(self, request: QueryRequest, user_id: str) -> ChatHistory:
        """
        Raises:
            NotFoundError: If conversation_id is given but does not exist for this user.
        """
        if request.messages is not None:
            return ChatHistory(messages=list(request.messages), profile_id=request.profile_id)

        if request.conversation_id is not None:
            conversation = await self._conversations.get(request.conversation_id, user_id=user_id)
            if conversation is None:
                raise NotFoundError("Conversation", request.conversation_id)
            stored = await self._conversations.list_messages(conversation.id, limit=HISTORY_LIMIT)
            return ChatHistory(
                messages=[ChatMessage(role=message.role, content=message.content) for message in stored],
                conversation_id=conversation.id,
                profile_id=request.profile_id or conversation.profile_id,
            )

        conversation = await self._conversations.create(
            user_id=user_id,
            profile_id=request.profile_id,
            title=request.query.strip()[:TITLE_MAX_LENGTH],
        )
        self.logging.info("Started conversation %s for user %s", conversation.id, user_id)
        return ChatHistory(conversation_id=conversation.id, profile_id=request.profile_id)

    async def store_exchange(self, conversation_id: str, query: str, answer: str) -> None:
        await self._conversations.create_messages(conversation_id, [
            ("user", query, count_tokens(query)),
            ("assistant", answer, count_tokens(answer)),
        ])

    async def record_stream(
        self,
        events: AsyncIterator[StreamEvent],
        history: ChatHistory,
        query: str,
    ) -> AsyncIterator[StreamEvent]:
        """Pass a query stream through, storing the exchange before ``done`` is emitted.

        In server-managed mode a ``conversation_id`` event comes first. Only a
        non-empty answer is stored.
        """
        if history.conversation_id is not None:
            yield StreamEvent(type="conversation_id", conversation_id=history.conversation_id)

        answer_parts: list[str] = []
        async with aclosing(events):
            async for event in events:
                if event.type == "token" and event.content:
                    answer_parts.append(event.content)
                elif event.type == "done" and history.conversation_id is not None:
                    answer = "".join(answer_parts)
                    if answer.strip():
                        await self.store_exchange(history.conversation_id, query, answer)
                yield event
