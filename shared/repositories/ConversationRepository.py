from datetime import timedelta
from typing import Any

from sqlalchemy import select, update

from shared.db.database import Database
from shared.db.models import Conversation, Message, utcnow


class ConversationRepository:
    """Persistence for server-managed chat history."""

    def __init__(self, database: Database):
        self._db = database
        self.logging = database.logging

    async def create(
        self,
        user_id: str,
        profile_id: str | None = None,
        title: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Conversation:
        conversation = Conversation(user_id=user_id, profile_id=profile_id, title=title, metadata_=metadata or {})
        async with self._db.session() as session:
            session.add(conversation)
        self.logging.debug("Created conversation id=%s for user=%s", conversation.id, user_id)
        return conversation

    async def get(self, conversation_id: str, user_id: str | None = None) -> Conversation | None:
        stmt = select(Conversation).where(Conversation.id == conversation_id)
        if user_id is not None:
            stmt = stmt.where(Conversation.user_id == user_id)
        async with self._db.session() as session:
            return (await session.execute(stmt)).scalar_one_or_none()

    async def list_conversations(self, user_id: str, limit: int = 50, offset: int = 0) -> list[Conversation]:
        stmt = (
            select(Conversation)
            .where(Conversation.user_id == user_id)
            .order_by(Conversation.updated_at.desc())
            .limit(limit)
            .offset(offset)
        )
        async with self._db.session() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def update(
        self,
        conversation_id: str,
        user_id: str,
        title: str | None = None,
        profile_id: str | None = None,
    ) -> Conversation | None:
        async with self._db.session() as session:
            conversation = (
                await session.execute(
                    select(Conversation).where(Conversation.id == conversation_id, Conversation.user_id == user_id)
                )
            ).scalar_one_or_none()
            if conversation is None:
                return None
            if title is not None:
                conversation.title = title
            if profile_id is not None:
                conversation.profile_id = profile_id
            conversation.updated_at = utcnow()
        return conversation

    async def delete(self, conversation_id: str, user_id: str) -> bool:
        async with self._db.session() as session:
            conversation = (
                await session.execute(
                    select(Conversation).where(Conversation.id == conversation_id, Conversation.user_id == user_id)
                )
            ).scalar_one_or_none()
            if conversation is None:
                return False
            await session.delete(conversation)
        return True

    ##########################################
    ############### MESSAGES #################
    ##########################################

    async def create_messages(
        self,
        conversation_id: str,
        messages: list[tuple[str, str, int | None]],
    ) -> list[Message]:
        """Append several ``(role, content, token_count)`` messages in one transaction.

        Timestamps increase by one microsecond per message so the order
        survives a clock that does not move between inserts.
        """
        now = utcnow()
        rows = [
            Message(
                conversation_id=conversation_id,
                role=role,
                content=content,
                token_count=token_count,
                created_at=now + timedelta(microseconds=offset),
                updated_at=now,
            )
            for offset, (role, content, token_count) in enumerate(messages)
        ]
        async with self._db.session() as session:
            session.add_all(rows)
            await session.execute(
                update(Conversation).where(Conversation.id == conversation_id).values(updated_at=now)
            )
        return rows

    async def list_messages(self, conversation_id: str, limit: int = 50) -> list[Message]:
        """Return the most recent messages of a conversation, oldest first."""
        stmt = (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(limit)
        )
        async with self._db.session() as session:
            messages = list((await session.execute(stmt)).scalars().all())
        messages.reverse()
        return messages
