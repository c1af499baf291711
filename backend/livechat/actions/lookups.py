from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from livechat.actions.exceptions import NotFoundError
from livechat.db.models import Conversation, Message


async def get_conversation(db: AsyncSession, conversation_id: int, with_visitor: bool = False) -> Conversation:
    """Load a conversation or raise 404."""
    query = select(Conversation).where(Conversation.id == conversation_id)
    if with_visitor:
        query = query.options(selectinload(Conversation.visitor))
    result = await db.execute(query)
    conversation = result.scalar_one_or_none()
    if not conversation:
        raise NotFoundError("Conversation not found")
    return conversation


async def find_message(db: AsyncSession, message_id: int) -> Optional[Message]:
    result = await db.execute(select(Message).where(Message.id == message_id))
    return result.scalar_one_or_none()
