# services/message_service.py
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_, update
from sqlalchemy.orm import selectinload
from typing import List, Optional
import logging
import uuid

from ..models.message import Message, MessageType, message_to_row
from ..models.chat import member_to_row
from ..schemas.message import MessageCreate, MessageResponse, MarkReadResponse
from ..core.exceptions import NotFoundException, ForbiddenException, BadRequestException
from ..services.chat_service import ChatService
from ..services.realtime import RealtimeHub, realtime_hub
from ..utils.time import utcnow

logger = logging.getLogger(__name__)

ATTACHMENT_TYPES = (MessageType.IMAGE, MessageType.FILE)


class MessageService:
    def __init__(self, db: AsyncSession, hub: RealtimeHub = realtime_hub):
        self.db = db
        self.hub = hub
        self.chats = ChatService(db, hub)

    async def _require_member(self, chat_id: str, user_id: str):
        membership = await self.chats.get_membership(chat_id, user_id)
        if not membership:
            raise ForbiddenException("User is not a member of this chat.")
        return membership

    async def _get_message(self, message_id: str) -> Message:
        message = await self.db.get(Message, message_id)
        if not message:
            raise NotFoundException("Message not found")
        return message

    async def list_messages(self, chat_id: str, user_id: str) -> List[MessageResponse]:
        """All messages of a chat, oldest first"""
        await self._require_member(chat_id, user_id)
        result = await self.db.execute(
            select(Message)
            .options(selectinload(Message.sender))
            .where(Message.chat_id == chat_id)
            .order_by(Message.created_at)
        )
        return [MessageResponse.model_validate(message) for message in result.scalars().all()]

    async def get_message(self, message_id: str) -> Optional[MessageResponse]:
        """A stored message with its sender, or None"""
        result = await self.db.execute(
            select(Message).options(selectinload(Message.sender)).where(Message.id == message_id)
        )
        message = result.scalar_one_or_none()
        return MessageResponse.model_validate(message) if message else None

    async def create_message(self, message_data: MessageCreate, sender_id: str) -> MessageResponse:
        await self._require_member(message_data.chat_id, sender_id)

        if not message_data.content.strip():
            raise BadRequestException("Message content cannot be empty")
        if message_data.type in ATTACHMENT_TYPES and not message_data.file_url:
            raise BadRequestException(f"A {message_data.type.value} message needs a file_url")

        message = Message(
            id=str(uuid.uuid4()),
            chat_id=message_data.chat_id,
            sender_id=sender_id,
            content=message_data.content,
            type=message_data.type,
            language=message_data.language if message_data.type == MessageType.CODE else None,
            file_url=message_data.file_url if message_data.type in ATTACHMENT_TYPES else None,
            file_name=message_data.file_name if message_data.type in ATTACHMENT_TYPES else None,
            file_size=message_data.file_size if message_data.type == MessageType.FILE else None,
            created_at=utcnow()
        )
        self.db.add(message)
        await self.chats.touch_chat(message.chat_id, message.created_at)
        await self.db.commit()

        result = await self.db.execute(
            select(Message).options(selectinload(Message.sender)).where(Message.id == message.id)
            .execution_options(populate_existing=True)
        )
        message = result.scalar_one()
        logger.info(f"Message {message.id} ({message.type.value}) stored in chat {message.chat_id}")

        await self.hub.publish_change("INSERT", "messages", new=message_to_row(message))
        await self.hub.publish_change("UPDATE", "chats", new={"id": message.chat_id, "updated_at": message.created_at})
        return MessageResponse.model_validate(message)

    async def recall_message(self, message_id: str, user_id: str) -> MessageResponse:
        """Soft delete a message for every viewer (sender only)"""
        message = await self._get_message(message_id)
        if message.sender_id != user_id:
            raise ForbiddenException("Only the sender can recall this message")
        if message.is_deleted:
            raise BadRequestException("Message already recalled")

        message.is_deleted = True
        await self.db.commit()

        result = await self.db.execute(
            select(Message).options(selectinload(Message.sender)).where(Message.id == message_id)
            .execution_options(populate_existing=True)
        )
        message = result.scalar_one()
        logger.info(f"Message {message_id} recalled by {user_id}")

        await self.hub.publish_change("UPDATE", "messages", new=message_to_row(message))
        return MessageResponse.model_validate(message)

    async def delete_message(self, message_id: str, user_id: str):
        """Hard delete a message (sender only)"""
        message = await self._get_message(message_id)
        if message.sender_id != user_id:
            raise ForbiddenException("Only the sender can delete this message")

        row = message_to_row(message)
        await self.db.delete(message)
        await self.db.commit()
        logger.info(f"Message {message_id} deleted by {user_id}")

        await self.hub.publish_change("DELETE", "messages", old=row)

    async def mark_chat_read(self, chat_id: str, user_id: str) -> MarkReadResponse:
        """Move the read boundary to now and flag other senders' messages as read."""
        membership = await self._require_member(chat_id, user_id)
        now = utcnow()

        unread_result = await self.db.execute(
            select(Message.id).where(and_(
                Message.chat_id == chat_id,
                Message.sender_id != user_id,
                Message.is_read == False  # noqa: E712
            ))
        )
        message_ids = list(unread_result.scalars().all())
        if message_ids:
            await self.db.execute(
                update(Message).where(Message.id.in_(message_ids)).values(is_read=True)
            )

        membership.last_read_at = now
        await self.db.commit()

        await self.hub.publish_change("UPDATE", "chat_members", new=member_to_row(membership))
        return MarkReadResponse(chat_id=chat_id, last_read_at=now, message_ids=message_ids)
