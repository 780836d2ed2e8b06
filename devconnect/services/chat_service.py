from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_, or_, desc, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload
from typing import List, Optional
from datetime import datetime
import logging
import uuid

from ..models.chat import Chat, ChatMember, ChatType, make_direct_key, chat_to_row, member_to_row
from ..models.user import Profile, Follow
from ..models.message import Message
from ..schemas.chat import GroupChatCreate, ChatResponse, ChatSummary, MemberInfo, LastMessage
from ..core.exceptions import NotFoundException, ForbiddenException, BadRequestException
from ..services.realtime import RealtimeHub, realtime_hub

logger = logging.getLogger(__name__)

FOLLOW_REQUIRED_DETAIL = "You can only message users who follow you or whom you follow"

class ChatService:
    def __init__(self, db: AsyncSession, hub: RealtimeHub = realtime_hub):
        self.db = db
        self.hub = hub

    async def get_membership(self, chat_id: str, user_id: str) -> Optional[ChatMember]:
        result = await self.db.execute(
            select(ChatMember).where(
                and_(ChatMember.chat_id == chat_id, ChatMember.user_id == user_id)
            )
        )
        return result.scalar_one_or_none()

    async def is_member(self, chat_id: str, user_id: str) -> bool:
        return await self.get_membership(chat_id, user_id) is not None

    async def get_chat_for_member(self, chat_id: str, user_id: str) -> Chat:
        """Load a chat with its members, or raise 404/403."""
        result = await self.db.execute(
            select(Chat)
            .options(selectinload(Chat.members).selectinload(ChatMember.user))
            .where(Chat.id == chat_id)
            .execution_options(populate_existing=True)
        )
        chat = result.scalar_one_or_none()
        if not chat:
            raise NotFoundException("Chat not found")
        if not any(member.user_id == user_id for member in chat.members):
            raise ForbiddenException("Not a member of this chat")
        return chat

    async def get_chat(self, chat_id: str, user_id: str) -> ChatResponse:
        """Get chat details, members only"""
        chat = await self.get_chat_for_member(chat_id, user_id)
        return self._to_response(chat)

    async def find_direct_chat(self, user1_id: str, user2_id: str) -> Optional[Chat]:
        """Find an existing direct chat shared by two users"""
        user1_chats = await self.db.execute(select(ChatMember.chat_id).where(ChatMember.user_id == user1_id))
        user2_chats = await self.db.execute(select(ChatMember.chat_id).where(ChatMember.user_id == user2_id))
        common_ids = set(user1_chats.scalars().all()) & set(user2_chats.scalars().all())
        if not common_ids:
            return None

        result = await self.db.execute(
            select(Chat)
            .where(and_(Chat.id.in_(common_ids), Chat.type == ChatType.DIRECT))
            .order_by(Chat.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def can_message(self, user_id: str, other_id: str) -> bool:
        """True when either user follows the other"""
        result = await self.db.execute(
            select(func.count()).select_from(Follow).where(
                or_(
                    and_(Follow.follower_id == user_id, Follow.following_id == other_id),
                    and_(Follow.follower_id == other_id, Follow.following_id == user_id),
                )
            )
        )
        return result.scalar() > 0

    async def create_direct_chat(self, creator_id: str, other_user_id: str) -> ChatResponse:
        """Open the direct chat with another user, reusing an existing one."""
        if other_user_id == creator_id:
            raise BadRequestException("You cannot start a chat with yourself")

        other = await self.db.get(Profile, other_user_id)
        if not other:
            raise NotFoundException("User not found")

        if not await self.can_message(creator_id, other_user_id):
            raise ForbiddenException(FOLLOW_REQUIRED_DETAIL)

        existing = await self.find_direct_chat(creator_id, other_user_id)
        if existing:
            logger.info(f"Reusing direct chat {existing.id} between {creator_id} and {other_user_id}")
            return await self.get_chat(existing.id, creator_id)

        direct_key = make_direct_key(creator_id, other_user_id)
        chat = Chat(
            id=str(uuid.uuid4()),
            type=ChatType.DIRECT,
            creator_id=creator_id,
            direct_key=direct_key
        )
        members = [ChatMember(chat_id=chat.id, user_id=user_id) for user_id in (creator_id, other_user_id)]
        self.db.add(chat)
        self.db.add_all(members)
        try:
            await self.db.commit()
        except IntegrityError:
            # The other side created the pair first
            await self.db.rollback()
            result = await self.db.execute(select(Chat).where(Chat.direct_key == direct_key))
            winner = result.scalar_one()
            logger.info(f"Direct chat race for {direct_key} resolved to {winner.id}")
            return await self.get_chat(winner.id, creator_id)

        await self._publish_created(chat, members)
        return await self.get_chat(chat.id, creator_id)

    async def create_group_chat(self, creator_id: str, group_data: GroupChatCreate) -> ChatResponse:
        """Create a named group with the creator and the selected members"""
        name = group_data.name.strip()
        if not name:
            raise BadRequestException("Please enter a group name")

        member_ids = [user_id for user_id in dict.fromkeys(group_data.member_ids) if user_id != creator_id]
        if not member_ids:
            raise BadRequestException("Select at least one member")

        result = await self.db.execute(select(Profile.id).where(Profile.id.in_(member_ids)))
        if len(result.scalars().all()) != len(member_ids):
            raise BadRequestException("One or more members not found")

        chat = Chat(
            id=str(uuid.uuid4()),
            type=ChatType.GROUP,
            name=name,
            creator_id=creator_id
        )
        members = [ChatMember(chat_id=chat.id, user_id=user_id) for user_id in [creator_id] + member_ids]
        self.db.add(chat)
        self.db.add_all(members)
        await self.db.commit()

        await self._publish_created(chat, members)
        return await self.get_chat(chat.id, creator_id)

    async def delete_chat(self, chat_id: str, user_id: str):
        """Delete a chat with its members and messages (creator only)"""
        chat = await self.db.get(Chat, chat_id)
        if not chat:
            raise NotFoundException("Chat not found")
        if chat.creator_id != user_id:
            raise ForbiddenException("Only the chat creator can delete this chat")

        row = chat_to_row(chat)
        await self.db.execute(delete(Message).where(Message.chat_id == chat_id))
        await self.db.execute(delete(ChatMember).where(ChatMember.chat_id == chat_id))
        await self.db.execute(delete(Chat).where(Chat.id == chat_id))
        await self.db.commit()
        logger.info(f"Chat {chat_id} deleted by {user_id}")

        await self.hub.publish_change("DELETE", "chats", old=row)

    async def touch_chat(self, chat_id: str, when: datetime):
        """Move the chat to the top of everyone's list"""
        chat = await self.db.get(Chat, chat_id)
        if chat:
            chat.updated_at = when

    async def get_chat_summaries(self, user_id: str) -> List[ChatSummary]:
        """Every chat of the user with last message and unread count, newest first."""
        result = await self.db.execute(
            select(Chat)
            .join(ChatMember, Chat.id == ChatMember.chat_id)
            .options(selectinload(Chat.members).selectinload(ChatMember.user))
            .where(ChatMember.user_id == user_id)
            .order_by(desc(Chat.updated_at))
            .execution_options(populate_existing=True)
        )
        chats = result.scalars().unique().all()

        summaries = []
        for chat in chats:
            membership = next(m for m in chat.members if m.user_id == user_id)

            last_message_result = await self.db.execute(
                select(Message)
                .where(Message.chat_id == chat.id)
                .order_by(desc(Message.created_at))
                .limit(1)
            )
            last_message = last_message_result.scalar_one_or_none()

            response = self._to_response(chat)
            summaries.append(ChatSummary(
                **response.model_dump(),
                last_message=LastMessage.model_validate(last_message) if last_message else None,
                unread_count=await self._get_unread_count(chat.id, user_id, membership.last_read_at)
            ))
        return summaries

    async def _get_unread_count(self, chat_id: str, user_id: str, last_read_at: Optional[datetime]) -> int:
        """Messages from others newer than the member's read boundary"""
        conditions = [Message.chat_id == chat_id, Message.sender_id != user_id]
        if last_read_at is not None:
            conditions.append(Message.created_at > last_read_at)
        result = await self.db.execute(
            select(func.count(Message.id)).where(and_(*conditions))
        )
        return result.scalar() or 0

    async def _publish_created(self, chat: Chat, members: List[ChatMember]):
        await self.hub.publish_change("INSERT", "chats", new=chat_to_row(chat))
        for member in members:
            await self.hub.publish_change("INSERT", "chat_members", new=member_to_row(member))

    def _to_response(self, chat: Chat) -> ChatResponse:
        members = [
            MemberInfo(
                id=member.user.id,
                username=member.user.username,
                full_name=member.user.full_name,
                avatar_url=member.user.avatar_url,
                last_read_at=member.last_read_at
            )
            for member in sorted(chat.members, key=lambda m: (m.joined_at is None, m.joined_at))
        ]
        return ChatResponse(
            id=chat.id,
            type=chat.type,
            name=chat.name,
            creator_id=chat.creator_id,
            created_at=chat.created_at,
            updated_at=chat.updated_at,
            members=members
        )
