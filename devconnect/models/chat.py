from sqlalchemy import Column, String, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from ..database import Base
from ..utils.time import utcnow
import enum
import uuid

class ChatType(str, enum.Enum):
    DIRECT = "direct"
    GROUP = "group"

class Chat(Base):
    __tablename__ = "chats"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    type = Column(SQLEnum(ChatType), default=ChatType.DIRECT, nullable=False, index=True)
    name = Column(String(100))  # group chats only
    creator_id = Column(String, ForeignKey("profiles.id"), nullable=False, index=True)
    # Sorted member pair of a direct chat; NULL for groups
    direct_key = Column(String(100), unique=True, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, index=True)

    # Relationships
    creator = relationship("Profile")
    members = relationship("ChatMember", back_populates="chat")
    messages = relationship("Message", back_populates="chat")

class ChatMember(Base):
    __tablename__ = "chat_members"

    chat_id = Column(String, ForeignKey("chats.id"), primary_key=True)
    user_id = Column(String, ForeignKey("profiles.id"), primary_key=True, index=True)
    joined_at = Column(DateTime, default=utcnow)
    last_read_at = Column(DateTime, nullable=True)

    # Relationships
    chat = relationship("Chat", back_populates="members")
    user = relationship("Profile", back_populates="memberships")


def make_direct_key(user1_id: str, user2_id: str) -> str:
    return ":".join(sorted([user1_id, user2_id]))


def chat_to_row(chat: Chat) -> dict:
    return {
        "id": chat.id,
        "type": chat.type.value if isinstance(chat.type, ChatType) else chat.type,
        "name": chat.name,
        "creator_id": chat.creator_id,
        "created_at": chat.created_at,
        "updated_at": chat.updated_at,
    }


def member_to_row(member: ChatMember) -> dict:
    return {
        "chat_id": member.chat_id,
        "user_id": member.user_id,
        "joined_at": member.joined_at,
        "last_read_at": member.last_read_at,
    }
