from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Enum as SQLEnum, Text, Integer
from sqlalchemy.orm import relationship
from ..database import Base
from ..utils.time import utcnow
import enum
import uuid

class MessageType(str, enum.Enum):
    TEXT = "text"
    CODE = "code"
    IMAGE = "image"
    FILE = "file"

class Message(Base):
    __tablename__ = "messages"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    chat_id = Column(String, ForeignKey("chats.id"), nullable=False, index=True)
    sender_id = Column(String, ForeignKey("profiles.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    type = Column(SQLEnum(MessageType), default=MessageType.TEXT, nullable=False)
    language = Column(String(30))  # code snippets
    file_url = Column(String(500))  # images and files
    file_name = Column(String(255))
    file_size = Column(Integer)  # in bytes, files only
    is_deleted = Column(Boolean, default=False, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, onupdate=utcnow)

    # Relationships
    chat = relationship("Chat", back_populates="messages")
    sender = relationship("Profile", back_populates="sent_messages")


def message_to_row(message: Message) -> dict:
    """Column snapshot of a message, the payload of a change event."""
    return {
        "id": message.id,
        "chat_id": message.chat_id,
        "sender_id": message.sender_id,
        "content": message.content,
        "type": message.type.value if isinstance(message.type, MessageType) else message.type,
        "language": message.language,
        "file_url": message.file_url,
        "file_name": message.file_name,
        "file_size": message.file_size,
        "is_deleted": message.is_deleted,
        "is_read": message.is_read,
        "created_at": message.created_at,
        "updated_at": message.updated_at,
    }
