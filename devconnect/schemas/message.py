# devconnect/schemas/message.py
from pydantic import BaseModel, Field, TypeAdapter
from typing import Optional, Union, Literal, Any, Annotated
from datetime import datetime
from enum import Enum
from ..models.message import MessageType

class DeliveryStatus(str, Enum):
    """Client-local delivery state of a message bubble"""
    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"

class SenderInfo(BaseModel):
    """Profile fields shown next to a message"""
    id: str
    username: Optional[str] = None
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None

    class Config:
        from_attributes = True

UNKNOWN_SENDER_NAME = "Unknown"

def unknown_sender(sender_id: str) -> SenderInfo:
    return SenderInfo(id=sender_id, username=UNKNOWN_SENDER_NAME, full_name=UNKNOWN_SENDER_NAME)

# --- Stored messages, one variant per message type ---

class MessageBase(BaseModel):
    id: str
    chat_id: str
    sender_id: str
    content: str
    is_deleted: bool = False
    is_read: bool = False
    created_at: datetime
    updated_at: Optional[datetime] = None
    sender: Optional[SenderInfo] = None
    status: Optional[DeliveryStatus] = None

class TextMessage(MessageBase):
    type: Literal["text"] = "text"

class CodeMessage(MessageBase):
    type: Literal["code"] = "code"
    language: Optional[str] = None

class ImageMessage(MessageBase):
    type: Literal["image"] = "image"
    file_url: Optional[str] = None
    file_name: Optional[str] = None

class FileMessage(MessageBase):
    type: Literal["file"] = "file"
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None

ChatMessage = Annotated[
    Union[TextMessage, CodeMessage, ImageMessage, FileMessage],
    Field(discriminator="type"),
]

chat_message_adapter = TypeAdapter(ChatMessage)

# --- Outgoing payloads ---

class TextPayload(BaseModel):
    type: Literal["text"] = "text"
    content: str

class CodePayload(BaseModel):
    type: Literal["code"] = "code"
    content: str
    language: str = "javascript"

class ImagePayload(BaseModel):
    type: Literal["image"] = "image"
    content: str
    file_url: str
    file_name: str

class FilePayload(BaseModel):
    type: Literal["file"] = "file"
    content: str
    file_url: str
    file_name: str
    file_size: int

OutgoingPayload = Annotated[
    Union[TextPayload, CodePayload, ImagePayload, FilePayload],
    Field(discriminator="type"),
]

payload_adapter = TypeAdapter(OutgoingPayload)

class MessageCreate(BaseModel):
    chat_id: str = Field(..., description="Chat ID")
    content: str = Field(..., min_length=1, description="Message content")
    type: MessageType = Field(MessageType.TEXT, description="Message type: text, code, image, file")
    language: Optional[str] = Field(None, max_length=30, description="Language of a code snippet")
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = Field(None, ge=0)

    @classmethod
    def from_payload(cls, chat_id: str, payload) -> "MessageCreate":
        return cls(chat_id=chat_id, **payload.model_dump())

class MessageResponse(BaseModel):
    """Flat message row as returned by the HTTP API"""
    id: str
    chat_id: str
    sender_id: str
    content: str
    type: MessageType
    language: Optional[str] = None
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    is_deleted: bool
    is_read: bool
    created_at: datetime
    updated_at: Optional[datetime] = None
    sender: Optional[SenderInfo] = None

    class Config:
        from_attributes = True

class MarkReadResponse(BaseModel):
    chat_id: str
    last_read_at: datetime
    message_ids: list[str]


def message_from_row(row: dict, sender: Optional[SenderInfo] = None,
                     status: Optional[DeliveryStatus] = None) -> ChatMessage:
    """Build the typed variant of a message from a row dict."""
    data: dict[str, Any] = dict(row)
    if isinstance(data.get("type"), MessageType):
        data["type"] = data["type"].value
    if sender is not None:
        data["sender"] = sender
    data["status"] = status
    return chat_message_adapter.validate_python(data)


def build_payload(content: str, type: str = "text", **metadata) -> OutgoingPayload:
    """Build an outgoing payload, dropping metadata the variant does not carry."""
    fields = {"type": type, "content": content}
    fields.update({key: value for key, value in metadata.items() if value is not None})
    model = {
        "text": TextPayload,
        "code": CodePayload,
        "image": ImagePayload,
        "file": FilePayload,
    }[type]
    return payload_adapter.validate_python(
        {key: value for key, value in fields.items() if key in model.model_fields}
    )


def payload_from_message(message: ChatMessage) -> OutgoingPayload:
    """The payload that would re-send this message unchanged"""
    if isinstance(message, CodeMessage):
        return CodePayload(content=message.content, language=message.language or "javascript")
    if isinstance(message, ImageMessage):
        return ImagePayload(content=message.content, file_url=message.file_url or "",
                            file_name=message.file_name or "")
    if isinstance(message, FileMessage):
        return FilePayload(content=message.content, file_url=message.file_url or "",
                           file_name=message.file_name or "", file_size=message.file_size or 0)
    return TextPayload(content=message.content)
