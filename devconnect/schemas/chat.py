from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from ..models.chat import ChatType
from ..models.message import MessageType

class DirectChatCreate(BaseModel):
    user_id: str = Field(..., description="The other member of the direct chat")

class GroupChatCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="Group name")
    member_ids: List[str] = Field(..., min_length=1, description="User IDs to add besides the creator")

class MemberInfo(BaseModel):
    id: str
    username: str
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    last_read_at: Optional[datetime] = None

class ChatResponse(BaseModel):
    id: str
    type: ChatType
    name: Optional[str] = None
    creator_id: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    members: List[MemberInfo] = []

class LastMessage(BaseModel):
    id: str
    content: str
    type: MessageType
    sender_id: str
    is_deleted: bool
    created_at: datetime

    class Config:
        from_attributes = True

class ChatSummary(ChatResponse):
    """One sidebar row as seen by the requesting user"""
    last_message: Optional[LastMessage] = None
    unread_count: int = 0
