from typing import List
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import require_chat_member
from ..core.security import get_current_user
from ..database import get_db
from ..models.chat import Chat
from ..models.user import Profile
from ..schemas.chat import ChatResponse, ChatSummary, DirectChatCreate, GroupChatCreate
from ..schemas.message import MarkReadResponse
from ..services.chat_service import ChatService
from ..services.message_service import MessageService

router = APIRouter()

@router.get("", response_model=List[ChatSummary])
async def list_chats(
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Sidebar rows of the current user, newest first"""
    return await ChatService(db).get_chat_summaries(current_user.id)

@router.post("/direct", response_model=ChatResponse, status_code=status.HTTP_201_CREATED)
async def create_direct_chat(
    chat_data: DirectChatCreate,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Open a direct chat, returning the existing one when the pair already has it"""
    return await ChatService(db).create_direct_chat(current_user.id, chat_data.user_id)

@router.post("/group", response_model=ChatResponse, status_code=status.HTTP_201_CREATED)
async def create_group_chat(
    group_data: GroupChatCreate,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await ChatService(db).create_group_chat(current_user.id, group_data)

@router.get("/{chat_id}", response_model=ChatResponse)
async def get_chat(
    chat_id: str,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await ChatService(db).get_chat(chat_id, current_user.id)

@router.delete("/{chat_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_chat(
    chat_id: str,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    await ChatService(db).delete_chat(chat_id, current_user.id)

@router.post("/{chat_id}/read", response_model=MarkReadResponse)
async def mark_chat_read(
    chat: Chat = Depends(require_chat_member),
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Move the read boundary to now"""
    return await MessageService(db).mark_chat_read(chat.id, current_user.id)
