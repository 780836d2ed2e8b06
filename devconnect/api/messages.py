from typing import List
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import require_chat_member
from ..core.security import get_current_user
from ..database import get_db
from ..models.chat import Chat
from ..models.user import Profile
from ..schemas.message import MessageCreate, MessageResponse
from ..services.message_service import MessageService

router = APIRouter()

@router.get("/chat/{chat_id}", response_model=List[MessageResponse])
async def list_messages(
    chat: Chat = Depends(require_chat_member),
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Messages of a chat, oldest first"""
    return await MessageService(db).list_messages(chat.id, current_user.id)

@router.post("", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def create_message(
    message_data: MessageCreate,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Store a message; subscribers of the change feed are notified after commit"""
    return await MessageService(db).create_message(message_data, current_user.id)

@router.post("/{message_id}/recall", response_model=MessageResponse)
async def recall_message(
    message_id: str,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await MessageService(db).recall_message(message_id, current_user.id)

@router.delete("/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(
    message_id: str,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    await MessageService(db).delete_message(message_id, current_user.id)
