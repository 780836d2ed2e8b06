from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models.chat import Chat
from ..models.user import Profile
from ..core.security import get_current_user
from ..services.chat_service import ChatService

async def require_chat_member(
    chat_id: str,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Chat:
    """Require the current user to be a member of the chat in the path"""
    chat_service = ChatService(db)
    return await chat_service.get_chat_for_member(chat_id, current_user.id)
