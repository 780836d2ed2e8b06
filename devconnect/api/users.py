from typing import List
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.security import get_current_user
from ..database import get_db
from ..schemas.user import UserResponse, ContactResponse
from ..services.user_service import search_users, get_contacts, follow_user, unfollow_user
from ..models.user import Profile

router = APIRouter(prefix="/users")

@router.get("/search", response_model=List[UserResponse], summary="Search users by username or name")
async def search_users_endpoint(
    query: str = Query(..., min_length=1),
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await search_users(db, query, exclude_user_id=current_user.id)

@router.get("/contacts", response_model=List[ContactResponse], summary="Users you can start a chat with")
async def contacts_endpoint(
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await get_contacts(db, current_user.id)

@router.post("/{user_id}/follow", status_code=status.HTTP_204_NO_CONTENT)
async def follow_endpoint(
    user_id: str,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    await follow_user(db, current_user.id, user_id)

@router.delete("/{user_id}/follow", status_code=status.HTTP_204_NO_CONTENT)
async def unfollow_endpoint(
    user_id: str,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    await unfollow_user(db, current_user.id, user_id)
