from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_, or_
from typing import List, Optional
import logging

from ..models.user import Profile, Follow
from ..schemas.user import ContactResponse
from ..core.exceptions import NotFoundException, BadRequestException

logger = logging.getLogger(__name__)

async def get_user(db: AsyncSession, user_id: str) -> Optional[Profile]:
    result = await db.execute(select(Profile).where(Profile.id == user_id))
    return result.scalars().first()

async def search_users(db: AsyncSession, search_query: str, exclude_user_id: Optional[str] = None) -> List[Profile]:
    """Users whose username or full name contains the query"""
    pattern = f"%{search_query}%"
    query = select(Profile).where(
        or_(
            Profile.username.ilike(pattern),
            Profile.full_name.ilike(pattern)
        )
    )
    if exclude_user_id:
        query = query.where(Profile.id != exclude_user_id)
    result = await db.execute(query.order_by(Profile.username).limit(20))
    return result.scalars().all()

async def follow_user(db: AsyncSession, follower_id: str, following_id: str) -> Follow:
    if follower_id == following_id:
        raise BadRequestException("You cannot follow yourself")
    if not await get_user(db, following_id):
        raise NotFoundException("User not found")

    existing = await db.get(Follow, (follower_id, following_id))
    if existing:
        return existing

    follow = Follow(follower_id=follower_id, following_id=following_id)
    db.add(follow)
    await db.commit()
    logger.info(f"User {follower_id} now follows {following_id}")
    return follow

async def unfollow_user(db: AsyncSession, follower_id: str, following_id: str) -> bool:
    follow = await db.get(Follow, (follower_id, following_id))
    if not follow:
        return False
    await db.delete(follow)
    await db.commit()
    return True

async def get_contacts(db: AsyncSession, user_id: str) -> List[ContactResponse]:
    """Users related to user_id by a follow in either direction."""
    result = await db.execute(
        select(Follow).where(
            or_(Follow.follower_id == user_id, Follow.following_id == user_id)
        )
    )
    following = set()
    followers = set()
    for follow in result.scalars().all():
        if follow.follower_id == user_id:
            following.add(follow.following_id)
        else:
            followers.add(follow.follower_id)

    related_ids = following | followers
    if not related_ids:
        return []

    profiles = await db.execute(
        select(Profile).where(and_(Profile.id.in_(related_ids), Profile.id != user_id)).order_by(Profile.username)
    )
    return [
        ContactResponse(
            id=profile.id,
            username=profile.username,
            full_name=profile.full_name,
            avatar_url=profile.avatar_url,
            is_following=profile.id in following,
            is_follower=profile.id in followers
        )
        for profile in profiles.scalars().all()
    ]
