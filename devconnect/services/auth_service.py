from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
import logging
import uuid

from ..models.user import Profile
from ..core.exceptions import BadRequestException, UnauthorizedException
from ..core.security import get_password_hash, verify_password, create_access_token
from ..schemas.auth import UserRegister, UserLogin, Token, UserProfile
from ..config import settings

logger = logging.getLogger(__name__)

class AuthService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def register_user(self, user_data: UserRegister) -> UserProfile:
        """Register a new user"""
        # Check if user already exists
        result = await self.db.execute(
            select(Profile).where(
                (Profile.email == user_data.email) | (Profile.username == user_data.username)
            )
        )
        existing_user = result.scalars().first()

        if existing_user:
            if existing_user.email == user_data.email:
                raise BadRequestException("Email already registered")
            raise BadRequestException("Username already taken")

        user = Profile(
            id=str(uuid.uuid4()),
            username=user_data.username,
            email=user_data.email,
            full_name=user_data.full_name,
            password_hash=get_password_hash(user_data.password)
        )

        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)
        logger.info(f"Registered user {user.id} ({user.username})")

        return UserProfile.model_validate(user)

    async def authenticate_user(self, login_data: UserLogin) -> Token:
        """Authenticate user and return an access token"""
        result = await self.db.execute(select(Profile).where(Profile.email == login_data.email))
        user = result.scalar_one_or_none()

        if not user or not verify_password(login_data.password, user.password_hash):
            raise UnauthorizedException("Incorrect email or password")

        access_token = create_access_token({"sub": user.id, "username": user.username})
        return Token(
            access_token=access_token,
            token_type="bearer",
            expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60
        )
