from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..schemas.auth import UserRegister, UserLogin, Token, UserProfile
from ..services.auth_service import AuthService
from ..core.security import get_current_user
from ..models.user import Profile

router = APIRouter()

@router.post("/register", response_model=UserProfile, status_code=status.HTTP_201_CREATED)
async def register(
    user_data: UserRegister,
    db: AsyncSession = Depends(get_db)
):
    """Register a new user"""
    auth_service = AuthService(db)
    return await auth_service.register_user(user_data)

@router.post("/login", response_model=Token)
async def login(
    login_data: UserLogin,
    db: AsyncSession = Depends(get_db)
):
    """Login user and return a JWT access token"""
    auth_service = AuthService(db)
    return await auth_service.authenticate_user(login_data)

@router.get("/me", response_model=UserProfile)
async def get_current_user_profile(current_user: Profile = Depends(get_current_user)):
    """Get current user profile"""
    return UserProfile.model_validate(current_user)
