from pydantic import BaseModel
from typing import Optional

class UserResponse(BaseModel):
    id: str
    username: str
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None

    class Config:
        from_attributes = True

class ContactResponse(UserResponse):
    """A user related to the current user by a follow in either direction"""
    is_following: bool = False
    is_follower: bool = False
