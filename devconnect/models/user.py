from sqlalchemy import Column, ForeignKey, String, DateTime
from sqlalchemy.orm import relationship
from ..database import Base
from ..utils.time import utcnow
import uuid

class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    username = Column(String(50), unique=True, nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(100))
    avatar_url = Column(String(500))
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, onupdate=utcnow)

    # Relationships
    memberships = relationship("ChatMember", back_populates="user")
    sent_messages = relationship("Message", back_populates="sender")


class Follow(Base):
    __tablename__ = "follows"

    follower_id = Column(String, ForeignKey("profiles.id"), primary_key=True)
    following_id = Column(String, ForeignKey("profiles.id"), primary_key=True, index=True)
    created_at = Column(DateTime, default=utcnow)
