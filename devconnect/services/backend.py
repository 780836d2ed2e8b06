"""Query client used by the view-models.

``LocalBackend`` runs the platform services in-process, one database
session per call, the way a hosted client library opens one request per
call. The view-models only see this facade, so a remote client with the
same methods can stand in for it.
"""
import logging
from typing import List, Optional

from fastapi import HTTPException

from ..database import AsyncSessionLocal
from ..schemas.chat import ChatResponse, ChatSummary, GroupChatCreate
from ..schemas.file import UploadResponse
from ..schemas.message import MarkReadResponse, MessageCreate, MessageResponse, SenderInfo
from ..schemas.user import ContactResponse
from . import user_service
from .chat_service import ChatService
from .message_service import MessageService
from .realtime import RealtimeChannel, RealtimeHub, realtime_hub
from .storage_service import StorageService

logger = logging.getLogger(__name__)


def error_message(exc: Exception, fallback: str) -> str:
    """The text a toast shows for a failed call"""
    if isinstance(exc, HTTPException) and exc.detail:
        return str(exc.detail)
    return str(exc) or fallback


class LocalBackend:
    def __init__(self, session_factory=AsyncSessionLocal, hub: RealtimeHub = realtime_hub,
                 storage: Optional[StorageService] = None):
        self.session_factory = session_factory
        self.hub = hub
        self._storage = storage

    @property
    def storage(self) -> StorageService:
        if self._storage is None:
            self._storage = StorageService()
        return self._storage

    def channel(self, name: str) -> RealtimeChannel:
        return self.hub.channel(name)

    # --- profiles ---

    async def fetch_profile(self, user_id: str) -> Optional[SenderInfo]:
        async with self.session_factory() as db:
            profile = await user_service.get_user(db, user_id)
            return SenderInfo.model_validate(profile) if profile else None

    async def fetch_contacts(self, user_id: str) -> List[ContactResponse]:
        async with self.session_factory() as db:
            return await user_service.get_contacts(db, user_id)

    # --- chats ---

    async def fetch_chat(self, chat_id: str, user_id: str) -> ChatResponse:
        async with self.session_factory() as db:
            return await ChatService(db, self.hub).get_chat(chat_id, user_id)

    async def fetch_chat_summaries(self, user_id: str) -> List[ChatSummary]:
        async with self.session_factory() as db:
            return await ChatService(db, self.hub).get_chat_summaries(user_id)

    async def can_message(self, user_id: str, other_user_id: str) -> bool:
        async with self.session_factory() as db:
            return await ChatService(db, self.hub).can_message(user_id, other_user_id)

    async def find_direct_chat(self, user_id: str, other_user_id: str) -> Optional[str]:
        async with self.session_factory() as db:
            chat = await ChatService(db, self.hub).find_direct_chat(user_id, other_user_id)
            return chat.id if chat else None

    async def create_direct_chat(self, user_id: str, other_user_id: str) -> ChatResponse:
        async with self.session_factory() as db:
            return await ChatService(db, self.hub).create_direct_chat(user_id, other_user_id)

    async def create_group_chat(self, user_id: str, name: str, member_ids: List[str]) -> ChatResponse:
        async with self.session_factory() as db:
            return await ChatService(db, self.hub).create_group_chat(
                user_id, GroupChatCreate(name=name, member_ids=member_ids)
            )

    async def delete_chat(self, chat_id: str, user_id: str):
        async with self.session_factory() as db:
            await ChatService(db, self.hub).delete_chat(chat_id, user_id)

    # --- messages ---

    async def fetch_messages(self, chat_id: str, user_id: str) -> List[MessageResponse]:
        async with self.session_factory() as db:
            return await MessageService(db, self.hub).list_messages(chat_id, user_id)

    async def insert_message(self, user_id: str, message_data: MessageCreate) -> MessageResponse:
        async with self.session_factory() as db:
            return await MessageService(db, self.hub).create_message(message_data, user_id)

    async def recall_message(self, user_id: str, message_id: str) -> MessageResponse:
        async with self.session_factory() as db:
            return await MessageService(db, self.hub).recall_message(message_id, user_id)

    async def delete_message(self, user_id: str, message_id: str):
        async with self.session_factory() as db:
            await MessageService(db, self.hub).delete_message(message_id, user_id)

    async def mark_chat_read(self, chat_id: str, user_id: str) -> MarkReadResponse:
        async with self.session_factory() as db:
            return await MessageService(db, self.hub).mark_chat_read(chat_id, user_id)

    # --- storage ---

    async def upload(self, bucket: str, path: str, content: bytes, filename: str) -> UploadResponse:
        return await self.storage.upload(bucket, path, content, filename)
