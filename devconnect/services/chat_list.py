import logging
from datetime import datetime
from typing import List, Optional, Set

from pydantic import BaseModel

from ..config import settings
from ..models.chat import ChatType
from ..models.message import MessageType
from ..schemas.chat import ChatSummary, LastMessage, MemberInfo
from ..schemas.message import SenderInfo
from ..schemas.realtime import ChangeEvent
from ..schemas.user import ContactResponse
from ..services.chat_service import FOLLOW_REQUIRED_DETAIL
from .backend import LocalBackend
from .notifications import ToastCenter
from .presence import PresenceTracker
from .realtime import ANY, RealtimeChannel
from .rendering import FILE_PREFIX, IMAGE_PREFIX

logger = logging.getLogger(__name__)

FILTERS = ("all", "unread", "direct", "group")
CODE_FENCE = "```"
LOAD_FAILED_ERROR = "Failed to load chats. Please try again."


def last_message_preview(message: Optional[LastMessage], max_length: Optional[int] = None) -> str:
    """One-line sidebar preview of the last message of a chat"""
    max_length = max_length or settings.PREVIEW_MAX_LENGTH
    if message is None:
        return "No messages yet"
    if message.is_deleted:
        return "This message was deleted"
    if message.type == MessageType.CODE or message.content.startswith(CODE_FENCE):
        return "Sent a code snippet"
    if message.type == MessageType.IMAGE or message.content.startswith(IMAGE_PREFIX.strip()):
        return "Sent an image"
    if message.type == MessageType.FILE or message.content.startswith(FILE_PREFIX.strip()):
        return "Sent a file"
    if len(message.content) > max_length:
        return message.content[:max_length] + "…"
    return message.content


class ChatListItem(BaseModel):
    id: str
    type: ChatType
    name: Optional[str] = None
    display_name: str
    creator_id: str
    members: List[MemberInfo] = []
    other_member: Optional[MemberInfo] = None
    last_message: Optional[LastMessage] = None
    preview: str
    unread_count: int = 0
    updated_at: Optional[datetime] = None
    online: bool = False
    is_pinned: bool = False
    is_muted: bool = False
    is_archived: bool = False

    def matches(self, query: str) -> bool:
        query = query.lower()
        if self.type == ChatType.DIRECT and self.other_member is not None:
            name = self.other_member.username + (self.other_member.full_name or "")
        else:
            name = self.name or ""
        last = self.last_message.content if self.last_message else ""
        return query in name.lower() or query in last.lower()


class ChatListView:
    """View-model of the chat sidebar for one user."""

    def __init__(self, user: SenderInfo, backend: LocalBackend,
                 presence: Optional[PresenceTracker] = None, toasts: Optional[ToastCenter] = None):
        self.user = user
        self.backend = backend
        self.presence = presence or PresenceTracker()
        self.toasts = toasts or ToastCenter()

        self.chats: List[ChatListItem] = []
        self.filter = "all"
        self.search_query = ""
        self.loading = False
        self.error: Optional[str] = None

        # Client-local flags, kept across reloads of this view
        self.pinned: Set[str] = set()
        self.muted: Set[str] = set()
        self.archived: Set[str] = set()

        self._channel: Optional[RealtimeChannel] = None

    async def open(self):
        await self.load()
        self._channel = (
            self.backend.channel(f"chat-list:{self.user.id}")
            .on(ANY, "chats", None, self._on_change)
            .on(ANY, "messages", None, self._on_change)
            .on(ANY, "chat_members", None, self._on_change)
            .subscribe()
        )
        self.presence.add_listener(self._on_presence)

    async def close(self):
        if self._channel is not None:
            self._channel.unsubscribe()
            self._channel = None
        self.presence.remove_listener(self._on_presence)

    async def load(self):
        self.loading = True
        try:
            summaries = await self.backend.fetch_chat_summaries(self.user.id)
            self.chats = [self._to_item(summary) for summary in summaries]
            self.error = None
        except Exception as e:
            logger.error(f"Failed to load chats for {self.user.id}: {e}", exc_info=True)
            self.error = LOAD_FAILED_ERROR
        finally:
            self.loading = False

    async def _on_change(self, change: ChangeEvent):
        logger.debug(f"Chat list of {self.user.id} reloading after {change.event} on {change.table}")
        await self.load()

    def _on_presence(self, online: Set[str]):
        for item in self.chats:
            item.online = item.other_member is not None and item.other_member.id in online

    def _to_item(self, summary: ChatSummary) -> ChatListItem:
        other_member = None
        if summary.type == ChatType.DIRECT:
            other_member = next((m for m in summary.members if m.id != self.user.id), None)
            display_name = (other_member.full_name or other_member.username) if other_member else ""
        else:
            display_name = summary.name or ", ".join(m.full_name or m.username for m in summary.members)

        return ChatListItem(
            id=summary.id,
            type=summary.type,
            name=summary.name,
            display_name=display_name,
            creator_id=summary.creator_id,
            members=summary.members,
            other_member=other_member,
            last_message=summary.last_message,
            preview=last_message_preview(summary.last_message),
            unread_count=summary.unread_count,
            updated_at=summary.updated_at,
            online=other_member is not None and self.presence.is_online(other_member.id),
            is_pinned=summary.id in self.pinned,
            is_muted=summary.id in self.muted,
            is_archived=summary.id in self.archived
        )

    # --- filtering ---

    def set_filter(self, value: str):
        if value not in FILTERS:
            raise ValueError(f"Unknown chat filter: {value}")
        self.filter = value

    def set_search(self, query: str):
        self.search_query = query

    @property
    def visible_chats(self) -> List[ChatListItem]:
        result = list(self.chats)
        if self.filter == "unread":
            result = [c for c in result if c.unread_count > 0]
        elif self.filter == "direct":
            result = [c for c in result if c.type == ChatType.DIRECT]
        elif self.filter == "group":
            result = [c for c in result if c.type == ChatType.GROUP]

        if self.search_query:
            result = [c for c in result if c.matches(self.search_query)]

        # newest first, then pinned on top (stable sort keeps the order inside each half)
        result.sort(key=lambda c: c.updated_at or datetime.min, reverse=True)
        result.sort(key=lambda c: not c.is_pinned)
        return result

    @property
    def total_unread(self) -> int:
        return sum(c.unread_count for c in self.chats)

    # --- local flags ---

    def _find(self, chat_id: str) -> Optional[ChatListItem]:
        return next((c for c in self.chats if c.id == chat_id), None)

    def toggle_pin(self, chat_id: str) -> bool:
        pinned = self._toggle(self.pinned, chat_id, "is_pinned")
        self.toasts.success("Chat pinned to top" if pinned else "Chat unpinned")
        return pinned

    def toggle_mute(self, chat_id: str) -> bool:
        muted = self._toggle(self.muted, chat_id, "is_muted")
        self.toasts.success(
            "Notifications muted for this chat" if muted else "Notifications unmuted for this chat"
        )
        return muted

    def toggle_archive(self, chat_id: str) -> bool:
        archived = self._toggle(self.archived, chat_id, "is_archived")
        self.toasts.success("Chat archived" if archived else "Chat unarchived")
        return archived

    def _toggle(self, flags: Set[str], chat_id: str, attribute: str) -> bool:
        if chat_id in flags:
            flags.discard(chat_id)
        else:
            flags.add(chat_id)
        item = self._find(chat_id)
        if item is not None:
            setattr(item, attribute, chat_id in flags)
        return chat_id in flags

    # --- creating and deleting chats ---

    async def load_contacts(self) -> List[ContactResponse]:
        try:
            return await self.backend.fetch_contacts(self.user.id)
        except Exception as e:
            logger.error(f"Failed to load contacts for {self.user.id}: {e}", exc_info=True)
            self.toasts.error("Failed to load users")
            return []

    async def start_direct_chat(self, other_user_id: Optional[str]) -> Optional[str]:
        """Open the direct chat with a user, reusing an existing one. Returns its id."""
        if not other_user_id:
            self.toasts.error("Please select a user to chat with")
            return None
        try:
            if not await self.backend.can_message(self.user.id, other_user_id):
                self.toasts.error(FOLLOW_REQUIRED_DETAIL)
                return None
            chat_id = await self.backend.find_direct_chat(self.user.id, other_user_id)
            if chat_id is None:
                chat = await self.backend.create_direct_chat(self.user.id, other_user_id)
                chat_id = chat.id
        except Exception as e:
            logger.error(f"Failed to start conversation with {other_user_id}: {e}", exc_info=True)
            self.toasts.error("Failed to start conversation")
            return None
        await self.load()
        return chat_id

    async def create_group(self, name: str, member_ids: List[str]) -> Optional[str]:
        if not name.strip():
            self.toasts.error("Please enter a group name")
            return None
        if not member_ids:
            self.toasts.error("Please select at least one user for the group")
            return None
        try:
            chat = await self.backend.create_group_chat(self.user.id, name.strip(), member_ids)
        except Exception as e:
            logger.error(f"Failed to create group chat {name!r}: {e}", exc_info=True)
            self.toasts.error("Failed to create group chat")
            return None
        await self.load()
        return chat.id

    async def delete_chat(self, chat_id: str) -> bool:
        try:
            await self.backend.delete_chat(chat_id, self.user.id)
        except Exception as e:
            logger.error(f"Failed to delete chat {chat_id}: {e}", exc_info=True)
            self.toasts.error("Failed to delete chat")
            return False
        self.chats = [c for c in self.chats if c.id != chat_id]
        self.toasts.success("Chat deleted successfully")
        return True
