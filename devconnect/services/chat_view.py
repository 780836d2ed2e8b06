import logging
import uuid
from typing import Callable, List, Optional

from ..config import settings
from ..models.chat import ChatType
from ..schemas.chat import ChatResponse
from ..schemas.message import (
    ChatMessage, DeliveryStatus, MessageCreate, SenderInfo, build_payload,
    message_from_row, payload_from_message, unknown_sender
)
from ..schemas.realtime import ChangeEvent
from ..utils.time import utcnow
from .backend import LocalBackend, error_message
from .notifications import ToastCenter
from .presence import PresenceTracker
from .realtime import RealtimeChannel
from .rendering import FILE_PREFIX, IMAGE_PREFIX, group_messages
from .storage_service import CHAT_FILES_BUCKET, CHAT_IMAGES_BUCKET, build_object_path
from .transport import Transport
from .typing_indicator import TypingTracker

logger = logging.getLogger(__name__)

TEMP_ID_PREFIX = "tmp-"
ACCESS_DENIED_ERROR = "Chat not found or access denied"
LOAD_FAILED_ERROR = "Failed to load messages."


class ChatView:
    """View-model of one open chat.

    Holds the message list of ``chat_id`` and reconciles three sources into
    it: the realtime feed, the transport, and optimistic local sends. Rows
    are keyed by id, so a message delivered by more than one source is kept
    once.
    """

    def __init__(
        self,
        chat_id: str,
        user: SenderInfo,
        backend: LocalBackend,
        transport: Transport,
        presence: Optional[PresenceTracker] = None,
        toasts: Optional[ToastCenter] = None,
        on_redirect: Optional[Callable[[], None]] = None,
        typing_timeout: Optional[float] = None,
    ):
        self.chat_id = chat_id
        self.user = user
        self.backend = backend
        self.transport = transport
        self.presence = presence or PresenceTracker()
        self.toasts = toasts or ToastCenter()
        self.on_redirect = on_redirect

        self.chat: Optional[ChatResponse] = None
        self.messages: List[ChatMessage] = []
        self.loading = False
        self.error: Optional[str] = None
        self.is_open = False

        self.unread_count = 0
        self.show_new_messages_banner = False
        self.show_scroll_button = False
        self.at_bottom = True

        self.typing = TypingTracker(timeout=typing_timeout)
        self._channel: Optional[RealtimeChannel] = None
        self._transport_handlers = {
            "typing": self._on_typing,
            "newMessage": self._on_new_message,
            "messageStatus": self._on_message_status,
            "messageRecalled": self._on_message_recalled,
        }

    # --- lifecycle ---

    async def open(self) -> bool:
        """Load the chat and start listening. False when the chat is not accessible."""
        if not await self.fetch_chat_info():
            return False
        await self.load_messages()
        await self.mark_as_read()

        chat_filter = f"chat_id=eq.{self.chat_id}"
        self._channel = (
            self.backend.channel(f"messages:chat_id={self.chat_id}")
            .on("INSERT", "messages", chat_filter, self._on_realtime_insert)
            .on("UPDATE", "messages", chat_filter, self._on_realtime_update)
            .subscribe()
        )
        for event, handler in self._transport_handlers.items():
            self.transport.on(event, handler)
        await self.transport.emit("joinChat", {"chat_id": self.chat_id})
        self.is_open = True
        return True

    async def close(self):
        """Detach everything this view registered."""
        if self._channel is not None:
            self._channel.unsubscribe()
            self._channel = None
        for event, handler in self._transport_handlers.items():
            self.transport.off(event, handler)
        if self.is_open:
            await self.transport.emit("leaveChat", {"chat_id": self.chat_id})
        self.typing.clear()
        self.is_open = False

    async def fetch_chat_info(self) -> bool:
        try:
            self.chat = await self.backend.fetch_chat(self.chat_id, self.user.id)
            return True
        except Exception as e:
            logger.warning(f"Chat {self.chat_id} is not accessible for {self.user.id}: {e}")
            self.chat = None
            self.error = ACCESS_DENIED_ERROR
            if self.on_redirect is not None:
                self.on_redirect()
            return False

    async def load_messages(self):
        self.loading = True
        try:
            rows = await self.backend.fetch_messages(self.chat_id, self.user.id)
            self.messages = [
                message_from_row(
                    row.model_dump(),
                    status=DeliveryStatus.READ if row.sender_id == self.user.id else None
                )
                for row in rows
            ]
            self.error = None
        except Exception as e:
            logger.error(f"Failed to load messages for chat {self.chat_id}: {e}", exc_info=True)
            self.error = LOAD_FAILED_ERROR
        finally:
            self.loading = False

    # --- header ---

    @property
    def other_member(self) -> Optional[SenderInfo]:
        if not self.chat or self.chat.type != ChatType.DIRECT:
            return None
        for member in self.chat.members:
            if member.id != self.user.id:
                return SenderInfo(id=member.id, username=member.username,
                                  full_name=member.full_name, avatar_url=member.avatar_url)
        return None

    @property
    def title(self) -> str:
        if not self.chat:
            return ""
        if self.chat.type == ChatType.DIRECT:
            other = self.other_member
            return (other.full_name or other.username) if other else ""
        return self.chat.name or "Group"

    @property
    def status_text(self) -> str:
        if not self.chat:
            return ""
        if self.chat.type == ChatType.DIRECT:
            other = self.other_member
            return "Online" if other and self.presence.is_online(other.id) else "Offline"
        return f"{len(self.chat.members)} members"

    def rendered(self):
        return group_messages(self.messages, self.user.id)

    # --- list bookkeeping ---

    def find(self, message_id: str) -> Optional[ChatMessage]:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def _remove(self, message_id: str):
        self.messages = [message for message in self.messages if message.id != message_id]

    def _insert_sorted(self, message: ChatMessage):
        index = len(self.messages)
        while index > 0 and self.messages[index - 1].created_at > message.created_at:
            index -= 1
        self.messages.insert(index, message)

    async def _receive(self, message: ChatMessage):
        if self.find(message.id) is not None:
            return
        self._insert_sorted(message)
        if message.sender_id == self.user.id:
            return
        if self.at_bottom:
            await self.mark_as_read()
        else:
            self.unread_count += 1
            self.show_new_messages_banner = True

    # --- realtime feed ---

    async def _on_realtime_insert(self, change: ChangeEvent):
        row = change.new or {}
        if self.find(row.get("id")) is not None:
            return
        sender = await self.backend.fetch_profile(row["sender_id"]) or unknown_sender(row["sender_id"])
        # may have arrived through the transport while we waited
        if self.find(row["id"]) is not None:
            return
        await self._receive(message_from_row(row, sender=sender, status=DeliveryStatus.DELIVERED))

    def _on_realtime_update(self, change: ChangeEvent):
        row = change.new or {}
        message = self.find(row.get("id"))
        if message is None:
            return
        if "is_deleted" in row:
            message.is_deleted = row["is_deleted"]
        if "content" in row:
            message.content = row["content"]

    # --- transport ---

    async def _on_new_message(self, data):
        if data.get("chat_id") != self.chat_id or self.find(data.get("id")) is not None:
            return
        await self._receive(message_from_row(data, status=DeliveryStatus.DELIVERED))

    def _on_message_status(self, data):
        if data.get("chat_id") != self.chat_id:
            return
        message = self.find(data.get("message_id"))
        if message is not None:
            message.status = DeliveryStatus(data["status"])

    def _on_message_recalled(self, data):
        if data.get("chat_id") != self.chat_id:
            return
        message = self.find(data.get("message_id"))
        if message is not None:
            message.is_deleted = True

    def _on_typing(self, data):
        if data.get("chat_id") != self.chat_id or data.get("user_id") == self.user.id:
            return
        self.typing.touch(data["user_id"])

    # --- sending ---

    async def send_message(self, content: str, type: str = "text", **metadata) -> Optional[ChatMessage]:
        if not content.strip():
            return None
        return await self.send_payload(build_payload(content, type, **metadata))

    async def send_payload(self, payload) -> ChatMessage:
        """Optimistic send: show a temporary row, then swap in the stored one."""
        temp_id = f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"
        optimistic = message_from_row(
            {
                **payload.model_dump(),
                "id": temp_id,
                "chat_id": self.chat_id,
                "sender_id": self.user.id,
                "created_at": utcnow(),
            },
            sender=self.user,
            status=DeliveryStatus.SENDING
        )
        self.messages.append(optimistic)

        try:
            saved = await self.backend.insert_message(self.user.id, MessageCreate.from_payload(self.chat_id, payload))
        except Exception as e:
            logger.error(f"Failed to send message in chat {self.chat_id}: {e}", exc_info=True)
            optimistic.status = DeliveryStatus.FAILED
            return optimistic

        self._remove(temp_id)
        message = self.find(saved.id)
        if message is not None:
            # the feed delivered the stored row first
            message.status = DeliveryStatus.SENT
        else:
            message = message_from_row(saved.model_dump(), status=DeliveryStatus.SENT)
            self._insert_sorted(message)

        await self.transport.emit("sendMessage", saved.model_dump(mode="json"))
        await self.scroll_to_bottom()
        return message

    async def retry(self, message_id: str) -> Optional[ChatMessage]:
        message = self.find(message_id)
        if message is None or message.status != DeliveryStatus.FAILED:
            return None
        self._remove(message_id)
        return await self.send_payload(payload_from_message(message))

    async def recall(self, message_id: str) -> bool:
        message = self.find(message_id)
        if (message is None or message.sender_id != self.user.id or message.is_deleted
                or message.id.startswith(TEMP_ID_PREFIX)):
            return False
        try:
            await self.backend.recall_message(self.user.id, message_id)
        except Exception as e:
            logger.error(f"Failed to recall message {message_id}: {e}", exc_info=True)
            self.toasts.error(error_message(e, "Failed to recall message"))
            return False
        message.is_deleted = True
        await self.transport.emit("recallMessage", {"chat_id": self.chat_id, "message_id": message_id})
        return True

    async def delete(self, message_id: str) -> bool:
        """Remove one of our own messages from the store and this list only."""
        message = self.find(message_id)
        if message is None or message.sender_id != self.user.id:
            return False
        if not message.id.startswith(TEMP_ID_PREFIX):
            try:
                await self.backend.delete_message(self.user.id, message_id)
            except Exception as e:
                logger.error(f"Failed to delete message {message_id}: {e}", exc_info=True)
                self.toasts.error(error_message(e, "Failed to delete message"))
                return False
        self._remove(message_id)
        return True

    # --- read tracking ---

    async def mark_as_read(self):
        try:
            result = await self.backend.mark_chat_read(self.chat_id, self.user.id)
        except Exception as e:
            logger.error(f"Failed to mark chat {self.chat_id} as read: {e}", exc_info=True)
            return
        marked = set(result.message_ids)
        for message in self.messages:
            if message.id in marked:
                message.is_read = True
        self.unread_count = 0
        self.show_new_messages_banner = False
        if result.message_ids:
            await self.transport.emit("messageRead", {"chat_id": self.chat_id, "message_ids": result.message_ids})

    async def handle_scroll(self, scroll_top: float, scroll_height: float, client_height: float):
        distance = scroll_height - (scroll_top + client_height)
        self.show_scroll_button = distance > settings.SCROLL_BUTTON_THRESHOLD
        self.at_bottom = distance <= settings.SCROLL_BOTTOM_THRESHOLD
        if self.at_bottom and (self.unread_count or self.show_new_messages_banner):
            await self.mark_as_read()

    async def scroll_to_bottom(self):
        self.at_bottom = True
        self.show_scroll_button = False
        await self.mark_as_read()

    # --- composer ---

    async def on_input_change(self, text: str, is_composing: bool = False):
        if text.strip() and not is_composing:
            await self.transport.emit("typing", {"chat_id": self.chat_id})

    async def send_code(self, code: str, language: str = "javascript") -> Optional[ChatMessage]:
        if not code.strip():
            self.toasts.error("Please enter code")
            return None
        return await self.send_message(code, "code", language=language)

    async def send_attachment(self, filename: str, content: bytes, kind: str = "file") -> Optional[ChatMessage]:
        """Upload then send an image or file message. A failed upload adds no row."""
        is_image = kind == "image"
        bucket = CHAT_IMAGES_BUCKET if is_image else CHAT_FILES_BUCKET
        path = build_object_path(self.user.id, filename)
        try:
            upload = await self.backend.upload(bucket, path, content, filename)
        except Exception as e:
            logger.error(f"Error uploading {kind} {filename}: {e}")
            self.toasts.error(error_message(e, "Error during upload"))
            return None

        if is_image:
            message = await self.send_message(
                f"{IMAGE_PREFIX}{filename}", "image", file_url=upload.public_url, file_name=filename
            )
        else:
            message = await self.send_message(
                f"{FILE_PREFIX}{filename}", "file", file_url=upload.public_url,
                file_name=filename, file_size=upload.file_size
            )
        self.toasts.success(f"{'Image' if is_image else 'File'} uploaded successfully")
        return message
