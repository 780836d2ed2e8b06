"""Render models for chat bubbles, one per message variant."""
import re
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import List, Literal, Optional, Sequence, Union

from pydantic import BaseModel

from ..config import settings
from ..schemas.message import (
    ChatMessage, CodeMessage, DeliveryStatus, FileMessage, ImageMessage, TextMessage
)

DELETED_PLACEHOLDERS = {
    "text": "This message was deleted",
    "code": "This code snippet was deleted",
    "image": "This image was deleted",
    "file": "This file was deleted",
}

STATUS_ICONS = {
    DeliveryStatus.SENDING: "clock",
    DeliveryStatus.SENT: "check",
    DeliveryStatus.DELIVERED: "check-double",
    DeliveryStatus.READ: "check-double-read",
    DeliveryStatus.FAILED: "alert",
}

FILE_ICONS = {
    "pdf": "file-text-red",
    "doc": "file-text-blue",
    "docx": "file-text-blue",
    "xls": "file-text-green",
    "xlsx": "file-text-green",
    "ppt": "file-text-orange",
    "pptx": "file-text-orange",
    "zip": "file-archive",
    "rar": "file-archive",
}
DEFAULT_FILE_ICON = "file"

IMAGE_PREFIX = "[IMAGE] "
FILE_PREFIX = "[FILE] "

LINK_PATTERN = re.compile(r"(https?://[^\s]+)")


def format_file_size(size: Optional[int]) -> str:
    if not size:
        return ""
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def file_icon(file_name: Optional[str]) -> str:
    if not file_name:
        return DEFAULT_FILE_ICON
    extension = Path(file_name).suffix.lower().lstrip(".")
    return FILE_ICONS.get(extension, DEFAULT_FILE_ICON)


def avatar_for(username: Optional[str], avatar_url: Optional[str]) -> str:
    return avatar_url or f"https://api.dicebear.com/7.x/avatars/svg?seed={username or ''}"


class BubbleBase(BaseModel):
    message_id: str
    is_own: bool
    is_deleted: bool
    placeholder: Optional[str] = None
    status: Optional[DeliveryStatus] = None
    status_icon: Optional[str] = None
    can_retry: bool = False
    can_recall: bool = False
    show_sender: bool = True
    sender_name: Optional[str] = None
    avatar_url: Optional[str] = None
    show_timestamp: bool = True
    time_label: str


class TextBubble(BubbleBase):
    kind: Literal["text"] = "text"
    text: str
    links: List[str] = []


class CodeBubble(BubbleBase):
    kind: Literal["code"] = "code"
    code: Optional[str] = None
    language: str = "javascript"
    line_count: int = 0


class ImageBubble(BubbleBase):
    kind: Literal["image"] = "image"
    image_url: Optional[str] = None
    caption: Optional[str] = None


class FileBubble(BubbleBase):
    kind: Literal["file"] = "file"
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    size_label: str = ""
    icon: str = DEFAULT_FILE_ICON


Bubble = Union[TextBubble, CodeBubble, ImageBubble, FileBubble]


class DateSeparator(BaseModel):
    kind: Literal["date"] = "date"
    day: date
    label: str


def _common_fields(message: ChatMessage, current_user_id: str, show_sender: bool, show_timestamp: bool) -> dict:
    is_own = message.sender_id == current_user_id
    sender = message.sender
    fields = {
        "message_id": message.id,
        "is_own": is_own,
        "is_deleted": message.is_deleted,
        "show_sender": show_sender,
        "show_timestamp": show_timestamp,
        "time_label": message.created_at.strftime("%H:%M"),
    }
    if message.is_deleted:
        fields["placeholder"] = DELETED_PLACEHOLDERS[message.type]
    if is_own:
        fields["status"] = message.status
        fields["status_icon"] = STATUS_ICONS.get(message.status) if message.status else None
        fields["can_retry"] = message.status == DeliveryStatus.FAILED
        fields["can_recall"] = not message.is_deleted and message.status != DeliveryStatus.FAILED
    elif show_sender and sender is not None:
        fields["sender_name"] = sender.full_name or sender.username
        fields["avatar_url"] = avatar_for(sender.username, sender.avatar_url)
    return fields


def render_message(message: ChatMessage, current_user_id: str,
                   show_sender: bool = True, show_timestamp: bool = True) -> Bubble:
    """Pick the bubble for the message variant; deleted bubbles carry only a placeholder."""
    fields = _common_fields(message, current_user_id, show_sender, show_timestamp)

    if isinstance(message, TextMessage):
        if message.is_deleted:
            return TextBubble(text=fields["placeholder"], **fields)
        return TextBubble(text=message.content, links=LINK_PATTERN.findall(message.content), **fields)

    if isinstance(message, CodeMessage):
        if message.is_deleted:
            return CodeBubble(**fields)
        return CodeBubble(
            code=message.content,
            language=message.language or "javascript",
            line_count=len(message.content.splitlines()),
            **fields
        )

    if isinstance(message, ImageMessage):
        if message.is_deleted:
            return ImageBubble(**fields)
        caption = message.content
        if caption.startswith(IMAGE_PREFIX):
            caption = caption[len(IMAGE_PREFIX):]
        return ImageBubble(image_url=message.file_url, caption=caption or None, **fields)

    if isinstance(message, FileMessage):
        if message.is_deleted:
            return FileBubble(**fields)
        return FileBubble(
            file_url=message.file_url,
            file_name=message.file_name,
            size_label=format_file_size(message.file_size),
            icon=file_icon(message.file_name),
            **fields
        )

    raise TypeError(f"No renderer for message type {type(message).__name__}")


def date_label(day: date, today: Optional[date] = None) -> str:
    today = today or datetime.now().date()
    if day == today:
        return "Today"
    if day == today - timedelta(days=1):
        return "Yesterday"
    return day.isoformat()


def group_messages(messages: Sequence[ChatMessage], current_user_id: str,
                   today: Optional[date] = None) -> List[Union[DateSeparator, Bubble]]:
    """Lay out a chat: date separators plus bubbles with sender headers and timestamps.

    The sender header repeats when the sender changes, the date changes, or
    more than the grouping window passed since the previous message. A
    timestamp shows when the next message is from someone else or comes
    after the window.
    """
    window = timedelta(seconds=settings.MESSAGE_GROUP_WINDOW_SECONDS)
    items: List[Union[DateSeparator, Bubble]] = []

    for index, message in enumerate(messages):
        previous = messages[index - 1] if index > 0 else None
        following = messages[index + 1] if index + 1 < len(messages) else None

        new_day = previous is None or previous.created_at.date() != message.created_at.date()
        if new_day:
            day = message.created_at.date()
            items.append(DateSeparator(day=day, label=date_label(day, today)))

        show_sender = (
            new_day
            or previous.sender_id != message.sender_id
            or message.created_at - previous.created_at > window
        )
        show_timestamp = (
            following is None
            or following.sender_id != message.sender_id
            or following.created_at - message.created_at > window
        )
        items.append(render_message(message, current_user_id, show_sender, show_timestamp))

    return items
