from devconnect.models.user import Profile, Follow
from devconnect.models.chat import Chat, ChatMember, ChatType, make_direct_key, chat_to_row, member_to_row
from devconnect.models.message import Message, MessageType, message_to_row

__all__ = [
    "Profile", "Follow",
    "Chat", "ChatMember", "ChatType", "make_direct_key", "chat_to_row", "member_to_row",
    "Message", "MessageType", "message_to_row",
]
