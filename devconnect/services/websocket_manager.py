# devconnect/services/websocket_manager.py
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set
from fastapi import WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
import json
import logging
import uuid

from ..database import AsyncSessionLocal
from ..services.chat_service import ChatService
from ..services.message_service import MessageService

logger = logging.getLogger(__name__)

MembershipChecker = Callable[[str, str], Awaitable[bool]]
MessageLookup = Callable[[str], Awaitable[Optional[dict]]]


class Connection(ABC):
    """One transport peer as seen by the relay"""

    def __init__(self, user_id: str):
        self.user_id = user_id
        self.id = uuid.uuid4().hex

    @abstractmethod
    async def send(self, event: str, data: Any):
        ...


class WebSocketConnection(Connection):
    """A peer behind a FastAPI websocket, spoken to in JSON frames"""

    def __init__(self, websocket: WebSocket, user_id: str):
        super().__init__(user_id)
        self.websocket = websocket

    async def send(self, event: str, data: Any):
        await self.send_frame({"event": event, "data": data})

    async def send_frame(self, frame: dict):
        await self.websocket.send_text(json.dumps(jsonable_encoder(frame)))


async def check_chat_membership(chat_id: str, user_id: str) -> bool:
    async with AsyncSessionLocal() as db:
        return await ChatService(db).is_member(chat_id, user_id)


async def fetch_stored_message(message_id: str) -> Optional[dict]:
    async with AsyncSessionLocal() as db:
        message = await MessageService(db).get_message(message_id)
    return message.model_dump(mode="json") if message else None


class WebSocketManager:
    def __init__(self, membership_checker: Optional[MembershipChecker] = check_chat_membership,
                 message_lookup: MessageLookup = fetch_stored_message):
        # { "user_id": [connection1, connection2, ...] }
        self.user_connections: Dict[str, List[Connection]] = {}
        # { "chat_id": {connection1, ...} }
        self.rooms: Dict[str, Set[Connection]] = {}
        self.membership_checker = membership_checker
        self.message_lookup = message_lookup

    def online_users(self) -> List[str]:
        return list(self.user_connections.keys())

    def is_online(self, user_id: str) -> bool:
        return user_id in self.user_connections

    async def connect(self, connection: Connection):
        first_connection = connection.user_id not in self.user_connections
        self.user_connections.setdefault(connection.user_id, []).append(connection)
        logger.info(f"Transport connected: user {connection.user_id}. Connections for user: {len(self.user_connections[connection.user_id])}")
        if first_connection:
            await self.broadcast_all("userOnline", {"user_id": connection.user_id}, exclude_user_id=connection.user_id)

    async def disconnect(self, connection: Connection):
        for chat_id in [chat_id for chat_id, members in self.rooms.items() if connection in members]:
            self._leave_room(chat_id, connection)

        connections = self.user_connections.get(connection.user_id)
        if not connections or connection not in connections:
            logger.warning(f"Connection not found in user_connections during disconnect for user {connection.user_id}.")
            return
        connections.remove(connection)
        if connections:
            return
        del self.user_connections[connection.user_id]
        logger.info(f"User {connection.user_id} went offline")
        await self.broadcast_all("userOffline", {"user_id": connection.user_id})

    def _leave_room(self, chat_id: str, connection: Connection):
        members = self.rooms.get(chat_id)
        if not members:
            return
        members.discard(connection)
        if not members:
            del self.rooms[chat_id]  # no one left in this chat

    async def send_personal_message(self, connection: Connection, event: str, data: Any):
        """Send an event to a single connection."""
        try:
            await connection.send(event, data)
        except WebSocketDisconnect:
            logger.warning("Attempted to send to a disconnected WebSocket.")
        except Exception as e:
            logger.error(f"Error sending {event} to user {connection.user_id}: {e}")

    async def broadcast_to_room(self, chat_id: str, event: str, data: Any, exclude: Optional[Connection] = None):
        """Broadcast an event to every connection that joined the chat."""
        members = self.rooms.get(chat_id)
        if not members:
            logger.info(f"No active connections for chat {chat_id} to broadcast {event}.")
            return
        for connection in list(members):
            if connection is exclude:
                continue
            await self.send_personal_message(connection, event, data)

    async def broadcast_all(self, event: str, data: Any, exclude_user_id: Optional[str] = None):
        for user_id, connections in list(self.user_connections.items()):
            if user_id == exclude_user_id:
                continue
            for connection in list(connections):
                await self.send_personal_message(connection, event, data)

    async def _own_stored_message(self, connection: Connection, chat_id: str, message_id: Any) -> Optional[dict]:
        """The stored row behind a mirrored event, if the connection's user sent it in this chat."""
        if not isinstance(message_id, str) or not message_id:
            return None
        row = await self.message_lookup(message_id)
        if row is None or row["chat_id"] != chat_id or row["sender_id"] != connection.user_id:
            logger.warning(f"User {connection.user_id} referenced message {message_id} they did not send in chat {chat_id}")
            return None
        return row

    async def handle_event(self, connection: Connection, event: str, data: Any = None) -> Any:
        """Route one client event. The return value is the acknowledgement payload."""
        data = data if data is not None else {}

        if event == "getOnlineUsers":
            return self.online_users()
        if not isinstance(data, dict):
            return {"ok": False, "error": "Event data must be an object"}

        if event == "joinChat":
            chat_id = data.get("chat_id")
            if not chat_id:
                return {"ok": False, "error": "chat_id is required"}
            if self.membership_checker and not await self.membership_checker(chat_id, connection.user_id):
                logger.warning(f"User {connection.user_id} attempted to join unauthorized chat {chat_id}")
                return {"ok": False, "error": "Not a member of this chat"}
            self.rooms.setdefault(chat_id, set()).add(connection)
            return {"ok": True}

        if event == "leaveChat":
            self._leave_room(data.get("chat_id"), connection)
            return {"ok": True}

        chat_id = data.get("chat_id")
        if event in ("typing", "sendMessage", "recallMessage", "messageRead"):
            if connection not in self.rooms.get(chat_id, set()):
                logger.warning(f"User {connection.user_id} sent {event} to chat {chat_id} without joining it")
                return {"ok": False, "error": "Join the chat first"}

        if event == "typing":
            await self.broadcast_to_room(chat_id, "typing", {"chat_id": chat_id, "user_id": connection.user_id}, exclude=connection)
        elif event == "sendMessage":
            row = await self._own_stored_message(connection, chat_id, data.get("id"))
            if row is None:
                return {"ok": False, "error": "Only your own stored messages can be sent"}
            # receivers get the stored row, never the client's copy
            await self.broadcast_to_room(chat_id, "newMessage", row, exclude=connection)
        elif event == "recallMessage":
            row = await self._own_stored_message(connection, chat_id, data.get("message_id"))
            if row is None or not row["is_deleted"]:
                return {"ok": False, "error": "Only your own recalled messages can be announced"}
            await self.broadcast_to_room(
                chat_id, "messageRecalled", {"chat_id": chat_id, "message_id": row["id"]}, exclude=connection
            )
        elif event == "messageRead":
            for message_id in data.get("message_ids", []):
                await self.broadcast_to_room(
                    chat_id, "messageStatus",
                    {"chat_id": chat_id, "message_id": message_id, "status": "read"},
                    exclude=connection
                )
        else:
            logger.warning(f"Unknown transport event {event!r} from user {connection.user_id}")
            return {"ok": False, "error": f"Unknown event: {event}"}
        return {"ok": True}


# Global relay shared by the websocket endpoint and in-process transports
websocket_manager = WebSocketManager()
