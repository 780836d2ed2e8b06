"""Client side of the push-messaging channel.

Every transport exposes the same capability interface, ``on`` / ``off`` /
``emit`` / ``disconnect``, so the view-models never know whether they talk
to an in-process relay or to the ``/api/ws`` endpoint.
"""
import asyncio
import inspect
from abc import ABC, abstractmethod
import itertools
import json
import logging
from typing import Any, Callable, Dict, List, Optional

from fastapi.encoders import jsonable_encoder

from .websocket_manager import Connection, WebSocketManager

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Any]
AckCallback = Callable[[Any], Any]


async def _call(callback: Callable, *args):
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class Transport(ABC):
    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = {}
        self.connected = False

    def on(self, event: str, handler: Handler):
        self._handlers.setdefault(event, []).append(handler)

    def off(self, event: str, handler: Optional[Handler] = None):
        """Detach one handler, or every handler of the event when none is given."""
        if handler is None:
            self._handlers.pop(event, None)
            return
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            self._handlers.pop(event, None)

    def handler_count(self, event: str) -> int:
        return len(self._handlers.get(event, []))

    @abstractmethod
    async def emit(self, event: str, data: Any = None, callback: Optional[AckCallback] = None):
        ...

    @abstractmethod
    async def disconnect(self):
        ...

    async def _dispatch(self, event: str, data: Any):
        for handler in list(self._handlers.get(event, [])):
            try:
                await _call(handler, data)
            except Exception as e:
                logger.error(f"Transport handler for {event} failed: {e}", exc_info=True)


class _InMemoryLink(Connection):
    """The relay's view of an in-process transport"""

    def __init__(self, transport: "InMemoryTransport", user_id: str):
        super().__init__(user_id)
        self.transport = transport

    async def send(self, event: str, data: Any):
        # Same JSON round trip as the websocket path
        await self.transport._dispatch(event, json.loads(json.dumps(jsonable_encoder(data))))


class InMemoryTransport(Transport):
    """Transport attached directly to a relay in the same process."""

    def __init__(self, manager: WebSocketManager, user_id: str):
        super().__init__()
        self.manager = manager
        self.user_id = user_id
        self._link = _InMemoryLink(self, user_id)

    async def connect(self) -> "InMemoryTransport":
        if not self.connected:
            await self.manager.connect(self._link)
            self.connected = True
        return self

    async def emit(self, event: str, data: Any = None, callback: Optional[AckCallback] = None):
        if not self.connected:
            logger.warning(f"Dropping {event}: transport for user {self.user_id} is not connected")
            return
        result = await self.manager.handle_event(self._link, event, jsonable_encoder(data))
        if callback is not None:
            await _call(callback, result)

    async def disconnect(self):
        if self.connected:
            self.connected = False
            await self.manager.disconnect(self._link)


class WebSocketTransport(Transport):
    """Transport over a duplex text connection speaking the relay's JSON frames.

    ``connection`` needs async ``send_text(str)`` and ``receive_text() -> str``;
    ``listen()`` must be running for events and acknowledgements to arrive.
    """

    def __init__(self, connection):
        super().__init__()
        self.connection = connection
        self._ack_ids = itertools.count(1)
        self._pending_acks: Dict[int, AckCallback] = {}
        self.connected = True

    async def emit(self, event: str, data: Any = None, callback: Optional[AckCallback] = None):
        frame = {"event": event, "data": jsonable_encoder(data), "ack": None}
        if callback is not None:
            ack_id = next(self._ack_ids)
            self._pending_acks[ack_id] = callback
            frame["ack"] = ack_id
        await self.connection.send_text(json.dumps(frame))

    async def handle_frame(self, text: str):
        try:
            frame = json.loads(text)
        except json.JSONDecodeError:
            logger.error(f"Invalid JSON frame received: {text}")
            return
        if frame.get("event") == "ack":
            callback = self._pending_acks.pop(frame.get("ack"), None)
            if callback is not None:
                await _call(callback, frame.get("data"))
            return
        if "error" in frame:
            logger.warning(f"Relay reported an error: {frame['error']}")
            return
        await self._dispatch(frame.get("event"), frame.get("data"))

    async def listen(self):
        """Read frames until the connection closes."""
        try:
            while self.connected:
                await self.handle_frame(await self.connection.receive_text())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.info(f"Transport connection closed: {e}")
        finally:
            self.connected = False

    async def disconnect(self):
        self.connected = False
        close = getattr(self.connection, "close", None)
        if close is not None:
            await _call(close)
