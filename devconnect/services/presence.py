import logging
from typing import Callable, List, Optional, Set

from .transport import Transport

logger = logging.getLogger(__name__)

PresenceListener = Callable[[Set[str]], None]


class PresenceTracker:
    """Set of online user ids, fed by the relay's userOnline / userOffline pushes."""

    def __init__(self):
        self.online: Set[str] = set()
        self._listeners: List[PresenceListener] = []
        self._transport: Optional[Transport] = None

    async def attach(self, transport: Transport):
        self._transport = transport
        transport.on("userOnline", self._on_online)
        transport.on("userOffline", self._on_offline)
        await transport.emit("getOnlineUsers", None, self._seed)

    def detach(self):
        if self._transport is not None:
            self._transport.off("userOnline", self._on_online)
            self._transport.off("userOffline", self._on_offline)
            self._transport = None

    def is_online(self, user_id: str) -> bool:
        return user_id in self.online

    def add_listener(self, listener: PresenceListener):
        self._listeners.append(listener)

    def remove_listener(self, listener: PresenceListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _seed(self, user_ids):
        self.online = set(user_ids or [])
        self._notify()

    def _on_online(self, data):
        self.online.add(data["user_id"])
        self._notify()

    def _on_offline(self, data):
        self.online.discard(data["user_id"])
        self._notify()

    def _notify(self):
        for listener in list(self._listeners):
            try:
                listener(set(self.online))
            except Exception as e:
                logger.error(f"Presence listener failed: {e}", exc_info=True)
