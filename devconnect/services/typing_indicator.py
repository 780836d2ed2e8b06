import asyncio
from typing import Callable, Dict, List, Optional

from ..config import settings


class TypingTracker:
    """Who is typing in one chat. Each event re-arms that user's clear timer."""

    def __init__(self, timeout: Optional[float] = None, on_change: Optional[Callable[[List[str]], None]] = None):
        self.timeout = settings.TYPING_TIMEOUT_SECONDS if timeout is None else timeout
        self.on_change = on_change
        self._timers: Dict[str, asyncio.TimerHandle] = {}

    @property
    def typing_users(self) -> List[str]:
        return list(self._timers.keys())

    @property
    def is_typing(self) -> bool:
        return bool(self._timers)

    def touch(self, user_id: str):
        was_typing = user_id in self._timers
        if was_typing:
            self._timers[user_id].cancel()
        loop = asyncio.get_running_loop()
        self._timers[user_id] = loop.call_later(self.timeout, self._expire, user_id)
        if not was_typing:
            self._changed()

    def _expire(self, user_id: str):
        if self._timers.pop(user_id, None) is not None:
            self._changed()

    def clear(self):
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    def _changed(self):
        if self.on_change is not None:
            self.on_change(self.typing_users)
