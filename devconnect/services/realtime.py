# devconnect/services/realtime.py
import asyncio
import inspect
import logging
from typing import Any, Callable, List, Optional, Tuple

from fastapi.encoders import jsonable_encoder
from pusher import Pusher

from ..config import settings
from ..schemas.realtime import ChangeEvent

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[ChangeEvent], Any]

ANY = "*"


def parse_filter(filter: Optional[str]) -> Optional[Tuple[str, str]]:
    """Parse a row filter of the form ``column=eq.value``."""
    if not filter:
        return None
    column, sep, condition = filter.partition("=")
    if not sep or not condition.startswith("eq."):
        raise ValueError(f"Unsupported realtime filter: {filter!r}")
    return column, condition[len("eq."):]


class _Binding:
    def __init__(self, event: str, table: str, filter: Optional[str], callback: ChangeCallback):
        self.event = event
        self.table = table
        self.filter = parse_filter(filter)
        self.callback = callback

    def matches(self, change: ChangeEvent) -> bool:
        if self.event != ANY and self.event != change.event:
            return False
        if self.table != ANY and self.table != change.table:
            return False
        if self.filter is None:
            return True
        column, value = self.filter
        return str(change.record.get(column)) == value


class RealtimeChannel:
    """A named set of change subscriptions, active between subscribe() and unsubscribe()."""

    def __init__(self, hub: "RealtimeHub", name: str):
        self.hub = hub
        self.name = name
        self.bindings: List[_Binding] = []
        self.subscribed = False

    def on(self, event: str, table: str, filter: Optional[str], callback: ChangeCallback) -> "RealtimeChannel":
        self.bindings.append(_Binding(event, table, filter, callback))
        return self

    def subscribe(self) -> "RealtimeChannel":
        self.hub._attach(self)
        self.subscribed = True
        return self

    def unsubscribe(self):
        self.hub._detach(self)
        self.subscribed = False


class RealtimeHub:
    """In-process change feed. Services publish after commit; channels receive matching rows."""

    def __init__(self):
        self.channels: List[RealtimeChannel] = []

    def channel(self, name: str) -> RealtimeChannel:
        return RealtimeChannel(self, name)

    def _attach(self, channel: RealtimeChannel):
        if channel not in self.channels:
            self.channels.append(channel)
            logger.debug(f"Realtime channel subscribed: {channel.name}. Total channels: {len(self.channels)}")

    def _detach(self, channel: RealtimeChannel):
        try:
            self.channels.remove(channel)
            logger.debug(f"Realtime channel removed: {channel.name}. Remaining: {len(self.channels)}")
        except ValueError:
            logger.warning(f"Realtime channel {channel.name} was not subscribed.")

    async def publish(self, change: ChangeEvent):
        # Copy, a callback may unsubscribe while we iterate
        for channel in list(self.channels):
            for binding in channel.bindings:
                if not binding.matches(change):
                    continue
                try:
                    result = binding.callback(change)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    logger.error(
                        f"Realtime subscriber on channel {channel.name} failed for {change.event} {change.table}: {e}",
                        exc_info=True
                    )

    async def publish_change(self, event: str, table: str, new: Optional[dict] = None, old: Optional[dict] = None):
        await self.publish(ChangeEvent(event=event, table=table, new=new, old=old))


class PusherForwarder:
    """Mirrors message changes to Pusher channels ``private-chat-<chat_id>``."""

    EVENT_NAMES = {
        "INSERT": "new-message",
        "UPDATE": "message-updated",
        "DELETE": "message-deleted",
    }

    def __init__(self, client):
        self.client = client
        self.channel: Optional[RealtimeChannel] = None

    def attach(self, hub: RealtimeHub) -> RealtimeChannel:
        self.channel = hub.channel("pusher-forwarder").on(ANY, "messages", None, self.forward).subscribe()
        return self.channel

    async def forward(self, change: ChangeEvent):
        chat_id = change.record.get("chat_id")
        if not chat_id:
            return
        channel_name = f"private-chat-{chat_id}"
        event_name = self.EVENT_NAMES[change.event]
        data = jsonable_encoder(change.record)
        loop = asyncio.get_running_loop()
        # pusher's client is blocking
        await loop.run_in_executor(None, self.client.trigger, channel_name, event_name, data)
        logger.info(f"Pusher event '{event_name}' triggered for channel '{channel_name}'")


def build_pusher_forwarder() -> Optional[PusherForwarder]:
    if not settings.pusher_enabled:
        return None
    client = Pusher(
        app_id=settings.PUSHER_APP_ID,
        key=settings.PUSHER_APP_KEY,
        secret=settings.PUSHER_APP_SECRET,
        cluster=settings.PUSHER_APP_CLUSTER,
        ssl=True
    )
    return PusherForwarder(client)


# Global change feed shared by the services and the view-models
realtime_hub = RealtimeHub()
